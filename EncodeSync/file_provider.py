"""
File providers - Uniform access to the input and output locations.

The classifier and executor never touch paths directly; they go through a
FileProvider, so a location can be a local directory or an rclone remote.

Listings are flat: only files at the top level of a location are seen.

New output files are built in a staging file first and published with a
single rename, so an interrupted run never leaves a half-written output.
Staging files are named ".<stem>.partial.<ext>" (the real extension is kept so
ffmpeg picks the right muxer) and are swept by cleanup_staging().
"""

import json
import logging
import os
import re
import shutil
import subprocess
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from .errors import FilesystemError, TransferError
from .filename_transform import split_name
from .identity import SourceFile

logger = logging.getLogger(__name__)

STAGING_MARKER = ".partial"

# "remote:path" - at least two characters so "C:\Music" stays local
_REMOTE_RE = re.compile(r"^([^:/\\]{2,}):(.*)$")
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def staging_name(name: str) -> str:
    """".Song.partial.ogg" for "Song.ogg"."""
    stem, extension = split_name(name)
    if extension:
        return f".{stem}{STAGING_MARKER}.{extension}"
    return f".{stem}{STAGING_MARKER}"


def is_staging_name(name: str) -> bool:
    if not name.startswith("."):
        return False
    stem, _extension = split_name(name)
    return stem.endswith(STAGING_MARKER) or name.endswith(STAGING_MARKER)


class FileProvider:
    """Interface shared by local and remote locations."""

    is_remote = False

    def list_files(self, missing_ok: bool = False) -> list[SourceFile]:
        """List files at the top level, sorted by name."""
        raise NotImplementedError

    def exists(self, name: str) -> bool:
        raise NotImplementedError

    def fetch(self, name: str):
        """Context manager yielding a local path holding the content of a file."""
        raise NotImplementedError

    def staging_path(self, name: str) -> Path:
        """Local path where a new version of `name` is built."""
        raise NotImplementedError

    def publish(self, staged: Path, name: str) -> None:
        """Move a staged file into place under `name`, replacing any old one."""
        raise NotImplementedError

    def rename(self, old_name: str, new_name: str) -> None:
        raise NotImplementedError

    def delete(self, name: str) -> bool:
        """Delete a file. Returns False if it was already missing."""
        raise NotImplementedError

    def makedirs(self) -> None:
        raise NotImplementedError

    def cleanup_staging(self) -> int:
        """Remove staging files left by an interrupted run."""
        raise NotImplementedError


class LocalFileProvider(FileProvider):
    """A directory on the local filesystem."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"LocalFileProvider({str(self.root)!r})"

    def list_files(self, missing_ok: bool = False) -> list[SourceFile]:
        if not self.root.exists():
            if missing_ok:
                return []
            raise FilesystemError(f"Directory does not exist: {self.root}")
        if not self.root.is_dir():
            raise FilesystemError(f"Not a directory: {self.root}")

        files = []
        try:
            with os.scandir(self.root) as entries:
                for entry in entries:
                    if not entry.is_file() or is_staging_name(entry.name):
                        continue
                    stat = entry.stat()
                    files.append(SourceFile(path=entry.name, size=stat.st_size, mtime=stat.st_mtime))
        except OSError as e:
            raise FilesystemError(f"Could not list {self.root}: {e}") from e

        files.sort(key=lambda f: f.path)
        return files

    def exists(self, name: str) -> bool:
        return (self.root / name).is_file()

    @contextmanager
    def fetch(self, name: str) -> Iterator[Path]:
        path = self.root / name
        if not path.is_file():
            raise FilesystemError(f"Source file not found: {path}")
        yield path

    def staging_path(self, name: str) -> Path:
        staged = self.root / staging_name(name)
        staged.unlink(missing_ok=True)
        return staged

    def publish(self, staged: Path, name: str) -> None:
        try:
            os.replace(staged, self.root / name)
        except OSError as e:
            raise FilesystemError(f"Could not move {staged.name} to {name}: {e}") from e

    def rename(self, old_name: str, new_name: str) -> None:
        if old_name == new_name:
            return
        try:
            os.replace(self.root / old_name, self.root / new_name)
        except OSError as e:
            raise FilesystemError(f"Could not rename {old_name} to {new_name}: {e}") from e

    def delete(self, name: str) -> bool:
        try:
            (self.root / name).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise FilesystemError(f"Could not delete {name}: {e}") from e

    def makedirs(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Could not create {self.root}: {e}") from e
        if not os.access(self.root, os.W_OK):
            raise FilesystemError(f"Directory is not writable: {self.root}")

    def cleanup_staging(self) -> int:
        if not self.root.is_dir():
            return 0
        removed = 0
        for path in self.root.iterdir():
            if path.is_file() and is_staging_name(path.name):
                try:
                    path.unlink()
                    removed += 1
                    logger.debug(f"Removed leftover staging file: {path.name}")
                except OSError as e:
                    logger.warning(f"Could not remove staging file {path.name}: {e}")
        return removed


class RcloneFileProvider(FileProvider):
    """
    A directory on an rclone remote.

    Downloads go to <temp>/download, uploads are staged in <temp>/upload.
    """

    is_remote = True

    def __init__(self, remote: str, path: str, temp_directory: str | Path,
                 rclone: str = "rclone"):
        self.remote = remote
        self.path = path.rstrip("/")
        self.temp_directory = Path(temp_directory)
        self.rclone = rclone
        self._names: Optional[set[str]] = None

    def __repr__(self) -> str:
        return f"RcloneFileProvider({self.remote_path()!r})"

    def remote_path(self, name: str = "") -> str:
        if not name:
            return f"{self.remote}:{self.path}"
        if not self.path:
            return f"{self.remote}:{name}"
        return f"{self.remote}:{self.path}/{name}"

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        cmd = [self.rclone, *args]
        try:
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise TransferError(f"Could not start rclone: {e}") from e
        if result.returncode != 0:
            raise TransferError(
                f"rclone {args[0]} failed ({result.returncode}): {result.stderr.strip()[:500]}"
            )
        return result

    def list_files(self, missing_ok: bool = False) -> list[SourceFile]:
        try:
            result = self._run("lsjson", "--files-only", self.remote_path())
        except TransferError:
            if missing_ok:
                self._names = set()
                return []
            raise

        try:
            items = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise TransferError(f"Unexpected rclone lsjson output: {e}") from e

        files = []
        for item in items:
            name = item.get("Name") or item.get("Path")
            if not name or item.get("IsDir") or is_staging_name(name):
                continue
            files.append(SourceFile(
                path=name,
                size=int(item.get("Size", 0)),
                mtime=parse_mod_time(item.get("ModTime", "")),
            ))

        files.sort(key=lambda f: f.path)
        self._names = {f.path for f in files}
        return files

    def exists(self, name: str) -> bool:
        if self._names is None:
            self.list_files(missing_ok=True)
        return name in (self._names or set())

    @contextmanager
    def fetch(self, name: str) -> Iterator[Path]:
        local = self.temp_directory / "download" / name
        local.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Downloading {self.remote_path(name)}")
        self._run("copyto", self.remote_path(name), str(local))
        try:
            yield local
        finally:
            local.unlink(missing_ok=True)

    def staging_path(self, name: str) -> Path:
        staged = self.temp_directory / "upload" / staging_name(name)
        staged.parent.mkdir(parents=True, exist_ok=True)
        staged.unlink(missing_ok=True)
        return staged

    def publish(self, staged: Path, name: str) -> None:
        logger.info(f"Uploading {name} to {self.remote_path()}")
        self._run("moveto", str(staged), self.remote_path(name))
        if self._names is not None:
            self._names.add(name)

    def rename(self, old_name: str, new_name: str) -> None:
        if old_name == new_name:
            return
        self._run("moveto", self.remote_path(old_name), self.remote_path(new_name))
        if self._names is not None:
            self._names.discard(old_name)
            self._names.add(new_name)

    def delete(self, name: str) -> bool:
        if not self.exists(name):
            return False
        self._run("deletefile", self.remote_path(name))
        if self._names is not None:
            self._names.discard(name)
        return True

    def makedirs(self) -> None:
        self._run("mkdir", self.remote_path())
        try:
            self.temp_directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Could not create temp directory {self.temp_directory}: {e}") from e

    def cleanup_staging(self) -> int:
        removed = 0
        for sub in ("download", "upload"):
            directory = self.temp_directory / sub
            if not directory.is_dir():
                continue
            for path in directory.iterdir():
                if path.is_file():
                    path.unlink(missing_ok=True)
                    removed += 1
        return removed


def parse_mod_time(value: str) -> float:
    """Parse rclone's ModTime ("2017-05-31T16:15:57.034468261+01:00") to a timestamp."""
    if not value:
        return 0.0
    value = _FRACTION_RE.sub(r"\1", value.replace("Z", "+00:00"))
    try:
        return datetime.fromisoformat(value).timestamp()
    except ValueError:
        logger.warning(f"Unparseable modification time from rclone: {value}")
        return 0.0


def is_rclone_available() -> bool:
    return shutil.which("rclone") is not None


def provider_for(location: str | dict, temp_directory: str | Path) -> FileProvider:
    """
    Pick a provider for a configured location.

    Args:
        location: "path", "remote:path" or {"remote": ..., "path": ...}
        temp_directory: Local staging area for remote transfers
    """
    if isinstance(location, dict):
        remote = location.get("remote") or ""
        path = location.get("path") or ""
        if remote:
            return RcloneFileProvider(remote, path, temp_directory)
        return LocalFileProvider(path or ".")

    match = _REMOTE_RE.match(location)
    if match:
        return RcloneFileProvider(match.group(1), match.group(2), temp_directory)
    return LocalFileProvider(location or ".")
