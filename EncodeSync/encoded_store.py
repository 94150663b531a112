"""
Encoded-Set Store - Remembers what was produced for each source file.

Stores: identity key (source path) → {output name, source format, fingerprint}

Default location: ./encoded.json

File layout:
  {
    "version": 2,
    "created": "...", "modified": "...",
    "entries": {
      "Song.flac": {"identity_key": "Song.flac", "output_name": "Song.ogg",
                    "source_extension": "flac", "was_encoded": true,
                    "size": 31337, "mtime": 1700000000.0, "last_sync": "..."}
    }
  }

The flat {"input": "output"} layout written by older versions is still read;
those entries carry no fingerprint.
"""

import json
import logging
import os
from pathlib import Path
from dataclasses import dataclass, asdict
from typing import Optional
from datetime import datetime, timezone

from .errors import ConfigError, FilesystemError, NamingCollisionError, StoreLockedError

logger = logging.getLogger(__name__)

STORE_VERSION = 2
DEFAULT_STORE_FILENAME = "encoded.json"


@dataclass
class OutputEntry:
    """What was produced for one source file."""

    identity_key: str  # Source path relative to the input location
    output_name: str  # Filename in the output location
    source_extension: str  # "flac", "mp3", ...
    was_encoded: bool  # False if the file was copied verbatim

    # Fingerprint of the source at the time of sync (None for legacy entries)
    size: Optional[int] = None
    mtime: Optional[float] = None

    last_sync: str = ""

    @property
    def has_fingerprint(self) -> bool:
        return self.size is not None and self.mtime is not None

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, key: str, data: dict) -> "OutputEntry":
        """Create from dict (JSON parsing). Unknown fields are ignored."""
        output_name = data.get("output_name")
        if not isinstance(output_name, str) or not output_name:
            raise ConfigError(f"Store entry '{key}' has no output_name")

        size = data.get("size")
        mtime = data.get("mtime")
        return cls(
            identity_key=key,
            output_name=output_name,
            source_extension=str(data.get("source_extension", Path(key).suffix.lstrip("."))),
            was_encoded=bool(data.get("was_encoded", False)),
            size=size if isinstance(size, int) and not isinstance(size, bool) else None,
            mtime=float(mtime) if isinstance(mtime, (int, float)) and not isinstance(mtime, bool) else None,
            last_sync=str(data.get("last_sync", "")),
        )

    @classmethod
    def from_legacy(cls, key: str, output_name: str) -> "OutputEntry":
        """Entry from the flat input → output layout (no fingerprint)."""
        source_ext = Path(key).suffix.lstrip(".")
        output_ext = Path(output_name).suffix.lstrip(".")
        return cls(
            identity_key=key,
            output_name=output_name,
            source_extension=source_ext,
            was_encoded=source_ext.lower() != output_ext.lower(),
        )


@dataclass
class EncodedSet:
    """
    The complete store contents.

    Tracks all identity key → OutputEntry relationships.
    """

    version: int = STORE_VERSION
    created: str = ""
    modified: str = ""
    _entries: dict[str, OutputEntry] | None = None  # identity key → OutputEntry

    def __post_init__(self):
        if self._entries is None:
            self._entries = {}
        if not self.created:
            self.created = datetime.now(timezone.utc).isoformat()
        if not self.modified:
            self.modified = self.created

    @property
    def entries(self) -> dict[str, OutputEntry]:
        """Access entries dict, ensuring it's never None."""
        if self._entries is None:
            self._entries = {}
        return self._entries

    def get(self, key: str) -> Optional[OutputEntry]:
        return self.entries.get(key)

    def keys(self) -> set[str]:
        return set(self.entries.keys())

    def find_by_output_name(self, output_name: str) -> Optional[OutputEntry]:
        for entry in self.entries.values():
            if entry.output_name == output_name:
                return entry
        return None

    def upsert(self, entry: OutputEntry) -> None:
        """Add or replace the entry for entry.identity_key.

        Raises:
            NamingCollisionError: another key already owns the output name
        """
        owner = self.find_by_output_name(entry.output_name)
        if owner is not None and owner.identity_key != entry.identity_key:
            raise NamingCollisionError(
                {entry.output_name: [owner.identity_key, entry.identity_key]}
            )
        if not entry.last_sync:
            entry.last_sync = datetime.now(timezone.utc).isoformat()
        self.entries[entry.identity_key] = entry
        self.modified = datetime.now(timezone.utc).isoformat()

    def remove(self, key: str) -> bool:
        """Remove an entry. Returns True if removed."""
        if key in self.entries:
            del self.entries[key]
            self.modified = datetime.now(timezone.utc).isoformat()
            return True
        return False

    def copy(self) -> "EncodedSet":
        """Independent copy, used as the read-only snapshot for classification."""
        return EncodedSet.from_dict(self.to_dict())

    @property
    def entry_count(self) -> int:
        return len(self.entries)

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "version": self.version,
            "created": self.created,
            "modified": self.modified,
            "entries": {key: e.to_dict() for key, e in self.entries.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EncodedSet":
        """Create from dict (JSON parsing).

        Raises:
            ConfigError: the document is structurally invalid
        """
        if not isinstance(data, dict):
            raise ConfigError("Store must be a JSON object")

        if "entries" in data and isinstance(data.get("entries"), dict):
            raw_entries = data["entries"]
            legacy = False
        elif "entries" in data:
            raise ConfigError("Store 'entries' must be a JSON object")
        else:
            # Flat layout from older versions: every value is an output name
            raw_entries = data
            legacy = True

        entries: dict[str, OutputEntry] = {}
        seen_outputs: dict[str, str] = {}
        for key, value in raw_entries.items():
            if legacy:
                if not isinstance(value, str):
                    raise ConfigError(f"Store entry '{key}' must map to an output name")
                entry = OutputEntry.from_legacy(key, value)
            else:
                if not isinstance(value, dict):
                    raise ConfigError(f"Store entry '{key}' must be a JSON object")
                entry = OutputEntry.from_dict(key, value)

            if entry.output_name in seen_outputs:
                raise ConfigError(
                    f"Store maps both '{seen_outputs[entry.output_name]}' and '{key}' "
                    f"to '{entry.output_name}'"
                )
            seen_outputs[entry.output_name] = key
            entries[key] = entry

        if legacy and entries:
            logger.info(f"Converted {len(entries)} entries from the flat store layout")
            return cls(_entries=entries)

        version = data.get("version", STORE_VERSION)
        return cls(
            version=version if isinstance(version, int) else STORE_VERSION,
            created=str(data.get("created", "")),
            modified=str(data.get("modified", "")),
            _entries=entries,
        )


class EncodedStoreManager:
    """
    Loads and saves the encoded-set store.

    Usage:
        manager = EncodedStoreManager("encoded.json")
        encoded = manager.load()
        encoded.upsert(OutputEntry(...))
        manager.save(encoded)
    """

    def __init__(self, store_path: str | Path):
        self.store_path = Path(store_path)

    def exists(self) -> bool:
        return self.store_path.exists()

    def load(self) -> EncodedSet:
        """
        Load the store.

        Returns:
            EncodedSet (empty if the file doesn't exist or is empty)

        Raises:
            ConfigError: the file can't be read or parsed. A broken store is
                never discarded, since starting empty would re-encode everything.
        """
        if not self.store_path.exists():
            logger.info(f"No store found at {self.store_path}, starting empty")
            return EncodedSet()

        try:
            with open(self.store_path, "r", encoding="utf-8") as f:
                text = f.read()
        except OSError as e:
            raise ConfigError(f"Could not read store {self.store_path}: {e}") from e

        if not text.strip():
            logger.info(f"Store {self.store_path} is empty, starting empty")
            return EncodedSet()

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in store {self.store_path}: {e}") from e

        encoded = EncodedSet.from_dict(data)
        logger.info(f"Loaded store with {encoded.entry_count} entries")
        return encoded

    def save(self, encoded: EncodedSet) -> None:
        """
        Save the store atomically (temp file + rename).

        Raises:
            FilesystemError: the store could not be written
        """
        temp_file = self.store_path.with_name(self.store_path.name + ".tmp")
        try:
            if self.store_path.parent != Path(""):
                self.store_path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(encoded.to_dict(), f, indent=2, ensure_ascii=False)
            temp_file.replace(self.store_path)
        except OSError as e:
            try:
                temp_file.unlink(missing_ok=True)
            except OSError:
                pass
            raise FilesystemError(f"Could not save store {self.store_path}: {e}") from e

        logger.debug(f"Saved store with {encoded.entry_count} entries")


class StoreLock:
    """
    Exclusive lock file next to the store, held for the duration of a run.

    Usage:
        with StoreLock("encoded.json"):
            ...

    Raises:
        StoreLockedError: the lock file already exists
    """

    def __init__(self, store_path: str | Path):
        store_path = Path(store_path)
        self.lock_path = store_path.with_name(store_path.name + ".lock")
        self._held = False

    def acquire(self) -> None:
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as e:
            holder = ""
            try:
                holder = self.lock_path.read_text(encoding="utf-8").strip()
            except OSError:
                pass
            raise StoreLockedError(
                f"Another run holds {self.lock_path}"
                + (f" (pid {holder})" if holder else "")
                + "; delete the lock file if that run is no longer alive"
            ) from e
        except OSError as e:
            raise ConfigError(f"Could not create lock file {self.lock_path}: {e}") from e

        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(str(os.getpid()))
        self._held = True
        logger.debug(f"Acquired {self.lock_path}")

    def release(self) -> None:
        if not self._held:
            return
        try:
            self.lock_path.unlink()
        except OSError as e:
            logger.warning(f"Could not remove lock file {self.lock_path}: {e}")
        self._held = False

    def __enter__(self) -> "StoreLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
