"""
Identity Key - Matches source files against the encoded-set store.

The identity key of a source file is its location-relative path. A cheap
content fingerprint (size + mtime, no file read) tells whether the content
likely changed since the last run.

Lookup policy:
  1. Path match is authoritative.
  2. On a path miss, a stored entry whose path vanished from the listing and
     whose size, mtime and extension are identical is taken as the same file
     under a new name (a rename).
  3. Otherwise the file is new.
"""

from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING
import logging

from .filename_transform import split_name

if TYPE_CHECKING:
    from .encoded_store import EncodedSet, OutputEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceFile:
    """A file discovered at the top level of the input location."""

    path: str  # Relative to the input location
    size: int  # File size in bytes
    mtime: float  # Modification time

    @property
    def filename(self) -> str:
        return self.path.replace("\\", "/").rsplit("/", 1)[-1]

    @property
    def raw_name(self) -> str:
        """Filename without its extension."""
        return split_name(self.filename)[0]

    @property
    def extension(self) -> str:
        """Extension as listed, without the dot ("" if none)."""
        return split_name(self.filename)[1]

    @property
    def fingerprint(self) -> tuple[int, float]:
        return (self.size, self.mtime)


def identity_key(source: SourceFile) -> str:
    """Stable key used to look a source file up in the store."""
    return source.path


def fingerprint_matches(source: SourceFile, entry: "OutputEntry") -> bool:
    """True if size and mtime are exactly what was recorded."""
    if entry.size is None or entry.mtime is None:
        return False
    return source.size == entry.size and source.mtime == entry.mtime


@dataclass
class IdentityMatch:
    """Result of looking a source file up in the store."""

    entry: Optional["OutputEntry"] = None
    by_path: bool = False

    @property
    def is_rename(self) -> bool:
        return self.entry is not None and not self.by_path


class RenameIndex:
    """
    Stored entries that can still be claimed as a rename source.

    Only entries whose own path vanished from the current listing qualify.
    Entries without a recorded fingerprint never match.
    """

    def __init__(self, snapshot: "EncodedSet", current_keys: set[str]):
        self._by_fingerprint: dict[tuple[int, float, str], list[str]] = {}
        for key in sorted(snapshot.keys()):
            if key in current_keys:
                continue
            entry = snapshot.get(key)
            if entry is None or entry.size is None or entry.mtime is None:
                continue
            fp = (entry.size, entry.mtime, (entry.source_extension or "").lower())
            self._by_fingerprint.setdefault(fp, []).append(key)

    def claim(self, source: SourceFile) -> Optional[str]:
        """Take the first unclaimed key matching this file's fingerprint."""
        fp = (source.size, source.mtime, source.extension.lower())
        keys = self._by_fingerprint.get(fp)
        if not keys:
            return None
        return keys.pop(0)


def match_entry(
    source: SourceFile,
    snapshot: "EncodedSet",
    renames: RenameIndex,
) -> IdentityMatch:
    """
    Find the stored entry that corresponds to a source file.

    Args:
        source: File from the current listing
        snapshot: Store contents at the start of the run
        renames: Rename candidates; a matched candidate is consumed

    Returns:
        IdentityMatch (entry is None for a new file)
    """
    key = identity_key(source)
    entry = snapshot.get(key)
    if entry is not None:
        return IdentityMatch(entry=entry, by_path=True)

    old_key = renames.claim(source)
    if old_key is not None:
        logger.debug(f"Rename detected: {old_key} → {key}")
        return IdentityMatch(entry=snapshot.get(old_key), by_path=False)

    return IdentityMatch()
