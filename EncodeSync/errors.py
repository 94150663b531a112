"""
Error kinds raised by the sync engine.

Fatal errors (config, store, naming collision) abort a run before anything is
mutated. Per-file errors (transcode, transfer, filesystem) are recorded on the
SyncResult and the run continues with the next file.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all sync errors."""


class ConfigError(SyncError):
    """Unreadable or invalid configuration or store file."""


class StoreLockedError(ConfigError):
    """Another run holds the lock on the encoded-set store."""


class NamingCollisionError(SyncError):
    """Two source files would be written under the same output name."""

    def __init__(self, collisions: dict[str, list[str]], message: str = ""):
        self.collisions = collisions
        if not message:
            names = ", ".join(sorted(collisions))
            message = f"Found a name collision with the current settings: {names}"
        super().__init__(message)

    def describe(self) -> str:
        lines = []
        for output_name, sources in sorted(self.collisions.items()):
            lines.append(f"{output_name} is the resulting file name for:")
            for source in sources:
                lines.append(f" - {source}")
        return "\n".join(lines)


class TranscodeFailed(SyncError):
    """The transcoder exited non-zero, timed out, or produced no output."""

    def __init__(self, message: str, exit_status: Optional[int] = None):
        self.exit_status = exit_status
        super().__init__(message)


class TransferError(SyncError):
    """A remote provider failed to list, download or upload a file."""


class FilesystemError(SyncError):
    """Permission or missing-path problem on copy, rename or delete."""
