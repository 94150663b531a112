"""
EncodeSync - Keeps an encoded mirror of a music folder up to date

Core components:
- SyncPlanner: Lists input and output, computes the sync plan
- ChangeClassifier: Decides SKIP / COPY / ENCODE / RELINK / DELETE per file
- SyncExecutor: Executes the sync plan (copy, transcode, rename, delete)
- EncodedStoreManager: Tracks source path → output file relationships
- Transcoder: Runs ffmpeg with the configured parameters
- FileProviders: Local directories and rclone remotes
"""

from .config import SyncConfig
from .errors import (
    SyncError,
    ConfigError,
    StoreLockedError,
    NamingCollisionError,
    TranscodeFailed,
    TransferError,
    FilesystemError,
)
from .filename_transform import BracketConfig, strip_brackets, transform, output_name_for
from .identity import SourceFile, identity_key
from .encoded_store import EncodedStoreManager, EncodedSet, OutputEntry, StoreLock
from .change_classifier import ChangeClassifier, SyncAction, SyncPlan, SyncItem
from .sync_planner import SyncPlanner
from .sync_executor import SyncExecutor, SyncResult, SyncProgress, ItemOutcome
from .transcoder import (
    FfmpegRunner,
    TranscoderRunner,
    TranscodeResult,
    transcode,
    find_ffmpeg,
)
from .cover_art import CoverArtCopier
from .file_provider import FileProvider, LocalFileProvider, RcloneFileProvider, provider_for

__all__ = [
    # Configuration
    "SyncConfig",
    # Errors
    "SyncError",
    "ConfigError",
    "StoreLockedError",
    "NamingCollisionError",
    "TranscodeFailed",
    "TransferError",
    "FilesystemError",
    # Output names
    "BracketConfig",
    "strip_brackets",
    "transform",
    "output_name_for",
    # Identity
    "SourceFile",
    "identity_key",
    # Store
    "EncodedStoreManager",
    "EncodedSet",
    "OutputEntry",
    "StoreLock",
    # Planning
    "ChangeClassifier",
    "SyncAction",
    "SyncPlan",
    "SyncItem",
    "SyncPlanner",
    # Execution
    "SyncExecutor",
    "SyncResult",
    "SyncProgress",
    "ItemOutcome",
    # Transcoding
    "FfmpegRunner",
    "TranscoderRunner",
    "TranscodeResult",
    "transcode",
    "find_ffmpeg",
    # Cover art
    "CoverArtCopier",
    # Locations
    "FileProvider",
    "LocalFileProvider",
    "RcloneFileProvider",
    "provider_for",
]
