"""
Sync configuration loaded from a JSON file.

Example config.json:
  {
    "inputDirectory": "/music/library",
    "outputDirectory": {"remote": "phone", "path": "Music"},
    "tempDirectory": "temp",
    "extensionsToEncode": ["flac", "wav"],
    "encodedExtension": "ogg",
    "copyCovers": true,
    "ffmpegParams": "-c:a libvorbis -q:a 6",
    "removeSquareBrackets": true
  }

Line (//) and block (/* */) comments are allowed.

Directories are either a plain string ("remote:path" selects rclone) or an
object with "remote" and "path" keys.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import json5

from .errors import ConfigError
from .filename_transform import BracketConfig

DEFAULT_CONFIG_FILENAME = "config.json"

Location = Union[str, dict]

# JSON key → (attribute, expected type)
_OPTIONAL_KEYS: dict[str, tuple[str, type]] = {
    "tempDirectory": ("temp_directory", str),
    "copyCovers": ("copy_covers", bool),
    "removeRoundBrackets": ("remove_round_brackets", bool),
    "removeSquareBrackets": ("remove_square_brackets", bool),
    "removeCurlyBrackets": ("remove_curly_brackets", bool),
    "removeAngleBrackets": ("remove_angle_brackets", bool),
    "workers": ("workers", int),
    "transcodeTimeout": ("transcode_timeout", int),
}


def normalize_extension(extension: str) -> str:
    """Lower-case and strip the leading dot: ".FLAC" → "flac"."""
    return extension.strip().lstrip(".").lower()


@dataclass
class SyncConfig:
    """All settings consumed by the sync engine."""

    # ── Locations ───────────────────────────────────────────────────────────
    input_directory: Location
    output_directory: Location
    # Local staging area for remote transfers
    temp_directory: str = "temp"

    # ── Encoding ────────────────────────────────────────────────────────────
    # Extensions (case-insensitive) that go through ffmpeg; others are copied
    extensions_to_encode: frozenset[str] = field(default_factory=frozenset)
    encoded_extension: str = "ogg"
    # Passed to ffmpeg verbatim between the input and the output path
    ffmpeg_params: str = ""
    copy_covers: bool = False

    # FFmpeg timeout in seconds per file.
    transcode_timeout: int = 300

    # Number of parallel copy/encode workers.
    # 0 = auto (CPU count, capped at 8), 1 = sequential.
    workers: int = 0

    # ── Output names ────────────────────────────────────────────────────────
    remove_round_brackets: bool = False
    remove_square_brackets: bool = False
    remove_curly_brackets: bool = False
    remove_angle_brackets: bool = False

    def __post_init__(self):
        self.extensions_to_encode = frozenset(
            normalize_extension(e) for e in self.extensions_to_encode if e.strip()
        )
        self.encoded_extension = self.encoded_extension.strip().lstrip(".")

    @property
    def brackets(self) -> BracketConfig:
        return BracketConfig(
            round=self.remove_round_brackets,
            square=self.remove_square_brackets,
            curly=self.remove_curly_brackets,
            angle=self.remove_angle_brackets,
        )

    def should_encode(self, extension: str) -> bool:
        """True if files with this extension go through the transcoder."""
        return normalize_extension(extension) in self.extensions_to_encode

    @property
    def effective_workers(self) -> int:
        if self.workers <= 0:
            return min(os.cpu_count() or 4, 8)
        return self.workers

    @classmethod
    def from_dict(cls, data: Any) -> "SyncConfig":
        """
        Build a config from parsed JSON.

        Raises:
            ConfigError: a required key is missing or a value has the wrong type
        """
        if not isinstance(data, dict):
            raise ConfigError("Config must be a JSON object")

        for key in ("inputDirectory", "outputDirectory", "extensionsToEncode",
                    "encodedExtension", "ffmpegParams"):
            if key not in data:
                raise ConfigError(f"Config is missing '{key}'")

        kwargs: dict[str, Any] = {
            "input_directory": _location(data, "inputDirectory"),
            "output_directory": _location(data, "outputDirectory"),
        }

        extensions = data["extensionsToEncode"]
        if not isinstance(extensions, list) or not all(isinstance(e, str) for e in extensions):
            raise ConfigError("'extensionsToEncode' must be a list of strings")
        kwargs["extensions_to_encode"] = frozenset(extensions)

        encoded_extension = data["encodedExtension"]
        if not isinstance(encoded_extension, str) or not encoded_extension.strip(" ."):
            raise ConfigError("'encodedExtension' must be a non-empty string")
        kwargs["encoded_extension"] = encoded_extension

        ffmpeg_params = data["ffmpegParams"]
        if not isinstance(ffmpeg_params, str):
            raise ConfigError("'ffmpegParams' must be a string")
        kwargs["ffmpeg_params"] = ffmpeg_params

        for key, (attribute, expected) in _OPTIONAL_KEYS.items():
            value = data.get(key)
            if value is None:
                continue
            # bool is an int subclass, don't accept true/false for numbers
            if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
                raise ConfigError(f"'{key}' must be of type {expected.__name__}")
            kwargs[attribute] = value

        return cls(**kwargs)

    @classmethod
    def load(cls, path: str | Path) -> "SyncConfig":
        """
        Read a config file.

        Raises:
            ConfigError: the file is missing, unreadable or invalid
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json5.load(f)
        except ValueError as e:
            raise ConfigError(f"Invalid JSON in config file {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Could not read config file {path}: {e}") from e
        return cls.from_dict(data)


def _location(data: dict, key: str) -> Location:
    value = data[key]
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        remote: Optional[str] = value.get("remote")
        path = value.get("path", "")
        if (remote is not None and not isinstance(remote, str)) or not isinstance(path, str):
            raise ConfigError(f"'{key}' remote and path must be strings")
        return {"remote": remote or "", "path": path}
    raise ConfigError(f"'{key}' must be a string or an object with remote and path")
