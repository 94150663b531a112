"""
Transcoder - Runs ffmpeg as a black box.

The command line is always:
    ffmpeg -i <input> <ffmpegParams...> <output>

The codec and quality live entirely in the configured parameter string; the
engine never looks inside it. The executor depends only on the
TranscoderRunner interface, so tests can substitute a fake runner.
"""

import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence

from .errors import TranscodeFailed

logger = logging.getLogger(__name__)


class TranscoderRunner(Protocol):
    """Anything that can run a transcoder command and report its exit status."""

    def run(self, args: Sequence[str]) -> int:
        ...


@dataclass
class TranscodeResult:
    """Result of a transcode operation."""

    success: bool
    source_path: Path
    output_path: Optional[Path]
    exit_status: Optional[int] = None
    error_message: Optional[str] = None


def find_ffmpeg() -> Optional[str]:
    """Find ffmpeg binary. Returns path or None."""
    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg:
        return ffmpeg

    # Common installation locations
    common_paths = [
        # Windows
        r"C:\Program Files\ffmpeg\bin\ffmpeg.exe",
        r"C:\ffmpeg\bin\ffmpeg.exe",
        # macOS (Homebrew)
        "/usr/local/bin/ffmpeg",
        "/opt/homebrew/bin/ffmpeg",
        # Linux
        "/usr/bin/ffmpeg",
    ]

    for path in common_paths:
        if Path(path).exists():
            return path

    return None


def build_command(
    ffmpeg: str,
    source_path: str | Path,
    ffmpeg_params: str,
    output_path: str | Path,
) -> list[str]:
    """Build the transcoder argument list. The params string is split shell-style."""
    return [ffmpeg, "-i", str(source_path), *shlex.split(ffmpeg_params), str(output_path)]


class FfmpegRunner:
    """
    Runs ffmpeg in a subprocess.

    Args:
        ffmpeg_path: Binary to run (default: located with find_ffmpeg)
        quiet: Capture ffmpeg's output instead of passing it through
        timeout: Seconds before the process is killed
    """

    def __init__(self, ffmpeg_path: Optional[str] = None, quiet: bool = False,
                 timeout: int = 300):
        self.ffmpeg_path = ffmpeg_path or find_ffmpeg()
        self.quiet = quiet
        self.timeout = timeout

    def run(self, args: Sequence[str]) -> int:
        """Run a command and return its exit status.

        Raises:
            TranscodeFailed: the process could not be started or timed out
        """
        try:
            result = subprocess.run(
                list(args),
                stdin=subprocess.DEVNULL,  # ffmpeg reads the terminal otherwise
                capture_output=self.quiet,
                text=True,
                encoding="utf-8",
                errors="replace",  # Handle non-UTF8 bytes gracefully
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise TranscodeFailed(f"Transcoding timed out after {self.timeout}s") from e
        except OSError as e:
            raise TranscodeFailed(f"Could not start ffmpeg: {e}") from e

        if result.returncode != 0 and self.quiet and result.stderr:
            logger.debug(f"ffmpeg stderr: {result.stderr[-500:]}")
        return result.returncode


def transcode(
    runner: TranscoderRunner,
    ffmpeg: str,
    source_path: str | Path,
    output_path: str | Path,
    ffmpeg_params: str,
) -> TranscodeResult:
    """
    Transcode one file.

    Args:
        runner: Capability that runs the command
        ffmpeg: Transcoder executable
        source_path: Local input file
        output_path: Local output file (must not exist yet)
        ffmpeg_params: Opaque parameter string from the config

    Returns:
        TranscodeResult with output path and status
    """
    source_path = Path(source_path)
    output_path = Path(output_path)

    if not source_path.exists():
        return TranscodeResult(
            success=False,
            source_path=source_path,
            output_path=None,
            error_message=f"Source file not found: {source_path}",
        )

    cmd = build_command(ffmpeg, source_path, ffmpeg_params, output_path)
    logger.debug(f"Running: {shlex.join(cmd)}")

    try:
        returncode = runner.run(cmd)
    except TranscodeFailed as e:
        return TranscodeResult(
            success=False,
            source_path=source_path,
            output_path=None,
            error_message=str(e),
        )

    if returncode != 0:
        return TranscodeResult(
            success=False,
            source_path=source_path,
            output_path=None,
            exit_status=returncode,
            error_message=f"ffmpeg failed with exit status {returncode}",
        )

    if not output_path.exists():
        return TranscodeResult(
            success=False,
            source_path=source_path,
            output_path=None,
            exit_status=returncode,
            error_message="Output file not created",
        )

    logger.info(f"Transcoded {source_path.name} → {output_path.name}")
    return TranscodeResult(
        success=True,
        source_path=source_path,
        output_path=output_path,
        exit_status=returncode,
    )
