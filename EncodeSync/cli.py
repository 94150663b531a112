"""
Command-line entry point.

    encodesync [-c config.json] [-e encoded.json] [-y] [-q] [--dry-run]

Exit codes:
    0   success (or nothing to do)
    1   configuration or store problem, missing ffmpeg/rclone, locked store
    2   two source files would get the same output name
    3   the user declined the confirmation
    4   at least one file failed
    130 interrupted
"""

import argparse
import logging
import sys
from contextlib import nullcontext
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG_FILENAME, SyncConfig
from .encoded_store import DEFAULT_STORE_FILENAME, EncodedStoreManager, StoreLock
from .errors import ConfigError, NamingCollisionError, SyncError
from .file_provider import is_rclone_available
from .sync_executor import SyncExecutor
from .sync_planner import SyncPlanner
from .transcoder import FfmpegRunner, find_ffmpeg

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_COLLISION = 2
EXIT_DECLINED = 3
EXIT_FAILURES = 4
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="encodesync",
        description="Mirror a music folder into an encoded copy. Requires ffmpeg in PATH.",
    )
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_FILENAME,
                        help="Config file (default: %(default)s)")
    parser.add_argument("-e", "--encoded", default=DEFAULT_STORE_FILENAME,
                        help="File storing which songs are already encoded (default: %(default)s)")
    parser.add_argument("-y", "--yes", action="store_true",
                        help="Don't ask for confirmation before making changes")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="Suppress ffmpeg output")
    parser.add_argument("--dry-run", action="store_true",
                        help="Show what would be done without changing anything")
    parser.add_argument("--workers", type=int, default=None,
                        help="Parallel copy/encode workers (0 = auto, overrides the config)")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging verbosity (default: %(default)s)")
    return parser


def confirm(prompt: str = "Do you want to continue?") -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def run(args: argparse.Namespace) -> int:
    """Plan and execute one sync. Fatal errors propagate to main()."""
    config = SyncConfig.load(args.config)
    if args.workers is not None:
        config.workers = args.workers

    planner = SyncPlanner.from_config(config)
    if (planner.input_provider.is_remote or planner.output_provider.is_remote) \
            and not is_rclone_available():
        raise ConfigError("rclone not found, it is required for remote locations")

    ffmpeg = find_ffmpeg()
    if config.extensions_to_encode and not ffmpeg and not args.dry_run:
        raise ConfigError("ffmpeg not found, install it or add it to PATH")

    store_manager = EncodedStoreManager(args.encoded)
    lock = nullcontext() if args.dry_run else StoreLock(args.encoded)

    with lock:
        encoded = store_manager.load()
        plan = planner.plan(encoded.copy())
        print(plan.summary)

        if not plan.has_changes:
            return EXIT_OK

        if not args.yes and not args.dry_run and not confirm():
            print("Aborting")
            return EXIT_DECLINED

        executor = SyncExecutor(
            config,
            planner.input_provider,
            planner.output_provider,
            transcoder=FfmpegRunner(ffmpeg, quiet=args.quiet, timeout=config.transcode_timeout),
            ffmpeg=ffmpeg,
        )
        result = executor.execute(plan, encoded, store_manager, dry_run=args.dry_run)

    print(result.summary)
    if result.cancelled:
        return EXIT_INTERRUPTED
    return EXIT_FAILURES if result.has_errors else EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    try:
        return run(args)
    except NamingCollisionError as e:
        print(str(e), file=sys.stderr)
        print(e.describe(), file=sys.stderr)
        print("Rename the files or change the bracket settings.", file=sys.stderr)
        return EXIT_COLLISION
    except SyncError as e:
        logger.error(str(e))
        return EXIT_CONFIG
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
