"""
Sync Executor - Carries out a sync plan.

The executor takes a SyncPlan (from ChangeClassifier) and:
1. Deletes outputs whose source is gone
2. Renames outputs whose source was renamed or whose name changed
3. Copies and encodes new or changed files in a worker pool

Workers only touch files. The main thread is the single writer of the store:
it applies each finished action to the EncodedSet and saves it right away, so
an interrupted run loses at most the actions still in flight.
"""

import logging
import shutil
from concurrent.futures import ThreadPoolExecutor, as_completed, Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .change_classifier import SyncAction, SyncItem, SyncPlan
from .config import SyncConfig
from .cover_art import CoverArtCopier
from .encoded_store import EncodedSet, EncodedStoreManager, OutputEntry
from .errors import NamingCollisionError, SyncError, TranscodeFailed
from .file_provider import FileProvider
from .transcoder import FfmpegRunner, TranscoderRunner, transcode

logger = logging.getLogger(__name__)


@dataclass
class SyncProgress:
    """Progress info for sync callbacks."""

    stage: str  # "delete", "relink", "transfer"
    current: int
    total: int
    current_item: Optional[SyncItem] = None
    message: str = ""


@dataclass
class ItemOutcome:
    """What one action did to the output location, and the store change it implies."""

    item: SyncItem
    action: SyncAction  # Action actually performed (a RELINK may fall back)
    success: bool
    entry: Optional[OutputEntry] = None  # Entry to upsert
    removed_keys: list[str] = field(default_factory=list)  # Entries to drop first
    cover_copied: bool = False
    counted: bool = True  # False for preparatory steps of another action
    error: Optional[str] = None


@dataclass
class SyncResult:
    """Result of a sync operation."""

    success: bool = True
    files_skipped: int = 0
    files_copied: int = 0
    files_encoded: int = 0
    files_relinked: int = 0
    files_deleted: int = 0
    covers_copied: int = 0
    cancelled: bool = False
    errors: list[tuple[str, str]] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def files_failed(self) -> int:
        return len(self.errors)

    def count(self, action: SyncAction) -> None:
        if action == SyncAction.SKIP:
            self.files_skipped += 1
        elif action == SyncAction.COPY:
            self.files_copied += 1
        elif action == SyncAction.ENCODE:
            self.files_encoded += 1
        elif action == SyncAction.RELINK:
            self.files_relinked += 1
        elif action == SyncAction.DELETE:
            self.files_deleted += 1

    @property
    def summary(self) -> str:
        lines = [
            f"  Skipped:  {self.files_skipped}",
            f"  Copied:   {self.files_copied}",
            f"  Encoded:  {self.files_encoded}",
            f"  Relinked: {self.files_relinked}",
            f"  Deleted:  {self.files_deleted}",
            f"  Failed:   {self.files_failed}",
        ]
        if self.covers_copied:
            lines.append(f"  Cover art copied for {self.covers_copied} files")
        for description, message in self.errors:
            lines.append(f"  ❌ {description}: {message}")

        if self.cancelled:
            status = "Sync cancelled"
        elif self.success:
            status = "Sync completed"
        else:
            status = "Sync completed with errors"
        return f"{status}:\n" + "\n".join(lines)


class SyncExecutor:
    """
    Executes a sync plan against the output location.

    Usage:
        executor = SyncExecutor(config, input_provider, output_provider)
        result = executor.execute(plan, encoded_set, store_manager)
    """

    def __init__(
        self,
        config: SyncConfig,
        input_provider: FileProvider,
        output_provider: FileProvider,
        transcoder: Optional[TranscoderRunner] = None,
        ffmpeg: Optional[str] = None,
        cover_copier: Optional[CoverArtCopier] = None,
        max_workers: int = 0,
    ):
        self.config = config
        self.input_provider = input_provider
        self.output_provider = output_provider
        self.transcoder = transcoder or FfmpegRunner(ffmpeg, timeout=config.transcode_timeout)
        self.ffmpeg = ffmpeg or "ffmpeg"
        self.cover_copier = cover_copier or CoverArtCopier()

        # 0 = use the config (which itself defaults to auto), 1 = sequential
        self._max_workers = max_workers if max_workers > 0 else config.effective_workers

    # ── Public API ──────────────────────────────────────────────────────────

    def execute(
        self,
        plan: SyncPlan,
        encoded_set: EncodedSet,
        store_manager: Optional[EncodedStoreManager] = None,
        dry_run: bool = False,
        progress_callback: Optional[Callable[[SyncProgress], None]] = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> SyncResult:
        """
        Execute the sync plan.

        Args:
            plan: The computed sync plan.
            encoded_set: The live store; updated as actions complete.
            store_manager: Saves the store after every committed action.
            dry_run: If True, log and count every action without doing it.
            progress_callback: Optional callback for progress updates.
            is_cancelled: Optional callback returning True if the user cancelled.

        Raises:
            FilesystemError / TransferError: the output location is unusable
            FilesystemError: the store could not be saved
        """
        result = SyncResult()
        result.files_skipped = len(plan.to_skip)

        if dry_run:
            self._execute_dry_run(plan, result, progress_callback)
            return result

        # ===== Pre-flight: output location =====
        self.output_provider.makedirs()
        leftovers = self.output_provider.cleanup_staging()
        if leftovers:
            logger.info(f"Removed {leftovers} staging files left by an interrupted run")

        def _check_cancelled() -> bool:
            if is_cancelled and is_cancelled():
                result.cancelled = True
                return True
            return False

        def _commit(outcome: ItemOutcome) -> None:
            self._commit(outcome, encoded_set, store_manager, result)

        try:
            # ===== Stage 1: Deletes and released names =====
            self._execute_sequential(
                "delete", plan.to_delete + [i for i in plan.to_copy + plan.to_encode if i.release_first],
                _commit, progress_callback, _check_cancelled,
            )

            # ===== Stage 2: Renames =====
            if not result.cancelled:
                self._execute_sequential(
                    "relink", plan.to_relink, _commit, progress_callback, _check_cancelled,
                )

            # ===== Stage 3: Copies and encodes =====
            if not result.cancelled:
                self._execute_transfers(
                    plan.to_copy + plan.to_encode, _commit, progress_callback, _check_cancelled,
                )
        except KeyboardInterrupt:
            logger.warning("Interrupted, store saved with the actions completed so far")
            result.cancelled = True

        result.success = not result.has_errors and not result.cancelled
        return result

    def execute_item(self, item: SyncItem, encoded_set: EncodedSet,
                     dry_run: bool = False) -> ItemOutcome:
        """Perform a single action and apply it to the store (without saving)."""
        if dry_run:
            logger.info(_would(item))
            return ItemOutcome(item=item, action=item.action, success=True)

        outcome = self._perform(item)
        if outcome.success:
            self._apply(outcome, encoded_set)
        return outcome

    # ── Stage Implementations ───────────────────────────────────────────────

    def _execute_dry_run(self, plan: SyncPlan, result: SyncResult, progress_callback) -> None:
        changes = [item for item in plan.actions if item.action != SyncAction.SKIP]
        for i, item in enumerate(changes):
            logger.info(_would(item))
            if progress_callback:
                progress_callback(SyncProgress("dry_run", i + 1, len(changes), item, item.description))
            result.count(item.action)

    def _execute_sequential(self, stage, items, commit, progress_callback, check_cancelled) -> None:
        if not items:
            return

        if progress_callback:
            progress_callback(SyncProgress(stage, 0, len(items), message=f"Running {stage} stage..."))

        for i, item in enumerate(items):
            if check_cancelled():
                return
            if item.action in (SyncAction.COPY, SyncAction.ENCODE):
                outcome = self._release(item)
            else:
                outcome = self._perform(item)
            commit(outcome)
            if progress_callback:
                progress_callback(SyncProgress(stage, i + 1, len(items), item, item.description))

    def _execute_transfers(self, items, commit, progress_callback, check_cancelled) -> None:
        if not items:
            return

        total = len(items)
        completed_count = 0
        if progress_callback:
            progress_callback(SyncProgress("transfer", 0, total, message="Copying and encoding..."))

        workers = self._max_workers
        logger.info(f"Processing {total} files with {workers} workers")

        # ── Parallel copy/encode ────────────────────────────────────────
        # Workers fetch, transform and publish. Results are committed here,
        # one by one, as they complete.
        pool = ThreadPoolExecutor(max_workers=workers)
        future_to_item: dict[Future, SyncItem] = {}
        committed: set[Future] = set()

        def _finish(future: Future) -> None:
            nonlocal completed_count
            item = future_to_item[future]
            committed.add(future)
            try:
                outcome = future.result()
            except Exception as e:
                logger.error(f"Worker exception for {item.description}: {e}")
                outcome = ItemOutcome(item=item, action=item.action, success=False,
                                      error=f"Worker error: {e}")
            commit(outcome)
            completed_count += 1
            if progress_callback:
                progress_callback(SyncProgress("transfer", completed_count, total, item, item.description))

        interrupted = False
        try:
            for item in items:
                if check_cancelled():
                    break
                future_to_item[pool.submit(self._perform, item)] = item

            for future in as_completed(future_to_item):
                _finish(future)
                if check_cancelled():
                    break
        except KeyboardInterrupt:
            interrupted = True
        finally:
            # Cancel pending futures; running ones finish and are committed below
            for f in future_to_item:
                f.cancel()
            pool.shutdown(wait=True)

        for future in future_to_item:
            if future not in committed and future.done() and not future.cancelled():
                _finish(future)

        if interrupted:
            raise KeyboardInterrupt

    # ── Single Actions ──────────────────────────────────────────────────────

    def _perform(self, item: SyncItem, action: Optional[SyncAction] = None) -> ItemOutcome:
        """Do the file work of one action. Runs in a worker thread."""
        action = action or item.action
        try:
            if action == SyncAction.DELETE:
                return self._delete(item)
            if action == SyncAction.RELINK:
                return self._relink(item)
            if action in (SyncAction.COPY, SyncAction.ENCODE):
                return self._produce(item, action)
            return ItemOutcome(item=item, action=SyncAction.SKIP, success=True)
        except (SyncError, OSError) as e:
            logger.error(f"Failed: {item.description}: {e}")
            return ItemOutcome(item=item, action=action, success=False, error=str(e))

    def _delete(self, item: SyncItem) -> ItemOutcome:
        if self.output_provider.delete(item.output_name):
            logger.info(f"Deleted {item.output_name}")
        else:
            logger.info(f"Output {item.output_name} was already gone")
        return ItemOutcome(item=item, action=SyncAction.DELETE, success=True,
                           removed_keys=[item.identity_key])

    def _release(self, item: SyncItem) -> ItemOutcome:
        """Drop a superseded output early so another action can take its name."""
        entry = item.entry
        try:
            if entry is None:
                raise SyncError("no superseded output to remove")
            self.output_provider.delete(entry.output_name)
        except (SyncError, OSError) as e:
            logger.error(f"Failed to remove superseded output for {item.identity_key}: {e}")
            return ItemOutcome(item=item, action=item.action, success=False, error=str(e))
        logger.info(f"Removed superseded {entry.output_name}")
        # Counted once the replacement is produced
        return ItemOutcome(item=item, action=item.action, success=True,
                           removed_keys=[entry.identity_key], counted=False)

    def _relink(self, item: SyncItem) -> ItemOutcome:
        entry = item.entry
        # Without an entry the output is adopted under its current name
        old_name = entry.output_name if entry is not None else item.output_name

        if not self.output_provider.exists(old_name):
            logger.info(f"Output {old_name} is missing, producing it again")
            return self._perform(item, item.fallback or SyncAction.COPY)

        if entry is None:
            logger.info(f"Adopted existing {old_name}")
        elif entry.output_name != item.output_name:
            self.output_provider.rename(entry.output_name, item.output_name)
            logger.info(f"Renamed {entry.output_name} → {item.output_name}")

        return ItemOutcome(
            item=item,
            action=SyncAction.RELINK,
            success=True,
            entry=self._entry_for(item, item.fallback == SyncAction.ENCODE),
            removed_keys=[entry.identity_key] if entry and entry.identity_key != item.identity_key else [],
        )

    def _produce(self, item: SyncItem, action: SyncAction) -> ItemOutcome:
        """Copy or encode a source into a staging file, then publish it."""
        source = item.source
        if source is None:
            raise SyncError(f"{item.description}: no source file")
        cover_copied = False

        with self.input_provider.fetch(source.path) as local_source:
            staged = self.output_provider.staging_path(item.output_name)
            try:
                if action == SyncAction.ENCODE:
                    transcode_result = transcode(
                        self.transcoder, self.ffmpeg, local_source, staged,
                        self.config.ffmpeg_params,
                    )
                    if not transcode_result.success:
                        raise TranscodeFailed(
                            transcode_result.error_message or "Transcoding failed",
                            transcode_result.exit_status,
                        )
                    if self.config.copy_covers:
                        cover_copied = self.cover_copier.copy(local_source, staged)
                else:
                    shutil.copy2(local_source, staged)
                    logger.info(f"Copied {source.path}")

                self.output_provider.publish(staged, item.output_name)
            finally:
                Path(staged).unlink(missing_ok=True)

        old_name = item.old_output_name
        if old_name and old_name != item.output_name and not item.release_first:
            self.output_provider.delete(old_name)
            logger.info(f"Removed superseded {old_name}")

        removed = []
        if item.entry is not None and item.entry.identity_key != item.identity_key:
            removed.append(item.entry.identity_key)
        return ItemOutcome(
            item=item,
            action=action,
            success=True,
            entry=self._entry_for(item, action == SyncAction.ENCODE),
            removed_keys=removed,
            cover_copied=cover_copied,
        )

    # ── Store Updates (main thread only) ────────────────────────────────────

    def _commit(self, outcome: ItemOutcome, encoded_set: EncodedSet,
                store_manager: Optional[EncodedStoreManager], result: SyncResult) -> None:
        if not outcome.success:
            result.errors.append((outcome.item.description, outcome.error or "Failed"))
            return

        try:
            self._apply(outcome, encoded_set)
        except NamingCollisionError as e:
            result.errors.append((outcome.item.description, str(e)))
            return

        if outcome.counted:
            result.count(outcome.action)
        if outcome.cover_copied:
            result.covers_copied += 1
        if store_manager is not None:
            store_manager.save(encoded_set)

    @staticmethod
    def _apply(outcome: ItemOutcome, encoded_set: EncodedSet) -> None:
        """Remove superseded entries, then upsert.

        Raises:
            NamingCollisionError: a surviving entry owns the new output name
                (the store is left untouched)
        """
        entry = outcome.entry
        if entry is not None:
            owner = encoded_set.find_by_output_name(entry.output_name)
            if (owner is not None and owner.identity_key != entry.identity_key
                    and owner.identity_key not in outcome.removed_keys):
                raise NamingCollisionError(
                    {entry.output_name: [owner.identity_key, entry.identity_key]}
                )
        for key in outcome.removed_keys:
            encoded_set.remove(key)
        if entry is not None:
            encoded_set.upsert(entry)

    @staticmethod
    def _entry_for(item: SyncItem, was_encoded: bool) -> OutputEntry:
        source = item.source
        if source is None:
            raise SyncError(f"{item.description}: no source file")
        return OutputEntry(
            identity_key=item.identity_key,
            output_name=item.output_name,
            source_extension=source.extension,
            was_encoded=was_encoded,
            size=source.size,
            mtime=source.mtime,
        )


def _would(item: SyncItem) -> str:
    description = item.description
    return f"Would {description[:1].lower()}{description[1:]}"
