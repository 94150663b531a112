"""
Change Classifier - Decides what to do with every file.

Compares a fresh listing of the input location with a snapshot of the
encoded-set store. Nothing is read from file contents: size+mtime is the
content gate and the source path is the identity.

Per source file:
  - not in store                        → ENCODE (or COPY if not encodable)
  - same path, fingerprint changed      → ENCODE / COPY (old output superseded)
  - same path, encode settings changed  → ENCODE / COPY
  - same path, output missing           → ENCODE / COPY
  - renamed (same size+mtime+extension) → RELINK (reuse the existing output)
  - same path, output name changed      → RELINK (bracket settings changed)
  - same path, no fingerprint (legacy)  → RELINK (adopt the existing output)
  - not in store, output already there  → RELINK (adopt the untracked output)
  - otherwise                           → SKIP
Stored entries nobody claimed → DELETE.

Execution order: DELETE, RELINK, COPY, ENCODE. Clearing stale outputs first
frees their names, and cheap work finishes before the transcoder runs.
"""

from dataclasses import dataclass, field
from typing import Optional
from enum import Enum, auto
import logging

from .config import SyncConfig
from .encoded_store import EncodedSet, OutputEntry
from .errors import NamingCollisionError
from .filename_transform import output_name_for, split_name
from .identity import RenameIndex, SourceFile, fingerprint_matches, identity_key, match_entry

logger = logging.getLogger(__name__)


# ─── Enums & Data Classes ─────────────────────────────────────────────────────


class SyncAction(Enum):
    """Type of sync action needed."""

    DELETE = auto()  # Source gone, remove output and store entry
    RELINK = auto()  # Reuse existing output under a new name
    COPY = auto()  # Copy source verbatim
    ENCODE = auto()  # Run the transcoder
    SKIP = auto()  # Already in sync


EXECUTION_ORDER = [SyncAction.DELETE, SyncAction.RELINK, SyncAction.COPY, SyncAction.ENCODE]


@dataclass
class SyncItem:
    """A single action in the sync plan."""

    action: SyncAction
    identity_key: str

    # Current source file (None for DELETE)
    source: Optional[SourceFile] = None

    # Store entry this file matched (None for new files)
    entry: Optional[OutputEntry] = None

    # Name in the output location after this action
    output_name: str = ""

    # RELINK only: what to do when the old output has vanished
    fallback: Optional[SyncAction] = None

    # COPY/ENCODE only: drop the superseded output during the DELETE stage,
    # because another action takes over its name
    release_first: bool = False

    reason: str = ""

    @property
    def old_output_name(self) -> Optional[str]:
        return self.entry.output_name if self.entry else None

    @property
    def description(self) -> str:
        if self.action == SyncAction.DELETE:
            return f"Delete {self.output_name}"
        if self.action == SyncAction.RELINK:
            if self.old_output_name in (None, self.output_name):
                return f"Relink {self.identity_key} ({self.reason})"
            return f"Rename {self.old_output_name} to {self.output_name}"
        if self.action == SyncAction.ENCODE:
            return f"Encode {self.identity_key} to {self.output_name}"
        if self.action == SyncAction.COPY:
            return f"Copy {self.identity_key} to {self.output_name}"
        return f"Skip {self.identity_key}"


@dataclass
class StorageSummary:
    """Bytes of source data the plan will move."""

    bytes_to_copy: int = 0
    bytes_to_encode: int = 0


@dataclass
class SyncPlan:
    """Complete sync plan with all actions needed."""

    # Grouped action lists
    to_delete: list[SyncItem] = field(default_factory=list)
    to_relink: list[SyncItem] = field(default_factory=list)
    to_copy: list[SyncItem] = field(default_factory=list)
    to_encode: list[SyncItem] = field(default_factory=list)
    to_skip: list[SyncItem] = field(default_factory=list)

    # Stats
    total_source_files: int = 0
    total_store_entries: int = 0

    # Storage
    storage: StorageSummary = field(default_factory=StorageSummary)

    def group(self, action: SyncAction) -> list[SyncItem]:
        return {
            SyncAction.DELETE: self.to_delete,
            SyncAction.RELINK: self.to_relink,
            SyncAction.COPY: self.to_copy,
            SyncAction.ENCODE: self.to_encode,
            SyncAction.SKIP: self.to_skip,
        }[action]

    def add(self, item: SyncItem) -> None:
        self.group(item.action).append(item)

    @property
    def actions(self) -> list[SyncItem]:
        """All items in execution order (SKIPs last)."""
        ordered: list[SyncItem] = []
        for action in EXECUTION_ORDER:
            ordered.extend(self.group(action))
        ordered.extend(self.to_skip)
        return ordered

    @property
    def counts(self) -> dict[SyncAction, int]:
        return {action: len(self.group(action)) for action in SyncAction}

    @property
    def has_changes(self) -> bool:
        return any([self.to_delete, self.to_relink, self.to_copy, self.to_encode])

    @property
    def summary(self) -> str:
        lines = []
        if self.to_encode:
            lines.append(f"  🎛️  {len(self.to_encode)} files to encode ({_fmt_bytes(self.storage.bytes_to_encode)})")
        if self.to_copy:
            lines.append(f"  📥 {len(self.to_copy)} files to copy ({_fmt_bytes(self.storage.bytes_to_copy)})")
        if self.to_relink:
            lines.append(f"  🔗 {len(self.to_relink)} files to rename")
        if self.to_delete:
            lines.append(f"  🗑️  {len(self.to_delete)} files to delete")

        if not lines:
            return f"✅ Everything is in sync! ({len(self.to_skip)} files)"

        header = (
            f"Sync Plan ({self.total_source_files} source files, "
            f"{self.total_store_entries} stored, {len(self.to_skip)} unchanged):"
        )
        return header + "\n" + "\n".join(lines)


# ─── Classifier ────────────────────────────────────────────────────────────────


class ChangeClassifier:
    """
    Computes the sync plan for a listing against a store snapshot.

    Usage:
        classifier = ChangeClassifier(config)
        plan = classifier.classify(source_files, encoded_set.copy())
        print(plan.summary)
    """

    def __init__(self, config: SyncConfig):
        self.config = config

    # ── Public API ──────────────────────────────────────────────────────────

    def classify(
        self,
        source_files: list[SourceFile],
        snapshot: EncodedSet,
        output_names: Optional[set[str]] = None,
    ) -> SyncPlan:
        """
        Compute the full sync plan.

        Args:
            source_files: Fresh listing of the input location
            snapshot: Store contents at the start of the run (not modified)
            output_names: Files currently in the output location. When given,
                entries whose output vanished are produced again.

        Returns:
            SyncPlan

        Raises:
            NamingCollisionError: two actions would write the same output name
        """
        plan = SyncPlan(
            total_source_files=len(source_files),
            total_store_entries=snapshot.entry_count,
        )

        current_keys = {identity_key(s) for s in source_files}
        renames = RenameIndex(snapshot, current_keys)
        owned_names = {entry.output_name for entry in snapshot.entries.values()}
        claimed: set[str] = set()

        # ===== Phase 1: Classify every source file =====
        for source in sorted(source_files, key=lambda s: s.path):
            match = match_entry(source, snapshot, renames)
            if match.entry is not None:
                claimed.add(match.entry.identity_key)
            item = self._classify_one(source, match.entry, match.is_rename, output_names, owned_names)
            logger.debug(f"{item.action.name}: {source.path} ({item.reason})")
            plan.add(item)

            if item.action == SyncAction.ENCODE:
                plan.storage.bytes_to_encode += source.size
            elif item.action == SyncAction.COPY:
                plan.storage.bytes_to_copy += source.size

        # ===== Phase 2: Orphans =====
        for key in sorted(snapshot.keys() - claimed):
            entry = snapshot.get(key)
            if entry is None:
                continue
            plan.add(SyncItem(
                action=SyncAction.DELETE,
                identity_key=key,
                entry=entry,
                output_name=entry.output_name,
                reason="source removed",
            ))

        # ===== Phase 3: Output names =====
        self._check_collisions(plan)
        self._mark_released_names(plan)
        plan.to_relink[:] = _order_relinks(plan.to_relink)

        return plan

    # ── Private Helpers ─────────────────────────────────────────────────────

    def _classify_one(
        self,
        source: SourceFile,
        entry: Optional[OutputEntry],
        is_rename: bool,
        output_names: Optional[set[str]],
        owned_names: set[str],
    ) -> SyncItem:
        key = identity_key(source)
        target = output_name_for(source, self.config)
        fresh = SyncAction.ENCODE if self.config.should_encode(source.extension) else SyncAction.COPY

        if entry is None:
            if output_names is not None and target in output_names and target not in owned_names:
                return SyncItem(SyncAction.RELINK, key, source=source, output_name=target,
                                fallback=fresh, reason="adopting untracked output")
            return SyncItem(fresh, key, source=source, output_name=target, reason="new file")

        stale_reason = self._stale_reason(source, entry, is_rename, output_names)
        if stale_reason:
            return SyncItem(fresh, key, source=source, entry=entry, output_name=target,
                            reason=stale_reason)

        if is_rename:
            return SyncItem(SyncAction.RELINK, key, source=source, entry=entry,
                            output_name=target, fallback=fresh,
                            reason=f"renamed from {entry.identity_key}")
        if not entry.has_fingerprint:
            return SyncItem(SyncAction.RELINK, key, source=source, entry=entry,
                            output_name=target, fallback=fresh,
                            reason="adopting output without fingerprint")
        if entry.output_name != target:
            return SyncItem(SyncAction.RELINK, key, source=source, entry=entry,
                            output_name=target, fallback=fresh,
                            reason="output name changed")
        return SyncItem(SyncAction.SKIP, key, source=source, entry=entry,
                        output_name=entry.output_name, reason="unchanged")

    def _stale_reason(
        self,
        source: SourceFile,
        entry: OutputEntry,
        is_rename: bool,
        output_names: Optional[set[str]],
    ) -> str:
        """Why the stored output can't be reused ("" if it can)."""
        if not is_rename and entry.has_fingerprint and not fingerprint_matches(source, entry):
            return "content changed"

        should_encode = self.config.should_encode(source.extension)
        output_ext = split_name(entry.output_name)[1].lower()
        if not entry.has_fingerprint:
            # Legacy entries only record names, so judge them by the output extension
            expected = self.config.encoded_extension if should_encode else source.extension
            if output_ext != expected.lower():
                return "encode settings changed"
        elif entry.was_encoded != should_encode:
            return "encode settings changed"
        elif should_encode and output_ext != self.config.encoded_extension.lower():
            return "encoded extension changed"

        if output_names is not None and entry.output_name not in output_names:
            return "output missing"
        return ""

    def _check_collisions(self, plan: SyncPlan) -> None:
        """Every output name must belong to exactly one surviving action."""
        owners: dict[str, list[str]] = {}
        for item in plan.actions:
            if item.action == SyncAction.DELETE:
                continue
            owners.setdefault(item.output_name, []).append(item.identity_key)

        collisions = {name: keys for name, keys in owners.items() if len(keys) > 1}
        if collisions:
            raise NamingCollisionError(collisions)

    def _mark_released_names(self, plan: SyncPlan) -> None:
        """Superseded outputs whose name another action takes over go first."""
        targets = {item.output_name for item in plan.actions if item.action != SyncAction.DELETE}
        for item in plan.to_copy + plan.to_encode:
            old_name = item.old_output_name
            if old_name and old_name != item.output_name and old_name in targets:
                item.release_first = True


def _order_relinks(relinks: list[SyncItem]) -> list[SyncItem]:
    """
    Order renames so no rename overwrites an output another rename still needs.

    A relink whose target is the old name of another relink runs after it.

    Raises:
        NamingCollisionError: the renames form a cycle
    """
    by_old_name = {
        item.old_output_name: item
        for item in relinks
        if item.old_output_name and item.old_output_name != item.output_name
    }

    ordered: list[SyncItem] = []
    done: set[int] = set()
    visiting: set[int] = set()

    def visit(item: SyncItem) -> None:
        if id(item) in done:
            return
        if id(item) in visiting:
            raise NamingCollisionError(
                {item.output_name: [item.identity_key]},
                f"Renames form a cycle through {item.output_name}",
            )
        visiting.add(id(item))
        blocker = by_old_name.get(item.output_name)
        if blocker is not None and blocker is not item:
            visit(blocker)
        visiting.discard(id(item))
        done.add(id(item))
        ordered.append(item)

    for item in relinks:
        visit(item)
    return ordered


# ─── Helpers ───────────────────────────────────────────────────────────────────


def _fmt_bytes(val: int) -> str:
    """Format bytes as human-readable string."""
    v = float(abs(val))
    for unit in ["B", "KB", "MB", "GB"]:
        if v < 1024:
            return f"{v:.1f} {unit}"
        v /= 1024
    return f"{v:.1f} TB"
