"""
Three-way merge of translation maps.

Merging compares each key of ``local`` and ``remote`` against the ``ancestor``
snapshot taken at the last successful sync. Keys missing from one side are
treated as unchanged on that side; deletions are never inferred. When both
sides changed a key to different values the provenance tag breaks the tie,
and equal tags leave the key undecided for the user.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional

from ..models.translation import TranslationEntry, TranslationMap
from ..utils.errors import MergeConflictError
from ..utils.logging import get_logger


logger = get_logger("lexisync.sync.merge")


class ConflictOutcome(Enum):
    """Which side won a key changed on both sides."""
    LOCAL = "local"
    REMOTE = "remote"
    UNDECIDED = "undecided"


class ConflictResolution(Enum):
    """User choice for an undecided conflict."""
    KEEP_LOCAL = "keep_local"
    TAKE_REMOTE = "take_remote"


@dataclass(frozen=True)
class ConflictEntry:
    """A key changed differently on both sides."""
    key: str
    local: TranslationEntry
    remote: TranslationEntry
    ancestor: Optional[TranslationEntry]
    outcome: ConflictOutcome = ConflictOutcome.UNDECIDED


@dataclass
class MergeStatistics:
    """Per-category key counts of a merge."""
    unchanged: int = 0
    local_modified: int = 0
    local_added: int = 0
    remote_updated: int = 0
    remote_added: int = 0
    converged: int = 0
    auto_resolved_by_tag: int = 0
    conflicts: int = 0
    resolved: int = 0

    @property
    def auto_kept(self) -> int:
        return (
            self.unchanged + self.local_modified + self.local_added
            + self.remote_updated + self.remote_added + self.converged
        )

    @property
    def unresolved(self) -> int:
        return self.conflicts - self.resolved

    def summary(self) -> str:
        parts = []
        if self.remote_added:
            parts.append(f"+{self.remote_added} new")
        if self.remote_updated:
            parts.append(f"~{self.remote_updated} updated")
        if self.local_modified:
            parts.append(f"{self.local_modified} local kept")
        if self.local_added:
            parts.append(f"{self.local_added} local only")
        if self.auto_resolved_by_tag:
            parts.append(f"{self.auto_resolved_by_tag} resolved by tag")
        if self.unresolved:
            parts.append(f"!{self.unresolved} conflicts")
        return ", ".join(parts) if parts else "No changes"


@dataclass
class MergeResult:
    """Merged map plus the conflicts found on the way."""
    merged: TranslationMap
    conflicts: List[ConflictEntry] = field(default_factory=list)
    resolved: List[ConflictEntry] = field(default_factory=list)
    statistics: MergeStatistics = field(default_factory=MergeStatistics)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def ensure_resolved(self) -> TranslationMap:
        """Return the merged map, or raise if any key is still undecided."""
        if self.conflicts:
            raise MergeConflictError([c.key for c in self.conflicts])
        return self.merged


def _higher_tag(a: TranslationEntry, b: TranslationEntry) -> TranslationEntry:
    return b if b.tag.outranks(a.tag) else a


def merge(
    local: TranslationMap,
    remote: TranslationMap,
    ancestor: Optional[TranslationMap],
) -> MergeResult:
    """
    Three-way merge.

    Args:
        local: The local map
        remote: The server map
        ancestor: Snapshot at the last sync, None when never synced

    Returns:
        MergeResult whose ``merged`` keeps the local lineage id and omits
        undecided keys
    """
    base = ancestor.entries if ancestor is not None else {}
    stats = MergeStatistics()
    merged: Dict[str, TranslationEntry] = {}
    conflicts: List[ConflictEntry] = []
    resolved: List[ConflictEntry] = []

    for key in sorted(set(local.entries) | set(remote.entries) | set(base)):
        a = base.get(key)
        mine = local.entries.get(key, a)
        theirs = remote.entries.get(key, a)

        if mine == theirs:
            if mine == a:
                stats.unchanged += 1
            else:
                stats.converged += 1
            merged[key] = mine
            continue

        if theirs == a:
            if a is None:
                stats.local_added += 1
            else:
                stats.local_modified += 1
            merged[key] = mine
            continue

        if mine == a:
            if a is None:
                stats.remote_added += 1
            else:
                stats.remote_updated += 1
            merged[key] = theirs
            continue

        # Changed on both sides
        if mine.value == theirs.value:
            stats.converged += 1
            merged[key] = _higher_tag(mine, theirs)
        elif mine.tag.outranks(theirs.tag):
            stats.auto_resolved_by_tag += 1
            merged[key] = mine
            resolved.append(ConflictEntry(key, mine, theirs, a, ConflictOutcome.LOCAL))
        elif theirs.tag.outranks(mine.tag):
            stats.auto_resolved_by_tag += 1
            merged[key] = theirs
            resolved.append(ConflictEntry(key, mine, theirs, a, ConflictOutcome.REMOTE))
        else:
            stats.conflicts += 1
            conflicts.append(ConflictEntry(key, mine, theirs, a))

    result = MergeResult(
        merged=TranslationMap(
            lineage_id=local.lineage_id,
            entries=merged,
            metadata=dict(local.metadata),
        ),
        conflicts=conflicts,
        resolved=resolved,
        statistics=stats,
    )

    logger.debug(
        "merge_computed",
        summary=stats.summary(),
        conflicts=len(conflicts),
        auto_resolved=len(resolved),
    )
    return result


def apply_resolutions(
    result: MergeResult,
    resolutions: Dict[str, ConflictResolution],
) -> MergeResult:
    """
    Apply user choices to undecided conflicts.

    Keys without a resolution stay in ``conflicts``. Resolutions for keys that
    are not undecided conflicts are ignored.

    Returns:
        A new MergeResult; the input is left untouched
    """
    merged = result.merged.copy()
    remaining: List[ConflictEntry] = []
    resolved = list(result.resolved)
    applied = 0

    for conflict in result.conflicts:
        choice = resolutions.get(conflict.key)
        if choice is None:
            remaining.append(conflict)
            continue

        if choice is ConflictResolution.KEEP_LOCAL:
            merged.entries[conflict.key] = conflict.local
            outcome = ConflictOutcome.LOCAL
        else:
            merged.entries[conflict.key] = conflict.remote
            outcome = ConflictOutcome.REMOTE
        resolved.append(replace(conflict, outcome=outcome))
        applied += 1

    ignored = set(resolutions) - {c.key for c in result.conflicts}
    if ignored:
        logger.debug("resolutions_ignored", keys=sorted(ignored))

    return MergeResult(
        merged=merged,
        conflicts=remaining,
        resolved=resolved,
        statistics=replace(result.statistics, resolved=result.statistics.resolved + applied),
    )


def resolve_all(result: MergeResult, choice: ConflictResolution) -> MergeResult:
    """Resolve every remaining conflict the same way."""
    return apply_resolutions(result, {c.key: choice for c in result.conflicts})


__all__ = [
    'ConflictOutcome',
    'ConflictResolution',
    'ConflictEntry',
    'MergeStatistics',
    'MergeResult',
    'merge',
    'apply_resolutions',
    'resolve_all',
]
