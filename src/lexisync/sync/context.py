"""Mutable sync state owned by the orchestrator."""

from dataclasses import dataclass, field
from typing import Optional

from ..models.server import ServerSyncState
from ..models.translation import TranslationMap
from ..storage.fingerprint import fingerprint


@dataclass
class SyncContext:
    """
    The map, ancestor and server state triple.

    Only the orchestrator's apply methods replace these fields, and only on
    the event loop thread. The ancestor and server state are replaced
    wholesale, never edited in place.
    """
    translation_map: TranslationMap
    ancestor: Optional[TranslationMap] = None
    # Server hash the ancestor was synced at
    synced_hash: Optional[str] = None
    server: ServerSyncState = field(default_factory=ServerSyncState)
    pending_update: bool = False

    @property
    def lineage_id(self) -> str:
        return self.translation_map.lineage_id

    def local_hash(self) -> str:
        return fingerprint(self.translation_map)

    def ancestor_hash(self) -> Optional[str]:
        return fingerprint(self.ancestor) if self.ancestor is not None else None

    def has_local_changes(self) -> bool:
        return self.ancestor is None or self.local_hash() != self.ancestor_hash()

    def invalidate_server(self) -> None:
        """Forget the server relationship, e.g. after a lineage or login change."""
        self.server = ServerSyncState()
        self.pending_update = False


__all__ = ['SyncContext']
