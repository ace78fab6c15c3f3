"""
Lineage and role resolution.

Determines how the local lineage relates to the server: unpublished, owned
(main), contributed to (branch), or owned by someone else, in which case the
user has to choose between contributing a branch and forking.
"""

import uuid
from dataclasses import dataclass, replace
from typing import Optional, Protocol

from ..api.results import LineageCheckResult, UploadResult
from ..models.server import Role, ServerSyncState
from ..models.translation import TranslationMap
from ..utils.logging import get_logger


logger = get_logger("lexisync.sync.lineage")


class LineageApi(Protocol):
    async def check_lineage(self, lineage_id: str) -> LineageCheckResult: ...


def state_from_check(result: LineageCheckResult) -> ServerSyncState:
    """Map a successful lineage lookup to a server state."""
    if not result.exists:
        return ServerSyncState(checked=True)

    if result.role is Role.NONE:
        main = result.main
        return ServerSyncState(
            exists=True,
            role=Role.NONE,
            remote_id=main.id if main else None,
            remote_hash=main.file_hash if main else None,
            owner_name=result.main_username,
            branch_count=result.branches_count,
            checked=True,
            requires_choice=True,
        )

    existing = result.existing
    return ServerSyncState(
        exists=True,
        role=result.role,
        remote_id=existing.id if existing else None,
        remote_hash=existing.file_hash if existing else None,
        owner_name=result.main_username,
        branch_count=result.branches_count,
        checked=True,
    )


class LineageResolver:
    """Resolves the caller's role in a lineage. Never makes the branch/fork choice."""

    def __init__(self, api: LineageApi):
        self.api = api

    async def resolve(self, lineage_id: str) -> ServerSyncState:
        """
        Look up ``lineage_id`` on the server.

        Returns:
            The resolved state. On failure the returned state has
            ``checked=False`` and the caller should retry later.
        """
        result = await self.api.check_lineage(lineage_id)
        if not result.success:
            logger.warning(
                "lineage_resolve_failed",
                lineage_id=lineage_id,
                error=result.error,
                status=result.status,
            )
            return ServerSyncState()

        state = state_from_check(result)
        logger.info(
            "lineage_resolved",
            lineage_id=lineage_id,
            exists=state.exists,
            role=state.role.value,
            requires_choice=state.requires_choice,
            remote_id=state.remote_id,
        )
        return state


@dataclass
class ForkResult:
    """A new lineage started from existing remote content."""
    translation_map: TranslationMap
    ancestor: TranslationMap

    @property
    def lineage_id(self) -> str:
        return self.translation_map.lineage_id


def fork(local: TranslationMap, remote: TranslationMap, lineage_id: Optional[str] = None) -> ForkResult:
    """
    Break lineage: start a new, independent lineage whose ancestor is the
    remote content. Local entries are kept, so local edits relative to the
    remote copy become pending uploads of the new lineage.
    """
    new_id = lineage_id or str(uuid.uuid4())
    logger.info("lineage_forked", from_lineage=local.lineage_id, to_lineage=new_id)
    return ForkResult(
        translation_map=local.with_lineage(new_id),
        ancestor=remote.with_lineage(new_id),
    )


def state_after_upload(state: ServerSyncState, result: UploadResult) -> ServerSyncState:
    """Server state after a successful upload; the server decides the role."""
    return replace(
        state,
        exists=True,
        role=result.role,
        remote_id=result.translation_id or state.remote_id,
        remote_hash=result.file_hash,
        checked=True,
        requires_choice=False,
    )


__all__ = [
    'Role',
    'ServerSyncState',
    'LineageResolver',
    'ForkResult',
    'fork',
    'state_from_check',
    'state_after_upload',
]
