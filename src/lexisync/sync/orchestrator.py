"""
Sync orchestration between the local translation map and the server.

The orchestrator owns the :class:`SyncContext` and runs the check cycle:

    IDLE -> CHECKING -> {UP_TO_DATE, DOWNLOAD_READY, UPLOAD_READY,
                         MERGE_REQUIRED, CONFLICT} -> IDLE

Applying a download or a merge writes the map first and the ancestor second,
so an interrupted apply at worst leaves a redundant upload behind.
"""

import asyncio
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..api.results import (
    DownloadResult,
    LineageCheckResult,
    UpdateCheckResult,
    UploadRequest,
    UploadResult,
)
from ..models.server import ServerSyncState
from ..models.translation import TranslationMap
from ..storage.fingerprint import fingerprint
from ..storage.local import LocalStore, count_local_changes
from ..utils.config import ProjectConfig, SyncSettings
from ..utils.errors import LexisyncError
from ..utils.logging import get_logger
from .context import SyncContext
from .dispatch import Dispatcher, ImmediateDispatcher
from .lineage import LineageResolver, fork, state_after_upload
from .merge import (
    ConflictEntry,
    ConflictResolution,
    MergeResult,
    MergeStatistics,
    apply_resolutions,
    merge as merge_maps,
    resolve_all,
)


logger = get_logger("lexisync.sync.orchestrator")


class SyncState(Enum):
    """Orchestrator state."""
    IDLE = "idle"
    CHECKING = "checking"
    UP_TO_DATE = "up_to_date"
    DOWNLOAD_READY = "download_ready"
    UPLOAD_READY = "upload_ready"
    MERGE_REQUIRED = "merge_required"
    CONFLICT = "conflict"


class SyncDirective(Enum):
    """What a check cycle decided to do."""
    NONE = "none"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    MERGE = "merge"


_DIRECTIVE_STATES = {
    SyncDirective.NONE: SyncState.UP_TO_DATE,
    SyncDirective.DOWNLOAD: SyncState.DOWNLOAD_READY,
    SyncDirective.UPLOAD: SyncState.UPLOAD_READY,
    SyncDirective.MERGE: SyncState.MERGE_REQUIRED,
}


def decide_directive(
    local_hash: str,
    ancestor_hash: Optional[str],
    remote_hash: Optional[str],
    last_synced_hash: Optional[str],
    has_update: bool = False,
) -> SyncDirective:
    """
    Decide what a check cycle should do.

    Args:
        local_hash: Fingerprint of the local map
        ancestor_hash: Fingerprint of the ancestor, None when never synced
        remote_hash: Server hash, None when the server holds nothing
        last_synced_hash: Server hash at the last sync, if recorded
        has_update: Server reported a change without necessarily sending its hash

    Local changes exist when the local hash differs from the ancestor, or
    when there is no ancestor. The server changed when its hash differs from
    the last synced hash, falling back to the ancestor hash. With no baseline
    at all a present remote counts as changed, so unknown history surfaces
    a merge rather than an overwriting upload. A reported update with no
    hash counts as a change whatever the baseline.
    """
    if remote_hash is not None and remote_hash == local_hash:
        return SyncDirective.NONE

    has_local_changes = ancestor_hash is None or local_hash != ancestor_hash

    baseline = last_synced_hash or ancestor_hash
    if remote_hash is None:
        server_changed = has_update
    elif baseline is None:
        server_changed = True
    else:
        server_changed = remote_hash != baseline

    if has_local_changes and server_changed:
        return SyncDirective.MERGE
    if server_changed:
        return SyncDirective.DOWNLOAD
    if has_local_changes:
        return SyncDirective.UPLOAD
    return SyncDirective.NONE


class SyncApi(Protocol):
    async def check_lineage(self, lineage_id: str) -> LineageCheckResult: ...

    async def check_update(self, translation_id: int, local_hash: Optional[str]) -> UpdateCheckResult: ...

    async def download(self, translation_id: int, cached_hash: Optional[str] = None) -> DownloadResult: ...

    async def upload(self, request: UploadRequest) -> UploadResult: ...


@dataclass
class OperationResult:
    """Outcome of a download, upload or merge."""
    success: bool
    error: Optional[str] = None
    state: SyncState = SyncState.IDLE
    statistics: Optional[MergeStatistics] = None
    conflicts: List[ConflictEntry] = field(default_factory=list)

    @classmethod
    def failed(cls, error: str) -> "OperationResult":
        return cls(success=False, error=error)


@dataclass
class CheckOutcome:
    """Outcome of one check cycle."""
    directive: SyncDirective
    state: SyncState
    local_hash: Optional[str] = None
    remote_hash: Optional[str] = None
    operation: Optional[OperationResult] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class PendingMerge:
    """A merge waiting for the user to resolve conflicts."""
    result: MergeResult
    remote: TranslationMap
    remote_hash: Optional[str]


class SyncOrchestrator:
    """
    Drives the sync state machine for one local translation map.

    Listener callbacks are delivered through the dispatcher:

    - ``on_state_change(state)``
    - ``on_update_available(remote_hash)``
    - ``on_conflict(pending_merge)``
    - ``on_error(message)``
    """

    def __init__(
        self,
        context: SyncContext,
        store: LocalStore,
        api: SyncApi,
        settings: Optional[SyncSettings] = None,
        project: Optional[ProjectConfig] = None,
        dispatcher: Optional[Dispatcher] = None,
    ):
        self.context = context
        self.store = store
        self.api = api
        self.settings = settings or SyncSettings()
        self.project = project or ProjectConfig()
        self.dispatcher = dispatcher or ImmediateDispatcher()
        self.resolver = LineageResolver(api)

        self.state = SyncState.IDLE
        self.pending_merge: Optional[PendingMerge] = None
        self._check_in_flight = False
        self._live_tasks: set = set()

        self._state_handlers: List[Callable] = []
        self._update_handlers: List[Callable] = []
        self._conflict_handlers: List[Callable] = []
        self._error_handlers: List[Callable] = []

    @classmethod
    async def load(
        cls,
        store: LocalStore,
        api: SyncApi,
        **kwargs: Any,
    ) -> "SyncOrchestrator":
        """Create an orchestrator from the files in ``store``."""
        translation_map = await store.load()
        context = SyncContext(translation_map=translation_map)

        loaded = await store.load_ancestor()
        if loaded is not None:
            ancestor, synced_hash = loaded
            if ancestor.lineage_id == translation_map.lineage_id:
                context.ancestor = ancestor
                context.synced_hash = synced_hash
            else:
                logger.warning(
                    "ancestor_lineage_mismatch",
                    map_lineage=translation_map.lineage_id,
                    ancestor_lineage=ancestor.lineage_id,
                )

        return cls(context, store, api, **kwargs)

    # Listeners

    def on_state_change(self, handler: Callable) -> None:
        self._state_handlers.append(handler)

    def on_update_available(self, handler: Callable) -> None:
        self._update_handlers.append(handler)

    def on_conflict(self, handler: Callable) -> None:
        self._conflict_handlers.append(handler)

    def on_error(self, handler: Callable) -> None:
        self._error_handlers.append(handler)

    def _emit(self, handlers: List[Callable], *args: Any) -> None:
        for handler in handlers:
            self.dispatcher.invoke(handler, *args)

    def _set_state(self, state: SyncState) -> None:
        if state is self.state:
            return
        logger.debug("sync_state_changed", old=self.state.value, new=state.value)
        self.state = state
        self._emit(self._state_handlers, state)

    def _fail(self, message: str) -> OperationResult:
        logger.warning("sync_operation_failed", error=message)
        self._set_state(SyncState.IDLE)
        self._emit(self._error_handlers, message)
        return OperationResult.failed(message)

    # Status

    @property
    def is_checking(self) -> bool:
        return self._check_in_flight

    def local_changes(self) -> int:
        return count_local_changes(self.context.translation_map, self.context.ancestor)

    def status(self) -> Dict[str, Any]:
        ctx = self.context
        return {
            "state": self.state.value,
            "lineage_id": ctx.lineage_id,
            "entries": len(ctx.translation_map),
            "local_changes": self.local_changes(),
            "local_hash": ctx.local_hash(),
            "synced_hash": ctx.synced_hash,
            "role": ctx.server.role.value,
            "remote_id": ctx.server.remote_id,
            "remote_hash": ctx.server.remote_hash,
            "requires_choice": ctx.server.requires_choice,
            "pending_conflicts": len(self.pending_merge.result.conflicts) if self.pending_merge else 0,
        }

    # Local mutations

    async def update_map(self, translation_map: TranslationMap) -> None:
        """Replace the local map, e.g. after new strings were captured."""
        lineage_changed = translation_map.lineage_id != self.context.lineage_id
        await self.store.save(translation_map)
        self.context.translation_map = translation_map
        if lineage_changed:
            logger.info("lineage_changed", lineage_id=translation_map.lineage_id)
            self.context.ancestor = None
            self.context.synced_hash = None
            self.context.invalidate_server()
            await self.store.delete_ancestor()

    def invalidate_server_state(self) -> None:
        """Forget the server relationship, e.g. after login or logout."""
        self.context.invalidate_server()

    # Check cycle

    async def resolve_server_state(self) -> ServerSyncState:
        state = await self.resolver.resolve(self.context.lineage_id)
        if state.checked:
            self.context.server = state
        return self.context.server

    async def check(self) -> Optional[CheckOutcome]:
        """
        Run one check cycle.

        Returns:
            The outcome, or None if another check is already running or the
            lineage is ignored
        """
        if self._check_in_flight:
            logger.debug("check_skipped_in_flight")
            return None
        if self.context.lineage_id in self.settings.ignored_lineages:
            logger.debug("check_skipped_ignored", lineage_id=self.context.lineage_id)
            return None

        self._check_in_flight = True
        try:
            return await self._check()
        finally:
            self._check_in_flight = False

    async def _check(self) -> CheckOutcome:
        self._set_state(SyncState.CHECKING)
        ctx = self.context

        if not ctx.server.checked:
            await self.resolve_server_state()

        local_hash = ctx.local_hash()
        ancestor_hash = ctx.ancestor_hash()

        if ctx.server.remote_id is None:
            # Nothing published for this lineage
            if not ctx.server.checked:
                return self._check_failed(local_hash, "Could not resolve the lineage on the server")
            directive = decide_directive(local_hash, ancestor_hash, None, ctx.synced_hash)
            state = _DIRECTIVE_STATES[directive]
            self._set_state(state)
            return CheckOutcome(directive, state, local_hash=local_hash)

        result = await self.api.check_update(ctx.server.remote_id, local_hash)
        if not result.success:
            if result.auth_failed:
                ctx.invalidate_server()
            return self._check_failed(local_hash, result.error or "Update check failed")

        remote_hash = result.file_hash if result.has_update else local_hash
        ctx.server = replace(ctx.server, remote_hash=remote_hash)

        directive = decide_directive(local_hash, ancestor_hash, remote_hash, ctx.synced_hash, result.has_update)
        logger.info(
            "check_completed",
            directive=directive.value,
            local_hash=local_hash[:12],
            remote_hash=(remote_hash or "")[:12],
        )

        outcome = CheckOutcome(
            directive,
            _DIRECTIVE_STATES[directive],
            local_hash=local_hash,
            remote_hash=remote_hash,
        )

        if directive is SyncDirective.NONE:
            if ancestor_hash != local_hash:
                # Server already holds exactly the local content
                try:
                    await self._rebaseline(ctx.translation_map, remote_hash)
                except LexisyncError as e:
                    return self._check_failed(local_hash, e.message)
            self._set_state(SyncState.UP_TO_DATE)

        elif directive is SyncDirective.DOWNLOAD:
            ctx.pending_update = True
            self._set_state(SyncState.DOWNLOAD_READY)
            if self.settings.notify_updates:
                self._emit(self._update_handlers, remote_hash)
            if self.settings.auto_download:
                outcome.operation = await self.download()
                outcome.state = self.state

        elif directive is SyncDirective.UPLOAD:
            self._set_state(SyncState.UPLOAD_READY)

        else:
            self._set_state(SyncState.MERGE_REQUIRED)
            outcome.operation = await self.merge()
            outcome.state = self.state

        return outcome

    def _check_failed(self, local_hash: str, message: str) -> CheckOutcome:
        self._fail(message)
        return CheckOutcome(SyncDirective.NONE, SyncState.IDLE, local_hash=local_hash, error=message)

    def handle_remote_change(self, remote_hash: Optional[str] = None) -> Optional[asyncio.Task]:
        """
        React to a server-side change notification by scheduling a check.

        Returns:
            The scheduled check task, or None when the change is already known
        """
        if remote_hash and remote_hash in (self.context.server.remote_hash, self.context.synced_hash):
            logger.debug("remote_change_already_known", remote_hash=remote_hash)
            return None

        task = asyncio.ensure_future(self.check())
        self._live_tasks.add(task)
        task.add_done_callback(self._live_tasks.discard)
        return task

    # Download

    async def download(self) -> OperationResult:
        """Replace the local map with the server copy."""
        ctx = self.context
        if ctx.server.remote_id is None:
            return self._fail("No remote translation to download")

        result = await self.api.download(ctx.server.remote_id)
        if not result.success or result.content is None:
            return self._fail(result.error or "Download failed")

        try:
            if ctx.has_local_changes():
                await self.store.backup()
            await self._apply_remote(result.content, result.file_hash)
        except LexisyncError as e:
            return self._fail(e.message)

        logger.info("download_applied", entries=len(result.content), remote_hash=result.file_hash)
        self._set_state(SyncState.UP_TO_DATE)
        return OperationResult(success=True, state=self.state)

    async def _apply_remote(self, remote: TranslationMap, remote_hash: Optional[str]) -> None:
        ctx = self.context
        lineage_changed = remote.lineage_id != ctx.lineage_id
        remote_hash = remote_hash or fingerprint(remote)

        await self.store.save(remote)
        ctx.translation_map = remote.copy()

        await self.store.save_ancestor(remote, remote_hash)
        ctx.ancestor = remote
        ctx.synced_hash = remote_hash

        if lineage_changed:
            ctx.server = ServerSyncState(remote_id=ctx.server.remote_id, remote_hash=remote_hash)
        else:
            ctx.server = replace(ctx.server, remote_hash=remote_hash)
        ctx.pending_update = False

    async def _rebaseline(self, ancestor: TranslationMap, synced_hash: Optional[str]) -> None:
        snapshot = ancestor.copy()
        await self.store.save_ancestor(snapshot, synced_hash)
        self.context.ancestor = snapshot
        self.context.synced_hash = synced_hash

    # Merge

    async def merge(self) -> OperationResult:
        """
        Download the server copy and merge it with the local map.

        Applied directly when no key is undecided. Otherwise the result is
        parked in CONFLICT for :meth:`resolve_conflicts`, unless the merge
        strategy setting says which side to take.
        """
        ctx = self.context
        if ctx.server.remote_id is None:
            return self._fail("No remote translation to merge with")

        self._set_state(SyncState.MERGE_REQUIRED)
        download = await self.api.download(ctx.server.remote_id)
        if not download.success or download.content is None:
            return self._fail(download.error or "Download failed")

        remote = download.content
        remote_hash = download.file_hash or fingerprint(remote)
        result = merge_maps(ctx.translation_map, remote, ctx.ancestor)

        logger.info(
            "merge_computed",
            summary=result.statistics.summary(),
            conflicts=len(result.conflicts),
            auto_resolved=len(result.resolved),
        )

        if result.has_conflicts and self.settings.merge_strategy != "ask":
            choice = (
                ConflictResolution.KEEP_LOCAL
                if self.settings.merge_strategy == "keep_local"
                else ConflictResolution.TAKE_REMOTE
            )
            logger.info("conflicts_resolved_by_setting", strategy=self.settings.merge_strategy, count=len(result.conflicts))
            result = resolve_all(result, choice)

        if result.has_conflicts:
            self.pending_merge = PendingMerge(result, remote, remote_hash)
            self._set_state(SyncState.CONFLICT)
            self._emit(self._conflict_handlers, self.pending_merge)
            return OperationResult(
                success=False,
                error=f"{len(result.conflicts)} conflict(s) need resolution",
                state=self.state,
                statistics=result.statistics,
                conflicts=list(result.conflicts),
            )

        return await self._finish_merge(result, remote, remote_hash)

    async def apply_merge(
        self,
        result: MergeResult,
        remote: TranslationMap,
        remote_hash: Optional[str],
    ) -> None:
        """
        Apply a fully resolved merge.

        The merged map becomes the local map and the remote content it was
        merged against becomes the ancestor, so what remains different from
        the ancestor is what still needs uploading.

        Raises:
            MergeConflictError: If the result still has undecided keys
            StorageError: If writing either file fails
        """
        merged = result.ensure_resolved()
        ctx = self.context

        await self.store.save(merged)
        ctx.translation_map = merged

        await self.store.save_ancestor(remote, remote_hash)
        ctx.ancestor = remote
        ctx.synced_hash = remote_hash

        ctx.server = replace(ctx.server, remote_hash=remote_hash)
        ctx.pending_update = False
        self.pending_merge = None

        logger.info(
            "merge_applied",
            summary=result.statistics.summary(),
            resolved=result.statistics.resolved,
            local_changes=self.local_changes(),
        )

    async def _finish_merge(
        self,
        result: MergeResult,
        remote: TranslationMap,
        remote_hash: Optional[str],
    ) -> OperationResult:
        try:
            await self.apply_merge(result, remote, remote_hash)
        except LexisyncError as e:
            return self._fail(e.message)

        self._set_state(
            SyncState.UPLOAD_READY if self.context.has_local_changes() else SyncState.UP_TO_DATE
        )
        return OperationResult(success=True, state=self.state, statistics=result.statistics)

    async def resolve_conflicts(self, resolutions: Dict[str, ConflictResolution]) -> OperationResult:
        """
        Apply user choices to the parked merge.

        Once no key is left undecided the merge is applied; otherwise the
        orchestrator stays in CONFLICT with the remaining keys.
        """
        if self.pending_merge is None:
            return OperationResult.failed("No merge is waiting for resolution")

        pending = self.pending_merge
        result = apply_resolutions(pending.result, resolutions)
        self.pending_merge = replace(pending, result=result)

        if result.has_conflicts:
            return OperationResult(
                success=False,
                error=f"{len(result.conflicts)} conflict(s) still need resolution",
                state=self.state,
                statistics=result.statistics,
                conflicts=list(result.conflicts),
            )

        return await self._finish_merge(result, pending.remote, pending.remote_hash)

    def cancel_merge(self) -> None:
        """Drop the parked merge; local files are left untouched."""
        if self.pending_merge is not None:
            logger.info("merge_cancelled", conflicts=len(self.pending_merge.result.conflicts))
        self.pending_merge = None
        self._set_state(SyncState.IDLE)

    # Upload

    async def upload(self) -> OperationResult:
        """Publish the local map and re-baseline the ancestor to it."""
        ctx = self.context
        if self.pending_merge is not None:
            return self._fail("Resolve or cancel the pending merge before uploading")
        if ctx.server.requires_choice:
            return self._fail("Choose to contribute as a branch or to fork before uploading")

        request = UploadRequest(
            content=ctx.translation_map,
            source_language=self.project.source_language,
            target_language=self.project.target_language,
            game_name=self.project.game_name,
            steam_id=self.project.steam_id,
            type=self.project.type,
            status=self.project.status,
            notes=self.project.notes,
        )
        result = await self.api.upload(request)
        if not result.success:
            if result.auth_failed:
                ctx.invalidate_server()
            return self._fail(result.error or "Upload failed")

        uploaded = ctx.translation_map.copy()
        synced_hash = result.file_hash or fingerprint(uploaded)
        ctx.server = state_after_upload(ctx.server, replace(result, file_hash=synced_hash))
        ctx.pending_update = False

        try:
            await self._rebaseline(uploaded, synced_hash)
        except LexisyncError as e:
            return self._fail(e.message)

        logger.info(
            "upload_applied",
            translation_id=result.translation_id,
            role=result.role.value,
            line_count=result.line_count,
        )
        self._set_state(SyncState.UP_TO_DATE)
        return OperationResult(success=True, state=self.state)

    # Branch or fork

    def choose_branch(self) -> None:
        """Contribute to the existing lineage; the server assigns the branch role on upload."""
        if self.context.server.requires_choice:
            self.context.server = replace(self.context.server, requires_choice=False)
            logger.info("branch_chosen", lineage_id=self.context.lineage_id)

    async def choose_fork(self) -> OperationResult:
        """Start a new lineage whose ancestor is the current server content."""
        ctx = self.context
        if ctx.server.remote_id is None:
            return self._fail("No remote translation to fork from")

        download = await self.api.download(ctx.server.remote_id)
        if not download.success or download.content is None:
            return self._fail(download.error or "Download failed")

        forked = fork(ctx.translation_map, download.content)
        try:
            await self.store.save(forked.translation_map)
            ctx.translation_map = forked.translation_map
            # A fresh lineage has never been synced; only the content baseline carries over
            await self._rebaseline(forked.ancestor, None)
        except LexisyncError as e:
            return self._fail(e.message)

        ctx.server = ServerSyncState(checked=True)
        self.pending_merge = None
        self._set_state(SyncState.UPLOAD_READY if ctx.has_local_changes() else SyncState.IDLE)
        return OperationResult(success=True, state=self.state)

    async def shutdown(self) -> None:
        """Cancel checks scheduled by remote change notifications."""
        for task in list(self._live_tasks):
            task.cancel()
        if self._live_tasks:
            await asyncio.gather(*self._live_tasks, return_exceptions=True)
        self._live_tasks.clear()


__all__ = [
    'SyncState',
    'SyncDirective',
    'decide_directive',
    'OperationResult',
    'CheckOutcome',
    'PendingMerge',
    'SyncOrchestrator',
]
