"""
lexisync CLI - command line access to translation sync.

Wires configuration, logging, local storage, the API client and the sync
orchestrator together for one local translation file.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from .api.client import TranslationApiClient
from .auth.device_flow import DeviceFlowAuthenticator
from .auth.token_store import EncryptedFileTokenStore
from .storage.local import LocalStore
from .sync.dispatch import LoopDispatcher
from .sync.merge import ConflictResolution
from .sync.orchestrator import SyncOrchestrator, SyncState
from .transport.base import ConnectionState
from .transport.sse import LiveUpdateChannel, events_url, follow_updates
from .utils.config import ConfigLoader, LexisyncConfig, build_loader
from .utils.errors import LexisyncError
from .utils.logging import get_logger, setup_logging


console = Console()
logger = get_logger("lexisync.cli")


class LexisyncCLI:
    """Command implementations sharing one set of components."""

    def __init__(self, config: LexisyncConfig, loader: Optional[ConfigLoader] = None):
        self.config = config
        self.loader = loader
        self.api = TranslationApiClient(config.api)
        self.tokens = EncryptedFileTokenStore(config.storage.token_path)
        self.auth = DeviceFlowAuthenticator(self.api, self.tokens)
        self.store = LocalStore(config.storage.map_path)
        self.orchestrator: Optional[SyncOrchestrator] = None

    async def connect(self) -> None:
        self.auth.restore()
        self.orchestrator = await SyncOrchestrator.load(
            self.store,
            self.api,
            settings=self.config.sync,
            project=self.config.project,
            dispatcher=LoopDispatcher(asyncio.get_running_loop()),
        )
        self.auth.on_auth_changed(self.orchestrator.invalidate_server_state)
        self.orchestrator.on_error(lambda message: console.print(f"[red]{message}[/red]"))

    def apply_config(self, config: LexisyncConfig, channel: Optional[LiveUpdateChannel] = None) -> None:
        """Apply reloaded sync and live settings to running components."""
        self.config = config
        if self.orchestrator is not None:
            self.orchestrator.settings = config.sync
        if channel is not None:
            channel.apply_config(config.live)
        console.print("[dim]configuration reloaded[/dim]")

    async def disconnect(self) -> None:
        if self.orchestrator is not None:
            await self.orchestrator.shutdown()
        await self.api.close()

    async def status(self) -> None:
        """Show the local map and its server relationship."""
        if self.api.has_token:
            await self.orchestrator.resolve_server_state()

        table = Table(title="lexisync status", show_header=False)
        table.add_column("field", style="cyan")
        table.add_column("value")
        for key, value in self.orchestrator.status().items():
            table.add_row(key, "-" if value is None else str(value))
        console.print(table)

    async def check(self) -> int:
        outcome = await self.orchestrator.check()
        if outcome is None:
            console.print("[yellow]Check skipped[/yellow]")
            return 0
        if not outcome.success:
            console.print(f"[red]Check failed:[/red] {outcome.error}")
            return 1

        console.print(f"Directive: [bold]{outcome.directive.value}[/bold]  State: [bold]{outcome.state.value}[/bold]")
        if outcome.operation is not None and outcome.operation.statistics is not None:
            console.print(f"Merge: {outcome.operation.statistics.summary()}")
        if outcome.state is SyncState.CONFLICT:
            self._print_conflicts(self.orchestrator.pending_merge.result.conflicts)
            console.print("Run [bold]lexisync merge[/bold] to resolve.")
        return 0

    async def pull(self) -> int:
        if not self.orchestrator.context.server.checked:
            await self.orchestrator.resolve_server_state()
        result = await self.orchestrator.download()
        if not result.success:
            console.print(f"[red]Download failed:[/red] {result.error}")
            return 1
        console.print(f"[green]Downloaded[/green] {len(self.orchestrator.context.translation_map)} entries")
        return 0

    async def push(self, branch: bool = False, fork: bool = False) -> int:
        orchestrator = self.orchestrator
        if not orchestrator.context.server.checked:
            await orchestrator.resolve_server_state()

        server = orchestrator.context.server
        if server.requires_choice:
            if branch:
                orchestrator.choose_branch()
            elif fork:
                forked = await orchestrator.choose_fork()
                if not forked.success:
                    console.print(f"[red]Fork failed:[/red] {forked.error}")
                    return 1
            else:
                console.print(
                    f"This lineage belongs to [bold]{server.owner_name or 'another user'}[/bold]. "
                    "Re-run with --branch to contribute or --fork to start your own lineage."
                )
                return 1

        result = await orchestrator.upload()
        if not result.success:
            console.print(f"[red]Upload failed:[/red] {result.error}")
            return 1

        server = orchestrator.context.server
        console.print(f"[green]Uploaded[/green] as {server.role.value} (id {server.remote_id})")
        return 0

    async def merge(self, keep_local: bool = False, take_remote: bool = False) -> int:
        orchestrator = self.orchestrator
        if orchestrator.pending_merge is None:
            if not orchestrator.context.server.checked:
                await orchestrator.resolve_server_state()
            result = await orchestrator.merge()
            if result.success:
                console.print(f"[green]Merged:[/green] {result.statistics.summary()}")
                return 0
            if orchestrator.state is not SyncState.CONFLICT:
                console.print(f"[red]Merge failed:[/red] {result.error}")
                return 1

        pending = orchestrator.pending_merge
        if keep_local or take_remote:
            choice = ConflictResolution.KEEP_LOCAL if keep_local else ConflictResolution.TAKE_REMOTE
            resolutions = {c.key: choice for c in pending.result.conflicts}
        else:
            resolutions = {}
            for conflict in pending.result.conflicts:
                self._print_conflicts([conflict])
                answer = Prompt.ask("Keep local (l), take remote (r) or quit (q)?", choices=["l", "r", "q"], default="l")
                if answer == "q":
                    orchestrator.cancel_merge()
                    console.print("Merge cancelled")
                    return 1
                resolutions[conflict.key] = (
                    ConflictResolution.KEEP_LOCAL if answer == "l" else ConflictResolution.TAKE_REMOTE
                )

        result = await orchestrator.resolve_conflicts(resolutions)
        if not result.success:
            console.print(f"[red]Merge not applied:[/red] {result.error}")
            return 1
        console.print(f"[green]Merged:[/green] {result.statistics.summary()}")
        return 0

    async def watch(self) -> int:
        orchestrator = self.orchestrator
        if not self.config.live.enabled:
            console.print("[yellow]Live updates are disabled in configuration[/yellow]")
            return 1
        if not orchestrator.context.server.checked:
            await orchestrator.resolve_server_state()
        remote_id = orchestrator.context.server.remote_id
        if remote_id is None:
            console.print("[red]Nothing to watch:[/red] this lineage is not on the server")
            return 1

        channel = LiveUpdateChannel(
            events_url(self.config.api.base_url, remote_id),
            headers=self.api.auth_headers,
            config=self.config.live,
            dispatcher=orchestrator.dispatcher,
        )
        follow_updates(channel, orchestrator, remote_id)
        if self.loader is not None:
            self.loader.register_callback(lambda config: self.apply_config(config, channel))
        channel.on_state_change(lambda state: console.print(f"[dim]live: {state.value}[/dim]"))
        orchestrator.on_state_change(lambda state: console.print(f"sync: [bold]{state.value}[/bold]"))

        if self.config.sync.check_update_on_start:
            await orchestrator.check()
        await channel.connect()
        console.print("Watching for server changes, Ctrl+C to stop")
        try:
            await channel.wait_closed()
        finally:
            await channel.disconnect()
        return 1 if channel.state is ConnectionState.FAILED else 0

    async def login(self) -> int:
        def show(init):
            console.print(f"Open [bold]{init.verification_uri}[/bold] and enter code [bold cyan]{init.user_code}[/bold cyan]")

        result = await self.auth.login(on_code=show)
        if not result.success:
            console.print(f"[red]Login failed:[/red] {result.error}")
            return 1
        console.print(f"[green]Logged in[/green] as {result.user_name}")
        return 0

    def logout(self) -> int:
        self.auth.logout()
        console.print("Logged out")
        return 0

    async def search(self, query: str, language: str, by_id: bool = False) -> int:
        if by_id:
            result = await self.api.search_by_identifier(query, language)
        else:
            result = await self.api.search_by_name(query, language)
        if not result.success:
            console.print(f"[red]Search failed:[/red] {result.error}")
            return 1

        table = Table(title=f"{result.count} translation(s)")
        for column in ("id", "game", "uploader", "lang", "lines", "votes", "updated"):
            table.add_column(column)
        for t in result.translations:
            table.add_row(
                str(t.id), t.game_name or "", t.uploader or "",
                f"{t.source_language}->{t.target_language}",
                str(t.line_count), str(t.vote_count), t.updated_at or "",
            )
        console.print(table)
        return 0

    async def vote(self, translation_id: int, value: int) -> int:
        result = await self.api.vote(translation_id, value)
        if not result.success:
            console.print(f"[red]Vote failed:[/red] {result.error}")
            return 1
        console.print(f"Votes: {result.vote_count}")
        return 0

    @staticmethod
    def _print_conflicts(conflicts) -> None:
        table = Table(title="Conflicts")
        table.add_column("key", overflow="fold")
        table.add_column("local")
        table.add_column("remote")
        table.add_column("ancestor")
        for c in conflicts:
            table.add_row(escape(c.key), _describe(c.local), _describe(c.remote), _describe(c.ancestor))
        console.print(table)


def _describe(entry) -> str:
    if entry is None:
        return "-"
    return f"{escape(entry.value)} ({entry.tag.value})"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lexisync",
        description="lexisync - synchronize a shared translation mapping",
    )
    parser.add_argument("--config", action="append", default=[], help="Extra config file (json/yaml/toml)")
    parser.add_argument("--file", help="Translation file to sync")
    parser.add_argument("--log-level", help="Log level")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("status", help="Show local and server state")
    subparsers.add_parser("check", help="Check the server for changes")
    subparsers.add_parser("pull", help="Replace the local file with the server copy")

    push = subparsers.add_parser("push", help="Upload the local file")
    choice = push.add_mutually_exclusive_group()
    choice.add_argument("--branch", action="store_true", help="Contribute to someone else's lineage")
    choice.add_argument("--fork", action="store_true", help="Start an independent lineage")

    merge = subparsers.add_parser("merge", help="Merge server changes into the local file")
    side = merge.add_mutually_exclusive_group()
    side.add_argument("--keep-local", action="store_true", help="Keep local values for every conflict")
    side.add_argument("--take-remote", action="store_true", help="Take server values for every conflict")

    watch = subparsers.add_parser("watch", help="Follow server changes live")
    watch.add_argument("--reload-config", action="store_true", help="Apply config file edits while watching")
    subparsers.add_parser("login", help="Log in with a device code")
    subparsers.add_parser("logout", help="Forget the stored token")

    search = subparsers.add_parser("search", help="Search published translations")
    search.add_argument("query", help="Name, or store id with --id")
    search.add_argument("--lang", required=True, help="Target language")
    search.add_argument("--id", action="store_true", help="Treat query as a store identifier")

    vote = subparsers.add_parser("vote", help="Vote on a translation")
    vote.add_argument("translation_id", type=int, help="Translation id")
    vote.add_argument("value", type=int, choices=[1, -1], help="1 or -1")

    return parser


async def main_async(argv=None) -> int:
    """Async main function."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    overrides = {}
    if args.file:
        path = Path(args.file).expanduser().absolute()
        overrides["storage"] = {"data_dir": str(path.parent), "map_file": path.name}
    if args.log_level:
        overrides["logging"] = {"level": args.log_level}
    if args.command == "watch" and args.reload_config:
        overrides["enable_hot_reload"] = True

    loader = build_loader(args.config, overrides or None)
    config = await loader.load()
    setup_logging(
        app_name=config.app_name,
        log_level=config.logging.level,
        log_dir=config.logging.directory,
        enable_json=config.logging.format == "json",
        enable_console=config.debug,
        enable_sentry=config.logging.enable_sentry,
        sentry_dsn=config.logging.sentry_dsn,
    )

    cli = LexisyncCLI(config, loader)
    try:
        await cli.connect()

        if args.command == "status":
            await cli.status()
            return 0
        elif args.command == "check":
            return await cli.check()
        elif args.command == "pull":
            return await cli.pull()
        elif args.command == "push":
            return await cli.push(args.branch, args.fork)
        elif args.command == "merge":
            return await cli.merge(args.keep_local, args.take_remote)
        elif args.command == "watch":
            return await cli.watch()
        elif args.command == "login":
            return await cli.login()
        elif args.command == "logout":
            return cli.logout()
        elif args.command == "search":
            return await cli.search(args.query, args.lang, args.id)
        elif args.command == "vote":
            return await cli.vote(args.translation_id, args.value)
        else:
            console.print(f"Unknown command: {args.command}")
            return 1

    except LexisyncError as e:
        logger.error("command_failed", command=args.command, **e.to_dict()["error"])
        console.print(f"[red]Error:[/red] {escape(e.message)}")
        for suggestion in e.get_suggestions():
            console.print(f"  - {suggestion}")
        return 1
    finally:
        await cli.disconnect()
        loader.shutdown()


def main():
    """Main entry point."""
    try:
        sys.exit(asyncio.run(main_async()))
    except KeyboardInterrupt:
        console.print("\nInterrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
