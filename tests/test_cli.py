"""
Tests for the command line entry point.
"""

import json

import pytest

from lexisync.cli import LexisyncCLI, build_parser, main_async
from lexisync.models.translation import parse_document
from lexisync.utils.config import load_config
from tests.fixtures import TranslationFixtures


class TestParser:
    """Test argument parsing."""

    def test_push_choice(self):
        args = build_parser().parse_args(["push", "--fork"])
        assert args.command == "push"
        assert args.fork and not args.branch

    def test_push_choices_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["push", "--fork", "--branch"])

    def test_merge_side(self):
        args = build_parser().parse_args(["--file", "game.json", "merge", "--take-remote"])
        assert args.file == "game.json"
        assert args.take_remote

    def test_search(self):
        args = build_parser().parse_args(["search", "440", "--lang", "fr", "--id"])
        assert (args.query, args.lang, args.id) == ("440", "fr", True)

    def test_watch_reload_flag(self):
        assert build_parser().parse_args(["watch", "--reload-config"]).reload_config
        assert not build_parser().parse_args(["watch"]).reload_config

    def test_vote_value(self):
        assert build_parser().parse_args(["vote", "9", "-1"]).value == -1
        with pytest.raises(SystemExit):
            build_parser().parse_args(["vote", "9", "3"])


class TestMain:
    """Test offline commands end to end."""

    @pytest.mark.asyncio
    async def test_status_offline(self, tmp_path, capsys):
        map_path = tmp_path / "game.json"
        map_path.write_bytes(TranslationFixtures.create_document({"Hello": "Bonjour"}))
        config_path = tmp_path / "lexisync.json"
        config_path.write_text(json.dumps({
            "storage": {"data_dir": str(tmp_path / "data")},
            "logging": {"directory": str(tmp_path / "logs")},
        }))

        code = await main_async(["--config", str(config_path), "--file", str(map_path), "status"])

        assert code == 0
        assert "lineage_id" in capsys.readouterr().out
        # Status never rewrites the map
        assert parse_document(map_path.read_bytes()).get("Hello").value == "Bonjour"

    @pytest.mark.asyncio
    async def test_no_command(self, capsys):
        assert await main_async([]) == 1

    @pytest.mark.asyncio
    async def test_reloaded_settings_applied(self, tmp_path):
        data_dir = str(tmp_path / "data")
        config = load_config(extra_config={"storage": {"data_dir": data_dir}})
        cli = LexisyncCLI(config)
        await cli.connect()
        try:
            reloaded = load_config(extra_config={
                "storage": {"data_dir": data_dir},
                "sync": {"auto_download": True, "merge_strategy": "take_remote"},
            })
            cli.apply_config(reloaded)

            assert cli.orchestrator.settings.auto_download is True
            assert cli.orchestrator.settings.merge_strategy == "take_remote"
            assert cli.config is reloaded
        finally:
            await cli.disconnect()
