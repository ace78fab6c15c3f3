"""
Tests for local map and ancestor persistence.
"""

import json

import pytest

from lexisync.models.translation import Tag, is_uuid
from lexisync.storage.local import SYNCED_HASH_KEY, LocalStore, count_local_changes
from lexisync.utils.errors import StorageError
from tests.fixtures import TranslationFixtures


class TestLocalStore:
    """Test LocalStore file handling."""

    @pytest.mark.asyncio
    async def test_missing_file_gives_empty_map(self, store: LocalStore):
        translation_map = await store.load()
        assert len(translation_map) == 0
        assert is_uuid(translation_map.lineage_id)

    @pytest.mark.asyncio
    async def test_save_and_load(self, store: LocalStore, ancestor_map):
        await store.save(ancestor_map)
        loaded = await store.load()

        assert loaded == ancestor_map
        assert loaded.get("Start Game").tag is Tag.HUMAN
        assert not store.path.with_name(store.path.name + ".tmp").exists()

    @pytest.mark.asyncio
    async def test_legacy_file_gets_lineage(self, store: LocalStore):
        """A file written before lineage ids existed is still readable."""
        store.path.write_bytes(TranslationFixtures.create_document({"Hello": "Bonjour"}, include_lineage=False))

        loaded = await store.load()
        assert is_uuid(loaded.lineage_id)
        assert loaded.get("Hello").value == "Bonjour"

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, store: LocalStore):
        store.path.write_text("{broken", encoding="utf-8")
        with pytest.raises(StorageError):
            await store.load()

    @pytest.mark.asyncio
    async def test_ancestor_round_trip(self, store: LocalStore, ancestor_map):
        """The ancestor file records the server hash it was synced at."""
        assert await store.load_ancestor() is None

        await store.save_ancestor(ancestor_map, "abc123")
        ancestor, synced_hash = await store.load_ancestor()

        assert ancestor == ancestor_map
        assert synced_hash == "abc123"
        assert SYNCED_HASH_KEY not in ancestor.metadata

        on_disk = json.loads(store.ancestor_path.read_text(encoding="utf-8"))
        assert on_disk[SYNCED_HASH_KEY] == "abc123"

    @pytest.mark.asyncio
    async def test_ancestor_without_hash(self, store: LocalStore, ancestor_map):
        await store.save_ancestor(ancestor_map, None)
        _, synced_hash = await store.load_ancestor()
        assert synced_hash is None

    @pytest.mark.asyncio
    async def test_unreadable_ancestor_ignored(self, store: LocalStore):
        store.ancestor_path.write_text('{"Hello": "no lineage"}', encoding="utf-8")
        assert await store.load_ancestor() is None

    @pytest.mark.asyncio
    async def test_delete_ancestor(self, store: LocalStore, ancestor_map):
        await store.save_ancestor(ancestor_map, None)
        await store.delete_ancestor()
        assert not store.ancestor_path.exists()
        # Deleting twice is fine
        await store.delete_ancestor()

    @pytest.mark.asyncio
    async def test_backup(self, store: LocalStore, ancestor_map):
        assert await store.backup() is None

        await store.save(ancestor_map)
        path = await store.backup()

        assert path == store.backup_path
        assert path.read_bytes() == store.path.read_bytes()

    @pytest.mark.asyncio
    async def test_write_failure_raises(self, tmp_path, ancestor_map):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("", encoding="utf-8")
        store = LocalStore(blocker / "translations.json")

        with pytest.raises(StorageError):
            await store.save(ancestor_map)


class TestCountLocalChanges:
    """Test local change counting."""

    def test_without_ancestor_counts_everything(self, ancestor_map):
        assert count_local_changes(ancestor_map, None) == len(ancestor_map)

    def test_counts_modified_and_added(self, ancestor_map):
        local = ancestor_map.copy()
        local.entries["Options"] = TranslationFixtures.entry(("Réglages", Tag.HUMAN))
        local.entries["New Game"] = TranslationFixtures.entry("Nouvelle partie")

        assert count_local_changes(local, ancestor_map) == 2
        assert count_local_changes(ancestor_map, ancestor_map) == 0
