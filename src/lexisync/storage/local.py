"""
On-disk persistence for the local translation map and its ancestor snapshot.

Layout, for a map stored at ``translations.json``:

    translations.json           current map
    translations.json.ancestor  last synced server content + ``_synced_hash``
    translations.json.backup    copy taken before a destructive download
"""

import json
import os
from pathlib import Path
from typing import Optional, Tuple, Union

import aiofiles

from ..models.translation import (
    TranslationMap,
    map_to_document,
    parse_document,
)
from ..utils.errors import DocumentValidationError, StorageError
from ..utils.logging import get_logger, log_function_call


logger = get_logger("lexisync.storage.local")

SYNCED_HASH_KEY = "_synced_hash"


class LocalStore:
    """Atomic file storage for a translation map and its ancestor."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.ancestor_path = self.path.with_name(self.path.name + ".ancestor")
        self.backup_path = self.path.with_name(self.path.name + ".backup")

    async def load(self) -> TranslationMap:
        """
        Load the local map.

        A missing file yields an empty map with a fresh lineage id. Legacy
        files without a lineage id are assigned one.

        Raises:
            StorageError: If the file exists but cannot be read or parsed
        """
        if not self.path.exists():
            translation_map = TranslationMap.new()
            logger.info("created_empty_map", path=str(self.path), lineage_id=translation_map.lineage_id)
            return translation_map

        raw = await self._read(self.path)
        try:
            translation_map = parse_document(raw, require_lineage=False)
        except DocumentValidationError as e:
            raise StorageError(f"Corrupt translation file {self.path}: {e.message}", cause=e) from e

        translation_map.metadata.pop(SYNCED_HASH_KEY, None)
        logger.info("loaded_map", path=str(self.path), entries=len(translation_map))
        return translation_map

    async def save(self, translation_map: TranslationMap) -> None:
        """Persist the map atomically."""
        await self._write_json(self.path, map_to_document(translation_map))
        logger.debug("saved_map", path=str(self.path), entries=len(translation_map))

    async def load_ancestor(self) -> Optional[Tuple[TranslationMap, Optional[str]]]:
        """
        Load the ancestor snapshot.

        Returns:
            ``(ancestor, synced_hash)`` or None when no ancestor exists or it
            cannot be parsed (treated as never synced)
        """
        if not self.ancestor_path.exists():
            return None

        raw = await self._read(self.ancestor_path)
        try:
            ancestor = parse_document(raw)
        except DocumentValidationError as e:
            logger.warning("ancestor_unreadable", path=str(self.ancestor_path), error=e.message)
            return None

        synced_hash = ancestor.metadata.pop(SYNCED_HASH_KEY, None)
        if not isinstance(synced_hash, str):
            synced_hash = None
        return ancestor, synced_hash

    async def save_ancestor(self, ancestor: TranslationMap, synced_hash: Optional[str]) -> None:
        """Persist the ancestor snapshot with the server hash it was synced at."""
        document = map_to_document(ancestor)
        if synced_hash:
            document[SYNCED_HASH_KEY] = synced_hash
        await self._write_json(self.ancestor_path, document)
        logger.debug("saved_ancestor", path=str(self.ancestor_path), synced_hash=synced_hash)

    async def delete_ancestor(self) -> None:
        if self.ancestor_path.exists():
            try:
                self.ancestor_path.unlink()
            except OSError as e:
                raise StorageError(f"Failed to delete {self.ancestor_path}: {e}", cause=e) from e

    @log_function_call(logger)
    async def backup(self) -> Optional[Path]:
        """Copy the current map file to the backup path."""
        if not self.path.exists():
            return None

        raw = await self._read(self.path)
        await self._write_bytes(self.backup_path, raw)
        logger.info("backup_created", path=str(self.backup_path))
        return self.backup_path

    async def _read(self, path: Path) -> bytes:
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}", cause=e) from e

    async def _write_json(self, path: Path, document: dict) -> None:
        data = json.dumps(document, ensure_ascii=False, indent=2).encode("utf-8")
        await self._write_bytes(path, data)

    async def _write_bytes(self, path: Path, data: bytes) -> None:
        """Write to a temporary file then atomically move into place."""
        temp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(data)
                await f.flush()
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise StorageError(f"Failed to write {path}: {e}", cause=e) from e


def count_local_changes(translation_map: TranslationMap, ancestor: Optional[TranslationMap]) -> int:
    """Number of keys that are new or differ from the ancestor."""
    if ancestor is None:
        return len(translation_map)
    return sum(
        1 for key, entry in translation_map.entries.items()
        if ancestor.entries.get(key) != entry
    )


__all__ = ['LocalStore', 'count_local_changes', 'SYNCED_HASH_KEY']
