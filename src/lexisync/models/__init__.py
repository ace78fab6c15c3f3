"""Data models for lexisync."""

from .translation import (
    Tag,
    TranslationEntry,
    TranslationMap,
    validate_document,
    parse_document,
    serialize_document,
)
from .server import Role, ServerSyncState

__all__ = [
    'Tag',
    'TranslationEntry',
    'TranslationMap',
    'validate_document',
    'parse_document',
    'serialize_document',
    'Role',
    'ServerSyncState',
]
