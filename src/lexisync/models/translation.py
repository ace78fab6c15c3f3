"""
Translation mapping data model and wire format.

A translation file is a UTF-8 JSON object holding a reserved ``_uuid`` lineage
key, optional underscore-prefixed metadata, and translation entries that are
either bare strings (legacy, implicit AI tag) or ``{"v": ..., "t": ...}``
objects.
"""

import json
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Union

from ..utils.errors import DocumentValidationError
from ..utils.logging import get_logger


logger = get_logger("lexisync.models")

LINEAGE_KEY = "_uuid"
MAX_DOCUMENT_BYTES = 100 * 1024 * 1024  # 100MB
MAX_DOCUMENT_DEPTH = 10


class Tag(Enum):
    """Provenance of a translation value, best first."""
    HUMAN = "H"
    VALIDATED = "V"
    AI = "A"
    CAPTURE = "C"

    @property
    def rank(self) -> int:
        return _TAG_RANK[self]

    def outranks(self, other: "Tag") -> bool:
        return self.rank > other.rank

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "Tag":
        """Read a wire tag letter. Missing or unknown letters mean AI."""
        if value is None:
            return cls.AI
        try:
            return cls(value)
        except ValueError:
            logger.debug("unknown_tag", tag=value)
            return cls.AI


_TAG_RANK = {
    Tag.HUMAN: 3,
    Tag.VALIDATED: 2,
    Tag.AI: 1,
    Tag.CAPTURE: 0,
}


@dataclass(frozen=True)
class TranslationEntry:
    """A single translated value with its provenance tag."""
    value: str
    tag: Tag = Tag.AI

    @classmethod
    def capture(cls) -> "TranslationEntry":
        """Placeholder for a known source string with no translation yet."""
        return cls("", Tag.CAPTURE)

    def to_wire(self) -> Dict[str, str]:
        return {"v": self.value, "t": self.tag.value}


@dataclass
class TranslationMap:
    """Key to entry mapping tied to a lineage."""
    lineage_id: str
    entries: Dict[str, TranslationEntry] = field(default_factory=dict)
    # Underscore-prefixed keys other than the lineage id; never hashed or merged
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def new(cls) -> "TranslationMap":
        """Create an empty map with a fresh lineage id."""
        return cls(lineage_id=str(uuid.uuid4()))

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: str) -> bool:
        return key in self.entries

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def get(self, key: str) -> Optional[TranslationEntry]:
        return self.entries.get(key)

    def copy(self) -> "TranslationMap":
        return TranslationMap(
            lineage_id=self.lineage_id,
            entries=dict(self.entries),
            metadata=dict(self.metadata),
        )

    def with_lineage(self, lineage_id: str) -> "TranslationMap":
        """Return a copy carrying a different lineage id."""
        return replace(self.copy(), lineage_id=lineage_id)


def is_uuid(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def _depth(value: Any) -> int:
    """Nesting depth of a decoded JSON value. Scalars are depth 0."""
    if isinstance(value, dict):
        return 1 + max((_depth(v) for v in value.values()), default=0)
    if isinstance(value, list):
        return 1 + max((_depth(v) for v in value), default=0)
    return 0


def _decode(data: Union[bytes, str]) -> Dict[str, Any]:
    if not data or (isinstance(data, str) and not data.strip()):
        raise DocumentValidationError("Empty content")

    size = len(data) if isinstance(data, bytes) else len(data.encode("utf-8"))
    if size > MAX_DOCUMENT_BYTES:
        raise DocumentValidationError(f"Content too large ({size} bytes)")

    try:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        parsed = json.loads(data)
    except (UnicodeDecodeError, ValueError) as e:
        raise DocumentValidationError(f"Invalid JSON: {e}", cause=e) from e
    except RecursionError as e:
        raise DocumentValidationError("JSON nesting too deep", cause=e) from e

    if not isinstance(parsed, dict):
        raise DocumentValidationError("Invalid JSON structure (expected object)")

    if _depth(parsed) > MAX_DOCUMENT_DEPTH:
        raise DocumentValidationError(
            f"JSON nesting deeper than {MAX_DOCUMENT_DEPTH} levels"
        )

    return parsed


def _check_entries(document: Dict[str, Any]) -> None:
    for key, value in document.items():
        if key.startswith("_"):
            continue
        if isinstance(value, str):
            continue
        if not isinstance(value, dict):
            raise DocumentValidationError(
                f"Invalid value type for key '{key}' (expected string or object)"
            )
        if not isinstance(value.get("v"), str):
            raise DocumentValidationError(
                f"Invalid entry format for key '{key}' (missing or non-string 'v')"
            )
        if "t" in value and not isinstance(value["t"], str):
            raise DocumentValidationError(
                f"Invalid 't' type for key '{key}' (expected string)"
            )


def validate_document(data: Union[bytes, str]) -> Dict[str, Any]:
    """
    Validate a translation document received from the server.

    Args:
        data: Raw UTF-8 document

    Returns:
        The decoded JSON object

    Raises:
        DocumentValidationError: If the document is oversized, malformed,
            too deeply nested, lacks a UUID ``_uuid`` or holds a bad entry
    """
    document = _decode(data)

    if LINEAGE_KEY not in document:
        raise DocumentValidationError("Missing _uuid field")
    if not is_uuid(document[LINEAGE_KEY]):
        raise DocumentValidationError("Invalid _uuid format")

    _check_entries(document)
    return document


def document_to_map(document: Dict[str, Any]) -> TranslationMap:
    """Build a map from an already validated document."""
    entries: Dict[str, TranslationEntry] = {}
    metadata: Dict[str, Any] = {}

    for key, value in document.items():
        if key == LINEAGE_KEY:
            continue
        if key.startswith("_"):
            metadata[key] = value
        elif isinstance(value, str):
            entries[key] = TranslationEntry(value, Tag.AI)
        else:
            entries[key] = TranslationEntry(value["v"], Tag.from_wire(value.get("t")))

    return TranslationMap(
        lineage_id=document[LINEAGE_KEY],
        entries=entries,
        metadata=metadata,
    )


def parse_document(data: Union[bytes, str], require_lineage: bool = True) -> TranslationMap:
    """
    Parse a translation document into a map.

    With ``require_lineage=False`` a legacy document without a valid ``_uuid``
    is accepted and assigned a fresh lineage id.
    """
    if require_lineage:
        return document_to_map(validate_document(data))

    document = _decode(data)
    _check_entries(document)
    if not is_uuid(document.get(LINEAGE_KEY)):
        document[LINEAGE_KEY] = str(uuid.uuid4())
        logger.info("lineage_assigned", lineage_id=document[LINEAGE_KEY])
    return document_to_map(document)


def map_to_document(translation_map: TranslationMap) -> Dict[str, Any]:
    """Wire representation with the lineage key first and entries sorted."""
    document: Dict[str, Any] = {LINEAGE_KEY: translation_map.lineage_id}
    for key in sorted(translation_map.metadata):
        document[key] = translation_map.metadata[key]
    for key in sorted(translation_map.entries):
        document[key] = translation_map.entries[key].to_wire()
    return document


def serialize_document(translation_map: TranslationMap, indent: Optional[int] = 2) -> str:
    return json.dumps(map_to_document(translation_map), ensure_ascii=False, indent=indent)


__all__ = [
    'Tag',
    'TranslationEntry',
    'TranslationMap',
    'LINEAGE_KEY',
    'MAX_DOCUMENT_BYTES',
    'MAX_DOCUMENT_DEPTH',
    'is_uuid',
    'validate_document',
    'parse_document',
    'document_to_map',
    'map_to_document',
    'serialize_document',
]
