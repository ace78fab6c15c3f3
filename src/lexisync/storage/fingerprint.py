"""
Content fingerprints for translation maps.

The fingerprint is the SHA-256 of the canonical compact JSON form of a map:

    {"<key>":{"t":"H","v":"<value>"},"_uuid":"<lineage>",...}

with non-ASCII characters unescaped and CRLF normalized to LF in keys and
values. Keys, ``_uuid`` included, are ordered by code point, which is the
byte order of their UTF-8 form. Keys that only differ by line endings are
all hashed, tie-broken on the raw key. The document is fed to the hash piece
by piece and never built in memory.
"""

import hashlib
import json
from typing import Union

from ..models.translation import LINEAGE_KEY, TranslationMap


_SEPARATORS = (",", ":")


def _normalize(text: str) -> str:
    return text.replace("\r\n", "\n")


def _encode(value) -> bytes:
    return json.dumps(value, ensure_ascii=False, separators=_SEPARATORS).encode("utf-8")


def _sort_key(key: str):
    return _normalize(key), key


def fingerprint(translation_map: TranslationMap) -> str:
    """
    Compute the content fingerprint of a map.

    Args:
        translation_map: Map to hash

    Returns:
        64 character lowercase hex digest
    """
    hasher = hashlib.sha256()
    separator = b"{"
    keys = sorted([LINEAGE_KEY, *translation_map.entries], key=_sort_key)
    for key in keys:
        if key == LINEAGE_KEY:
            value = translation_map.lineage_id
        else:
            entry = translation_map.entries[key]
            value = {"t": entry.tag.value, "v": _normalize(entry.value)}
        hasher.update(separator)
        hasher.update(_encode(_normalize(key)))
        hasher.update(b":")
        hasher.update(_encode(value))
        separator = b","

    hasher.update(b"}")
    return hasher.hexdigest()


def fingerprint_bytes(data: Union[bytes, str]) -> str:
    """SHA-256 of a raw payload."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


__all__ = ['fingerprint', 'fingerprint_bytes']
