"""
Storage components for lexisync.

This package provides:
- Content fingerprints of translation maps
- Atomic local persistence of the map and its ancestor snapshot
"""

from .fingerprint import fingerprint, fingerprint_bytes
from .local import LocalStore, count_local_changes

__all__ = [
    'fingerprint',
    'fingerprint_bytes',
    'LocalStore',
    'count_local_changes',
]
