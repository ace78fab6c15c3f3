"""
lexisync - collaborative translation mapping sync.

This package keeps a local key to text translation mapping in step with a
shared server copy:
- Content fingerprints for cheap drift detection
- Three-way merge with provenance tag tie-breaks
- Main / branch / fork lineage resolution
- A sync state machine with ordered, atomic apply
- A live SSE update channel with backoff and resume
"""

__version__ = "0.1.0"

__all__ = ['__version__']
