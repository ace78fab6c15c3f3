"""Event stream parsing."""

from .sse_parser import SSEEvent, SSEParser

__all__ = ["SSEEvent", "SSEParser"]
