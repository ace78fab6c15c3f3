"""Live update transport

Server-pushed event stream with reconnection, resume and stall detection.
"""

from .base import Transport, TransportError, ConnectionState, Backoff
from .sse import LiveUpdateChannel

__all__ = [
    "Transport",
    "TransportError",
    "ConnectionState",
    "Backoff",
    "LiveUpdateChannel",
]
