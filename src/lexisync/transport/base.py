"""Base transport for server-pushed event streams"""

import enum
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..sync.dispatch import Dispatcher, ImmediateDispatcher
from ..utils.errors import NetworkError
from ..utils.logging import get_logger

logger = get_logger(__name__)


class ConnectionState(enum.Enum):
    """Connection state for transport"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    # Stopped on a non-retryable error
    FAILED = "failed"


class TransportError(NetworkError):
    """Base exception for transport errors"""
    code = "TRANSPORT_ERROR"
    default_message = "Event stream transport error"


class Backoff:
    """Exponential reconnection delay: ``min(base * 2**failures, cap)`` seconds."""

    def __init__(self, base: float = 3.0, cap: float = 30.0):
        self.base = base
        self.cap = cap
        self.failures = 0

    @property
    def delay(self) -> float:
        return min(self.base * (2 ** self.failures), self.cap)

    def record_failure(self) -> float:
        """Count a failed attempt and return the delay to wait before the next."""
        delay = self.delay
        self.failures += 1
        return delay

    def reset(self) -> None:
        self.failures = 0

    def set_base(self, base: float) -> None:
        """Server-requested base delay, in seconds."""
        self.base = base


class Transport(ABC):
    """Abstract base class for receive-only event transports"""

    def __init__(self, name: Optional[str] = None, dispatcher: Optional[Dispatcher] = None):
        self.name = name or f"{self.__class__.__name__}_{uuid.uuid4().hex[:8]}"
        self.state = ConnectionState.DISCONNECTED
        self.dispatcher = dispatcher or ImmediateDispatcher()
        self._event_handlers: List[Callable] = []
        self._error_handlers: List[Callable] = []
        self._state_handlers: List[Callable] = []
        self._stats: Dict[str, Any] = {
            "events_received": 0,
            "bytes_received": 0,
            "connects": 0,
            "errors": 0,
            "connected_at": None,
            "disconnected_at": None,
        }

    @abstractmethod
    async def connect(self) -> None:
        """Start receiving events"""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Stop receiving events and suppress reconnection"""
        pass

    def on_event(self, handler: Callable) -> None:
        """Register an event handler"""
        self._event_handlers.append(handler)

    def on_error(self, handler: Callable) -> None:
        """Register a handler for permanent errors"""
        self._error_handlers.append(handler)

    def on_state_change(self, handler: Callable) -> None:
        """Register a connection state handler"""
        self._state_handlers.append(handler)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        logger.debug("transport_state_changed", transport=self.name, old=self.state.value, new=state.value)
        self.state = state

        if state is ConnectionState.CONNECTED:
            self._stats["connects"] += 1
            self._stats["connected_at"] = datetime.now()
        elif state in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
            self._stats["disconnected_at"] = datetime.now()

        for handler in self._state_handlers:
            self.dispatcher.invoke(handler, state)

    def _handle_event(self, event: Any) -> None:
        self._stats["events_received"] += 1
        for handler in self._event_handlers:
            self.dispatcher.invoke(handler, event)

    def _handle_error(self, error: Exception) -> None:
        """Report a permanent error to listeners"""
        self._stats["errors"] += 1
        logger.error("transport_error", transport=self.name, error=str(error))
        for handler in self._error_handlers:
            self.dispatcher.invoke(handler, error)

    def get_stats(self) -> Dict[str, Any]:
        """Get transport statistics"""
        return {
            **self._stats,
            "state": self.state.value,
        }


__all__ = ['ConnectionState', 'TransportError', 'Backoff', 'Transport']
