"""SSE (Server-Sent Events) live update channel"""

import asyncio
from typing import Any, Callable, Dict, Optional, Union

import aiohttp

from ..streaming.sse_parser import SSEEvent, SSEParser
from ..sync.dispatch import Dispatcher
from ..utils.config import LiveUpdateConfig
from ..utils.errors import LexisyncError, error_for_status, is_retryable
from ..utils.logging import get_logger
from .base import Backoff, ConnectionState, Transport, TransportError

logger = get_logger(__name__)

TRANSLATION_UPDATED = "translation.updated"

HeaderSource = Union[Dict[str, str], Callable[[], Dict[str, str]]]


def events_url(base_url: str, translation_id: int) -> str:
    return f"{base_url.rstrip('/')}/translations/{translation_id}/events"


class LiveUpdateChannel(Transport):
    """Long-lived SSE subscription with reconnection

    Reconnects with exponential backoff until :meth:`disconnect` is called or
    the server answers 401, 403 or 404. The last received event id is sent
    back as ``Last-Event-ID`` so the server can replay missed events, and a
    connection that stays silent for the heartbeat timeout is torn down and
    retried.
    """

    def __init__(
        self,
        url: str,
        headers: Optional[HeaderSource] = None,
        config: Optional[LiveUpdateConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        name: Optional[str] = None,
        dispatcher: Optional[Dispatcher] = None,
    ):
        super().__init__(name, dispatcher)
        self.url = url
        self.config = config or LiveUpdateConfig()
        self.backoff = Backoff(self.config.base_delay, self.config.max_delay)
        self.heartbeat_timeout = self.config.heartbeat_timeout
        self.parser = SSEParser()
        self._headers = headers or {}
        self._session = session
        self._owns_session = session is None
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    def apply_config(self, config: LiveUpdateConfig) -> None:
        """Take new reconnection delays and heartbeat timeout"""
        self.config = config
        self.backoff.base = config.base_delay
        self.backoff.cap = config.max_delay
        self.heartbeat_timeout = config.heartbeat_timeout
        logger.info("live_channel_reconfigured", base_delay=config.base_delay, max_delay=config.max_delay)

    @property
    def last_event_id(self) -> Optional[str]:
        return self.parser.last_event_id

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def connect(self) -> None:
        """Start the background read loop"""
        if self.running:
            return

        self._closing = False
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=30)
            )
            self._owns_session = True

        logger.info("live_channel_starting", url=self.url)
        self._task = asyncio.create_task(self._run())

    async def disconnect(self) -> None:
        """Abort the in-flight read and stop reconnecting"""
        self._closing = True

        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

        if self.state is not ConnectionState.FAILED:
            self._set_state(ConnectionState.DISCONNECTED)
        logger.info("live_channel_stopped", url=self.url)

    async def wait_closed(self) -> None:
        """Wait until the read loop ends on its own (permanent error)"""
        if self._task is not None:
            await asyncio.shield(self._task)

    def _request_headers(self) -> Dict[str, str]:
        extra = self._headers() if callable(self._headers) else self._headers
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
            **extra,
        }
        if self.parser.last_event_id:
            headers["Last-Event-ID"] = self.parser.last_event_id
        return headers

    async def _run(self) -> None:
        """Connection loop"""
        while not self._closing:
            self._set_state(ConnectionState.CONNECTING)
            error: Optional[LexisyncError] = None
            try:
                await self._read_stream()
            except LexisyncError as e:
                error = e
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                error = TransportError(str(e) or type(e).__name__, cause=e)

            if error is not None:
                if not is_retryable(error):
                    self._set_state(ConnectionState.FAILED)
                    self._handle_error(error)
                    return
                logger.warning("live_channel_error", code=error.code, error=error.message)

            if self._closing:
                break

            self._set_state(ConnectionState.RECONNECTING)
            delay = self.backoff.record_failure()
            logger.info("live_channel_reconnecting", delay=delay, attempt=self.backoff.failures)
            await asyncio.sleep(delay)

    async def _read_stream(self) -> None:
        """Read one connection until it ends, stalls or fails"""
        async with self._session.get(
            self.url,
            headers=self._request_headers(),
            allow_redirects=False,
        ) as response:
            if response.status != 200:
                body = await response.text()
                raise error_for_status(response.status, body[:200])

            self.parser.reset()
            self.backoff.reset()
            self._set_state(ConnectionState.CONNECTED)

            while True:
                try:
                    chunk = await asyncio.wait_for(
                        response.content.readany(),
                        timeout=self.heartbeat_timeout,
                    )
                except asyncio.TimeoutError:
                    raise TransportError(f"No data for {self.heartbeat_timeout}s, connection stalled")

                if not chunk:
                    logger.debug("live_channel_stream_ended")
                    return

                self._stats["bytes_received"] += len(chunk)
                for event in self.parser.feed(chunk):
                    self._handle_event(event)

                if self.parser.retry is not None:
                    self.backoff.set_base(self.parser.retry / 1000.0)
                    self.parser.retry = None


def follow_updates(channel: LiveUpdateChannel, orchestrator: Any, translation_id: int) -> None:
    """
    Schedule an orchestrator check whenever the channel reports that
    ``translation_id`` changed on the server.
    """
    def handle(event: SSEEvent) -> None:
        if event.event != TRANSLATION_UPDATED:
            return
        try:
            payload = event.json()
        except ValueError:
            logger.warning("invalid_event_payload", event_type=event.event, event_id=event.id)
            return
        if not isinstance(payload, dict):
            return
        if payload.get("translation_id") not in (None, translation_id):
            return
        orchestrator.handle_remote_change(payload.get("file_hash"))

    channel.on_event(handle)


__all__ = [
    'LiveUpdateChannel',
    'TRANSLATION_UPDATED',
    'events_url',
    'follow_updates',
]
