"""
Device authorization login.

The user is shown a short code and a verification URL; the client then polls
until the code is approved, denied or expires.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..api.client import TranslationApiClient
from ..api.results import DeviceFlowInit
from ..utils.logging import get_logger
from .token_store import TokenStore


logger = get_logger("lexisync.auth.device_flow")


@dataclass
class LoginResult:
    success: bool
    user_name: Optional[str] = None
    error: Optional[str] = None


class DeviceFlowAuthenticator:
    """Runs the device flow and keeps the API client's token in step with the store."""

    def __init__(
        self,
        api: TranslationApiClient,
        store: TokenStore,
        sleep: Callable = asyncio.sleep,
    ):
        self.api = api
        self.store = store
        self._sleep = sleep
        self._auth_change_handlers: List[Callable[[], None]] = []

    def on_auth_changed(self, handler: Callable[[], None]) -> None:
        """Register a handler called after login or logout, e.g. to drop server state."""
        self._auth_change_handlers.append(handler)

    def _auth_changed(self) -> None:
        for handler in self._auth_change_handlers:
            handler()

    def restore(self) -> bool:
        """Apply a previously stored token to the API client."""
        token = self.store.get_token()
        self.api.set_token(token)
        return token is not None

    async def login(
        self,
        on_code: Optional[Callable[[DeviceFlowInit], None]] = None,
    ) -> LoginResult:
        """
        Run the device flow to completion.

        Args:
            on_code: Called once with the user code and verification URL to show

        Returns:
            LoginResult with the authorized user's name on success
        """
        init = await self.api.init_device_flow()
        if not init.success or not init.device_code:
            return LoginResult(success=False, error=init.error or "Device flow could not be started")

        logger.info("device_flow_started", verification_uri=init.verification_uri, expires_in=init.expires_in)
        if on_code is not None:
            on_code(init)

        interval = max(init.interval, 1)
        waited = 0
        while waited < init.expires_in:
            await self._sleep(interval)
            waited += interval

            poll = await self.api.poll_device_flow(init.device_code)
            if poll.pending:
                continue
            if not poll.success:
                if poll.error_code == "slow_down":
                    interval += 5
                    continue
                logger.warning("device_flow_failed", error=poll.error)
                return LoginResult(success=False, error=poll.error or "Authorization failed")

            if not poll.access_token:
                return LoginResult(success=False, error="Server returned no access token")

            self.store.set_token(poll.access_token)
            self.api.set_token(poll.access_token)
            self._auth_changed()
            logger.info("logged_in", user=poll.user_name)
            return LoginResult(success=True, user_name=poll.user_name)

        logger.warning("device_flow_expired", waited=waited)
        return LoginResult(success=False, error="Device code expired")

    def logout(self) -> None:
        self.store.clear()
        self.api.set_token(None)
        self._auth_changed()
        logger.info("logged_out")


__all__ = ['DeviceFlowAuthenticator', 'LoginResult']
