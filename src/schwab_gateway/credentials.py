"""OAuth2 Credential Management.

CredentialStore holds the current token pair; TokenRefresher exchanges the
refresh token for a new pair on a fixed period in the background.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import asyncio
import base64
import logging
import threading

import httpx

from src.schwab_gateway.errors import AuthError, Result
from src.schwab_gateway.events import EventSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialState:
    """Current auth material. Replaced wholesale, never edited."""
    access_token: str = ""
    refresh_token: str = ""
    client_id: str = ""
    client_secret: str = ""
    obtained_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class CredentialStore:
    """Thread-safe holder of the active CredentialState."""

    def __init__(self, state: Optional[CredentialState] = None):
        self._lock = threading.Lock()
        self._state = state or CredentialState()

    @property
    def state(self) -> CredentialState:
        with self._lock:
            return self._state

    @property
    def access_token(self) -> str:
        return self.state.access_token

    def replace(self, access_token: str, refresh_token: str) -> CredentialState:
        """Swap in a complete new token pair."""
        with self._lock:
            self._state = CredentialState(
                access_token=access_token,
                refresh_token=refresh_token,
                client_id=self._state.client_id,
                client_secret=self._state.client_secret,
            )
            return self._state

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def basic_headers(self) -> dict[str, str]:
        state = self.state
        token = base64.b64encode(f"{state.client_id}:{state.client_secret}".encode()).decode()
        return {"Authorization": f"Basic {token}"}


class TokenRefresher:
    """Periodically exchanges the refresh token for a new token pair.

    A failed refresh is reported and the last known-good pair stays active
    until the next scheduled attempt.

    Example:
        refresher = TokenRefresher(store, http, config.token_url, interval=60)
        await refresher.refresh()   # initial exchange
        refresher.start()
    """

    def __init__(
        self,
        store: CredentialStore,
        http: httpx.AsyncClient,
        token_url: str,
        interval: float = 60.0,
        events: Optional[EventSink] = None,
    ):
        self._store = store
        self._http = http
        self._token_url = token_url
        self._interval = interval
        self._events = events
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self) -> Result[CredentialState]:
        """Exchange the current refresh token for a new pair."""
        async with self._lock:
            state = self._store.state
            try:
                state = await self._exchange(state)
            except AuthError as e:
                if self._events:
                    await self._events.report_error(e, "token_refresh")
                else:
                    logger.warning(f"Token refresh failed: {e.message}")
                return Result.fail(e, "token_refresh")
            logger.info("Access token refreshed")
            return Result.ok(state)

    async def _exchange(self, state: CredentialState) -> CredentialState:
        try:
            resp = await self._http.post(
                self._token_url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": state.refresh_token,
                },
                headers=self._store.basic_headers(),
            )
        except (httpx.HTTPError, RuntimeError) as e:
            # RuntimeError: client already closed
            raise AuthError(f"Token request failed: {e}") from e

        if resp.status_code != 200:
            raise AuthError(f"Token request rejected: {resp.status_code}", resp.status_code)

        try:
            body = resp.json()
        except ValueError as e:
            raise AuthError(f"Malformed token response: {e}", resp.status_code) from e
        access = body.get("access_token") if isinstance(body, dict) else None
        if not access or not isinstance(access, str):
            raise AuthError(f"Malformed token response: {str(body)[:100]}", resp.status_code)

        return self._store.replace(access, body.get("refresh_token") or state.refresh_token)

    def start(self) -> None:
        """Schedule the refresh loop."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Token refresh scheduled every {self._interval}s")

    async def stop(self) -> None:
        """Cancel the refresh loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.refresh()
            except Exception as e:
                logger.error(f"Scheduled token refresh crashed: {e!r}")
                if self._events:
                    await self._events.report_error(e, "token_refresh")
