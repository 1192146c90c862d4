"""HTTP clock client with retry logic.

Used by viewers that cannot hold a socket open (polling displays) and by
the external sync script.

Features:
- httpx async client with connection pooling
- Automatic retry with exponential backoff on timeouts / network errors
- ``ClockPoller`` feeding a ``ClockDisplay`` at a fixed interval
"""

import asyncio
import logging
from typing import Any

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pokerclock.client.display import ClockDisplay

logger = logging.getLogger(__name__)

# Retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_MIN_WAIT = 1  # seconds
DEFAULT_MAX_WAIT = 10  # seconds

_retry = retry(
    stop=stop_after_attempt(DEFAULT_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=DEFAULT_MIN_WAIT, max=DEFAULT_MAX_WAIT),
    retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class ClockApiError(Exception):
    """Server answered with ``success: false`` or a non-2xx status."""

    def __init__(self, status_code: int, error_code: str | None, message: str):
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        super().__init__(f"{status_code} {error_code}: {message}")


class ClockApiClient:
    """Async client for the clock HTTP API.

    Usage:
        async with ClockApiClient("http://clock:8000", token=jwt) as client:
            state = await client.get_state("t-1")
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        api_key: str | None = None,
        timeout: float = 10.0,
        connect_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers: dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if api_key:
            headers["X-API-Key"] = api_key

        self._base_url = base_url.rstrip("/")
        self._headers = headers
        self._timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ClockApiClient":
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    @_retry
    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = await self.client.request(method, path, **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_error or body.get("success") is False:
            raise ClockApiError(
                response.status_code,
                body.get("errorCode"),
                body.get("error") or response.reason_phrase,
            )
        return body

    async def get_state(self, tournament_id: str) -> dict[str, Any]:
        return await self._request("GET", "/api/clock/state", params={"tournamentId": tournament_id})

    async def join(self, tournament_id: str, user_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"tournamentId": tournament_id}
        if user_id:
            body["userId"] = user_id
        return await self._request("POST", "/api/clock/join", json=body)

    async def sync(self) -> dict[str, Any]:
        """Trigger one reconciliation pass over all active tournaments."""
        return await self._request("POST", "/api/clock/sync")


class ClockPoller:
    """Polls the clock state and feeds a display.

    Usage:
        poller = ClockPoller(client, display, interval_seconds=5)
        await poller.start()
        ...
        await poller.stop()
    """

    def __init__(
        self,
        client: ClockApiClient,
        display: ClockDisplay,
        interval_seconds: float = 5.0,
    ):
        self.client = client
        self.display = display
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None
        self._running = False

    async def poll_once(self) -> bool:
        """Fetch the current state once; False if the request failed."""
        try:
            body = await self.client.get_state(self.display.tournament_id)
        except (ClockApiError, httpx.HTTPError) as e:
            logger.warning(f"Clock poll failed for {self.display.tournament_id}: {e}")
            return False
        return self.display.apply_message(body)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run_loop(self) -> None:
        while self._running:
            await self.poll_once()
            await asyncio.sleep(self.interval_seconds)
