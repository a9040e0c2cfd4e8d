"""Rate-limited cache revalidation for the order explorer.

Every successful batch asks the explorer to drop its cached order lists.
Requests go out at most once per interval: the first call fires right away
and any calls made while one is pending collapse into a single trailing
request once the interval has elapsed.
"""

import asyncio
import logging
from typing import Optional

import aiohttp
from aiolimiter import AsyncLimiter

logger = logging.getLogger(__name__)


class RevalidationNotifier:
    """Fire-and-forget, coalescing GET against the revalidation endpoint."""

    def __init__(self, url: str, interval: float = 10.0, request_timeout: float = 10.0):
        """
        Args:
            url: Revalidation endpoint
            interval: Minimum seconds between two outbound requests
            request_timeout: Total timeout for one request
        """
        self.url = url
        self.interval = interval
        self._limiter = AsyncLimiter(max_rate=1, time_period=interval)
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self._pending = False
        self._worker: Optional[asyncio.Task] = None
        self._closed = False
        self.requests_sent = 0
        self.requests_failed = 0

    def notify(self) -> None:
        """Request a revalidation. Never blocks and never raises."""
        if self._closed:
            logger.debug("Notifier is closed, ignoring revalidation request")
            return
        self._pending = True
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._pending:
            await self._limiter.acquire()
            self._pending = False
            await self._send()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _send(self) -> None:
        try:
            session = await self._get_session()
            async with session.get(self.url) as response:
                logger.debug(f"Revalidation request returned {response.status}")
            self.requests_sent += 1
        except Exception as e:
            self.requests_failed += 1
            logger.warning(f"Revalidation request to {self.url} failed: {e}")

    async def close(self) -> None:
        """Cancel any pending request and close the HTTP session. Final."""
        self._closed = True
        self._pending = False
        if self._worker and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None

        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
