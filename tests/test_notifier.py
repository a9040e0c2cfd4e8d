"""
Unit tests for the throttled revalidation notifier.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from orderstream.notifier import RevalidationNotifier

from conftest import MockAsyncContextManager

REVALIDATE_URL = "https://explorer.example.com/api/orders/revalidate"


@pytest.fixture
def mock_session():
    response = MagicMock()
    response.status = 200

    session = MagicMock()
    session.closed = False
    session.get = MagicMock(return_value=MockAsyncContextManager(response))
    session.close = AsyncMock()
    return session


@pytest.fixture
def patched_session(mock_session):
    with patch("orderstream.notifier.aiohttp.ClientSession", return_value=mock_session):
        yield mock_session


class TestRevalidationNotifier:

    @pytest.mark.asyncio
    async def test_first_notify_fires_immediately(self, patched_session):
        notifier = RevalidationNotifier(REVALIDATE_URL, interval=0.2)

        notifier.notify()
        await asyncio.sleep(0.05)

        patched_session.get.assert_called_once_with(REVALIDATE_URL)
        assert notifier.requests_sent == 1
        await notifier.close()

    @pytest.mark.asyncio
    async def test_burst_collapses_into_leading_and_trailing_call(self, patched_session):
        notifier = RevalidationNotifier(REVALIDATE_URL, interval=0.2)

        for _ in range(5):
            notifier.notify()
        await asyncio.sleep(0.05)
        assert patched_session.get.call_count == 1

        for _ in range(3):
            notifier.notify()
        await asyncio.sleep(0.05)
        # Still inside the interval
        assert patched_session.get.call_count == 1

        await asyncio.sleep(0.3)
        assert patched_session.get.call_count == 2

        await asyncio.sleep(0.3)
        assert patched_session.get.call_count == 2
        await notifier.close()

    @pytest.mark.asyncio
    async def test_failure_is_counted_not_raised(self, patched_session, caplog):
        patched_session.get.side_effect = aiohttp.ClientError("explorer down")
        notifier = RevalidationNotifier(REVALIDATE_URL, interval=0.2)

        notifier.notify()
        await asyncio.sleep(0.05)

        assert notifier.requests_failed == 1
        assert notifier.requests_sent == 0
        assert "Revalidation request" in caplog.text
        await notifier.close()

    @pytest.mark.asyncio
    async def test_close_cancels_pending_and_closes_session(self, patched_session):
        notifier = RevalidationNotifier(REVALIDATE_URL, interval=5.0)

        notifier.notify()
        await asyncio.sleep(0.05)
        notifier.notify()  # waits on the limiter

        await notifier.close()

        assert patched_session.get.call_count == 1
        patched_session.close.assert_called_once()
        assert notifier._worker is None

    @pytest.mark.asyncio
    async def test_close_without_requests(self):
        notifier = RevalidationNotifier(REVALIDATE_URL)

        await notifier.close()

        assert notifier._session is None

    @pytest.mark.asyncio
    async def test_notify_after_close_is_ignored(self, patched_session):
        notifier = RevalidationNotifier(REVALIDATE_URL, interval=0.2)
        await notifier.close()

        notifier.notify()
        await asyncio.sleep(0.05)

        patched_session.get.assert_not_called()
        assert notifier._worker is None
        assert notifier._session is None
