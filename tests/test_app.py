"""
Tests for process wiring and startup failure handling.
"""

import asyncio
import os
from unittest.mock import AsyncMock, patch

import pytest

from orderstream import app
from orderstream.config import StreamConfig
from orderstream.errors import OrderStreamAuthError

from conftest import TEST_PRIVATE_KEY


@pytest.fixture
def config():
    env = {
        "WS_WALLET_PRIVATE_KEY": TEST_PRIVATE_KEY,
        "POSTGRES_URL": "postgresql://test",
        "ORDER_BATCH_SIZE": "5",
        "ORDER_MAX_QUEUE_SIZE": "50",
    }
    with patch.dict(os.environ, env, clear=True):
        return StreamConfig()


def test_build_client_wiring(config):
    database = AsyncMock()
    notifier = AsyncMock()

    client = app.build_client(config, database, notifier)

    assert client.queue is client.persister.queue
    assert client.queue.max_size == 50
    assert client.persister.batch_size == 5
    assert client.persister.store is database
    assert client.persister.notifier is notifier
    assert client.persister.chain == "sepolia"
    assert client.ws_url == "wss://order-stream.beboundless.xyz/ws/orders"


@pytest.mark.asyncio
async def test_run_returns_1_when_connect_fails(config):
    with patch("orderstream.app.OrderDatabase") as db_cls, \
         patch("orderstream.app.RevalidationNotifier") as notifier_cls, \
         patch("orderstream.app.OrderStreamClient.connect", new_callable=AsyncMock) as connect:
        db_cls.return_value.initialize = AsyncMock()
        db_cls.return_value.close = AsyncMock()
        notifier_cls.return_value.close = AsyncMock()
        connect.side_effect = OrderStreamAuthError("nonce endpoint down")

        code = await app.run(config, stop_event=asyncio.Event())

    assert code == 1
    db_cls.return_value.close.assert_awaited_once()
    notifier_cls.return_value.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_shuts_down_on_stop_event(config):
    stop_event = asyncio.Event()
    stop_event.set()

    with patch("orderstream.app.OrderDatabase") as db_cls, \
         patch("orderstream.app.RevalidationNotifier") as notifier_cls, \
         patch("orderstream.app.OrderStreamClient.connect", new_callable=AsyncMock), \
         patch("orderstream.app.OrderStreamClient.disconnect", new_callable=AsyncMock) as disconnect:
        db_cls.return_value.initialize = AsyncMock()
        db_cls.return_value.close = AsyncMock()
        notifier_cls.return_value.close = AsyncMock()

        code = await app.run(config, stop_event=stop_event)

    assert code == 0
    disconnect.assert_awaited_once()
    db_cls.return_value.close.assert_awaited_once()


def test_main_exits_on_bad_config():
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(SystemExit) as exc:
            app.main()

    assert exc.value.code == 1


def test_main_exits_on_non_numeric_setting():
    env = {
        "WS_WALLET_PRIVATE_KEY": TEST_PRIVATE_KEY,
        "POSTGRES_URL": "postgresql://test",
        "ORDER_BATCH_SIZE": "abc",
    }
    with patch.dict(os.environ, env, clear=True):
        with pytest.raises(SystemExit) as exc:
            app.main()

    assert exc.value.code == 1
