"""Process entry point: wires config, store, notifier and stream client together."""

import sys
import signal
import asyncio
import logging
from typing import Optional

from .auth import SiweAuth, WalletSigner
from .batch_persister import BatchPersister
from .client import OrderStreamClient
from .config import StreamConfig
from .database import OrderDatabase
from .errors import OrderStreamError
from .notifier import RevalidationNotifier
from .order_queue import IngestionQueue

logger = logging.getLogger(__name__)


def configure_logging(config: StreamConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper()),
        format=config.LOG_FORMAT,
    )


def build_client(config: StreamConfig, database: OrderDatabase, notifier: RevalidationNotifier) -> OrderStreamClient:
    """Assemble the client and its collaborators from configuration."""
    signer = WalletSigner(config.WS_WALLET_PRIVATE_KEY)
    auth = SiweAuth(signer, config.ORDER_STREAM_URL)
    queue = IngestionQueue(max_size=config.ORDER_MAX_QUEUE_SIZE)
    persister = BatchPersister(
        queue=queue,
        store=database,
        domain=config.market_domain(),
        notifier=notifier,
        chain=config.ORDER_CHAIN,
        batch_size=config.ORDER_BATCH_SIZE,
    )
    return OrderStreamClient(auth=auth, persister=persister, queue=queue)


async def run(config: StreamConfig, stop_event: Optional[asyncio.Event] = None) -> int:
    """Run the client until SIGINT/SIGTERM or stop_event. Returns the exit code."""
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable off the main thread and on Windows
            pass

    database = OrderDatabase(config.POSTGRES_URL, pool_size=config.DB_POOL_SIZE)
    notifier = RevalidationNotifier(config.REVALIDATE_URL, interval=config.REVALIDATE_INTERVAL_SECONDS)
    client = None
    try:
        client = build_client(config, database, notifier)
        await database.initialize()
        await client.connect()
    except Exception as e:
        logger.error(f"Failed to start WebSocket client: {e}")
        if client is not None:
            await client.disconnect()
            await client.persister.stop()
        await notifier.close()
        await database.close()
        return 1

    logger.info("WebSocket client running. Press Ctrl+C to exit.")
    await stop_event.wait()

    logger.info("Received shutdown signal")
    await client.disconnect()
    await client.persister.stop()
    logger.info(f"Persister stats at shutdown: {client.persister.get_stats()}")
    await notifier.close()
    await database.close()
    return 0


def main() -> None:
    """Console entry point."""
    try:
        config = StreamConfig()
    except OrderStreamError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    configure_logging(config)
    logger.info(f"Starting order stream client: {config}")
    sys.exit(asyncio.run(run(config)))


if __name__ == "__main__":
    main()
