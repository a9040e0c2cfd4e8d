"""
Order stream WebSocket client with SIWE authentication.

Connection lifecycle: IDLE -> CONNECTING -> OPEN -> CLOSED. CLOSED is
terminal; the client never reconnects on its own. A supervisor that wants a
new connection creates a new client.
"""

import json
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .auth import SiweAuth
from .batch_persister import BatchPersister
from .errors import OrderStreamAuthError, OrderStreamConnectionError
from .models import ConnectionState
from .order_queue import IngestionQueue, QueueEntry

logger = logging.getLogger(__name__)

HANDSHAKE_TIMEOUT_SECONDS = 10
FORWARDED_HEADERS = {
    "X-Forwarded-Proto": "https",
    "X-Forwarded-Port": "443",
    "X-Forwarded-For": "127.0.0.1",
}


def to_ws_url(base_url: str) -> str:
    """Map an http(s) base URL to the ws(s) order stream endpoint."""
    base_url = base_url.rstrip("/")
    if base_url.startswith("https://"):
        base_url = "wss://" + base_url[len("https://"):]
    elif base_url.startswith("http://"):
        base_url = "ws://" + base_url[len("http://"):]
    return f"{base_url}/ws/orders"


class OrderStreamClient:
    """
    Client for the order broadcast stream.

    Features:
    - SIWE credential attached to the WebSocket handshake
    - Order frames pushed onto the ingestion queue
    - Batch persistence triggered on every accepted order
    """

    def __init__(
        self,
        auth: SiweAuth,
        persister: BatchPersister,
        queue: Optional[IngestionQueue] = None,
    ):
        """
        Args:
            auth: SIWE credential builder for the client wallet
            persister: Batch persister draining the queue
            queue: Ingestion queue, defaults to the persister's queue
        """
        self.auth = auth
        self.persister = persister
        self.queue = queue if queue is not None else persister.queue
        self.base_url = auth.base_url

        self.websocket = None
        self.state = ConnectionState.IDLE
        self._listener_task: Optional[asyncio.Task] = None

        logger.info(f"Initialized order stream client for {self.base_url}")

    @property
    def ws_url(self) -> str:
        return to_ws_url(self.base_url)

    async def connect(self):
        """
        Authenticate and open the stream.

        Returns:
            The open WebSocket connection

        Raises:
            OrderStreamAuthError: nonce fetch or signing failed
            OrderStreamConnectionError: the WebSocket handshake failed
        """
        if self.state != ConnectionState.IDLE:
            raise OrderStreamConnectionError(f"Cannot connect from state {self.state.value}")

        logger.info("Connecting to WebSocket server...")
        self.state = ConnectionState.CONNECTING
        try:
            await self._establish_connection()
        except Exception as e:
            logger.error(f"Failed to connect to WebSocket server: {e}")
            self.websocket = None
            self.state = ConnectionState.CLOSED
            if isinstance(e, (OrderStreamAuthError, OrderStreamConnectionError)):
                raise
            raise OrderStreamConnectionError(f"Failed to connect: {e}") from e

        self.state = ConnectionState.OPEN
        self._on_open()

        # Drain anything that was already waiting
        self.persister.schedule()

        logger.info("WebSocket connection established")
        return self.websocket

    async def _establish_connection(self) -> None:
        auth_data = await self.auth.auth_header_value()
        headers = {"X-Auth-Data": auth_data, **FORWARDED_HEADERS}

        websocket = await websockets.connect(
            self.ws_url,
            additional_headers=headers,
            open_timeout=HANDSHAKE_TIMEOUT_SECONDS,
        )

        # disconnect() during the handshake wins; CLOSED is terminal
        if self.state != ConnectionState.CONNECTING:
            transport = getattr(websocket, "transport", None)
            if transport is not None:
                transport.abort()
            raise OrderStreamConnectionError("Client was disconnected during the handshake")

        self.websocket = websocket
        self._remove_listeners()
        self._attach_listeners()

    def _remove_listeners(self) -> None:
        if self._listener_task and not self._listener_task.done():
            self._listener_task.cancel()
        self._listener_task = None

    def _attach_listeners(self) -> None:
        self._listener_task = asyncio.get_running_loop().create_task(self._listen(self.websocket))

    async def _listen(self, websocket) -> None:
        """Dispatch frames until the connection goes away."""
        try:
            async for message in websocket:
                self.handle_message(message)
        except ConnectionClosed as e:
            code, reason = (e.rcvd.code, e.rcvd.reason) if e.rcvd else (None, "")
        except (WebSocketException, OSError) as e:
            self._on_error(e)
            code, reason = None, ""
        else:
            code = getattr(websocket, "close_code", None)
            reason = getattr(websocket, "close_reason", None) or ""
        self._on_close(code, reason)

    def _on_open(self) -> None:
        logger.info("************* WebSocket connected")

    def handle_message(self, data: Union[str, bytes]) -> None:
        """Parse one frame and enqueue it if it carries an order."""
        try:
            message = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else str(data)
        except UnicodeDecodeError as e:
            logger.error(f"Failed to decode message: {e}")
            return

        try:
            parsed: Any = json.loads(message)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse message: {message[:200]} {e}")
            return

        if isinstance(parsed, dict) and parsed.get("order"):
            self.queue.push(QueueEntry(payload=parsed))
            self.persister.schedule()
        else:
            # Heartbeats and other control frames are not echoed back
            logger.debug(f"Ignoring non-order message: {message[:200]}")

    def _on_error(self, error: Exception) -> None:
        logger.error(f"WebSocket error: {error}")

    def _on_close(self, code: Optional[int], reason: str) -> None:
        self.state = ConnectionState.CLOSED
        logger.info(
            f"************* WebSocket disconnected code={code} reason={reason} "
            f"timestamp={datetime.now(timezone.utc).isoformat()}"
        )

    async def disconnect(self) -> None:
        """Tear down the connection and clear the queue. Safe to call twice."""
        if self.websocket is not None:
            self._remove_listeners()
            transport = getattr(self.websocket, "transport", None)
            if transport is not None:
                transport.abort()
            self.websocket = None

        self.queue.clear()
        self.state = ConnectionState.CLOSED
        logger.info("WebSocket client disconnected")
