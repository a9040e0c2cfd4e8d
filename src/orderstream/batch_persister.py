"""
Batch persister that drains the ingestion queue into the order store.

Runs on the event loop thread only. A single boolean guard keeps at most one
drain pass alive: it is checked and set before the first await of a pass, so
no other pass can start in between. A pass that leaves work behind schedules
the next one with call_soon instead of recursing.

Failed batches are logged and dropped. They are not retried and are not put
back on the queue.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .eip712 import MarketDomain, compute_request_digest
from .errors import OrderValidationError
from .models import (
    OrderEnvelope,
    PersistedOrder,
    input_type_code,
    predicate_type_code,
)
from .order_queue import IngestionQueue, QueueEntry

logger = logging.getLogger(__name__)


class OrderStore(Protocol):
    """Persistence port used by the persister."""

    async def upsert_orders(self, rows: Sequence[PersistedOrder]) -> int:
        ...


class Notifier(Protocol):
    """Rate-limited, fire-and-forget change notification."""

    def notify(self) -> None:
        ...


def _validate_structure(payload: Any) -> None:
    if not isinstance(payload, dict) or not payload.get("order"):
        raise OrderValidationError("Invalid order data received", payload)
    request = payload["order"].get("request") if isinstance(payload["order"], dict) else None
    if not isinstance(request, dict) or not request.get("id"):
        raise OrderValidationError("Order has no request or request.id", payload)


class BatchPersister:
    """Drains queued order frames, builds rows and upserts them in batches."""

    def __init__(
        self,
        queue: IngestionQueue,
        store: OrderStore,
        domain: MarketDomain,
        notifier: Optional[Notifier] = None,
        chain: str = "sepolia",
        batch_size: int = 10,
    ):
        self.queue = queue
        self.store = store
        self.domain = domain
        self.notifier = notifier
        self.chain = chain
        self.batch_size = batch_size

        self._processing = False
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

        self.stats = {
            "batches_persisted": 0,
            "orders_persisted": 0,
            "invalid_entries": 0,
            "failed_batches": 0,
            "orders_lost": 0,
            "dropped_by_ceiling": 0,
        }

    @property
    def is_processing(self) -> bool:
        return self._processing

    def schedule(self) -> None:
        """Start a drain pass in the background unless one is already running."""
        if self._stopped or self._processing or not self.queue:
            return
        self._processing = True
        self._task = asyncio.get_running_loop().create_task(self._run_pass())

    async def process_next_batch(self) -> int:
        """Run one drain pass now. Returns rows written, 0 if skipped."""
        if self._stopped or self._processing or not self.queue:
            return 0
        self._processing = True
        return await self._run_pass()

    async def _run_pass(self) -> int:
        try:
            return await self._drain_once()
        finally:
            self._processing = False
            if self.queue and not self._stopped:
                asyncio.get_running_loop().call_soon(self.schedule)

    async def _drain_once(self) -> int:
        # Ceiling check and batch splice run back to back with no await between.
        dropped = self.queue.enforce_ceiling()
        self.stats["dropped_by_ceiling"] += dropped
        batch = self.queue.take_batch(self.batch_size)
        if not batch:
            return 0

        rows = self.build_rows(batch)
        if not rows:
            logger.warning("No valid orders to process in batch")
            return 0

        try:
            written = await self.store.upsert_orders(rows)
        except Exception as e:
            self.stats["failed_batches"] += 1
            self.stats["orders_lost"] += len(rows)
            logger.error(f"Batch processing failed, dropping {len(rows)} orders: {e}")
            return 0

        self.stats["batches_persisted"] += 1
        self.stats["orders_persisted"] += written
        logger.info(
            f"Processed batch: {len(batch)} orders. Queue: {len(self.queue)}. "
            f"OrderIds: {', '.join(row.order_id for row in rows)}"
        )

        if self.notifier is not None:
            self.notifier.notify()
        return written

    def build_rows(self, batch: List[QueueEntry]) -> List[PersistedOrder]:
        """Turn queue entries into rows, skipping invalid ones. Keeps FIFO order."""
        rows = []
        for entry in batch:
            try:
                rows.append(self.build_row(entry))
            except OrderValidationError as e:
                self.stats["invalid_entries"] += 1
                logger.error(f"{e}")
            except Exception as e:
                self.stats["invalid_entries"] += 1
                logger.error(f"Order failed validation: {e}")
        return rows

    def build_row(self, entry: QueueEntry) -> PersistedOrder:
        """Validate one entry and build its PersistedOrder."""
        _validate_structure(entry.payload)

        envelope = OrderEnvelope.model_validate(entry.payload)
        request = envelope.order.request
        created_at = envelope.created_at or datetime.fromtimestamp(entry.received_at, tz=timezone.utc)

        return PersistedOrder(
            order_id=request.order_id,
            chain=self.chain,
            customer_addr=request.customer_addr,
            state="SUBMITTED",
            min_price=str(request.offer.min_price),
            max_price=str(request.offer.max_price),
            bidding_start=str(request.offer.bidding_start),
            timeout=str(request.offer.timeout),
            lock_stake=str(request.offer.lock_stake),
            ramp_up_period=str(request.offer.ramp_up_period),
            img_id=request.requirements.image_id,
            img_url=request.image_url,
            input_type=input_type_code(request.input.input_type),
            input_data=request.input.data,
            predicate_type=predicate_type_code(request.requirements.predicate.predicate_type),
            predicate_data=request.requirements.predicate.data,
            timestamp=created_at,
            created_at=created_at,
            request_digest=compute_request_digest(request, self.domain),
            source="OFFCHAIN",
        )

    async def stop(self) -> None:
        """Stop scheduling passes and wait for an in-flight pass to finish."""
        self._stopped = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "queue_size": len(self.queue),
            "queue_dropped_total": self.queue.dropped_total,
            "is_processing": self._processing,
            "batch_size": self.batch_size,
        }
