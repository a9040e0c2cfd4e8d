"""
Unit tests for the ingestion queue and its drop-oldest ceiling.
"""

import logging

from orderstream.order_queue import IngestionQueue, QueueEntry


def _fill(queue: IngestionQueue, count: int) -> None:
    for i in range(count):
        queue.push(QueueEntry(payload={"seq": i}))


class TestIngestionQueue:

    def test_push_and_take_fifo(self):
        queue = IngestionQueue()
        _fill(queue, 5)

        batch = queue.take_batch(3)

        assert [e.payload["seq"] for e in batch] == [0, 1, 2]
        assert len(queue) == 2
        assert [e.payload["seq"] for e in queue.take_batch(len(queue))] == [3, 4]

    def test_take_batch_larger_than_queue(self):
        queue = IngestionQueue()
        _fill(queue, 2)

        assert len(queue.take_batch(10)) == 2
        assert len(queue) == 0
        assert queue.take_batch(10) == []

    def test_queue_is_unbounded_between_passes(self):
        queue = IngestionQueue(max_size=10)
        _fill(queue, 25)

        assert len(queue) == 25

    def test_ceiling_noop_below_limit(self):
        queue = IngestionQueue(max_size=1000)
        _fill(queue, 999)

        assert queue.enforce_ceiling() == 0
        assert len(queue) == 999

    def test_ceiling_keeps_most_recent_entries(self, caplog):
        queue = IngestionQueue(max_size=1000)
        _fill(queue, 1500)

        with caplog.at_level(logging.WARNING):
            dropped = queue.enforce_ceiling()

        assert dropped == 500
        assert len(queue) == 1000
        seqs = [e.payload["seq"] for e in queue.take_batch(len(queue))]
        assert seqs == list(range(500, 1500))
        assert queue.dropped_total == 500
        assert "Dropping older orders" in caplog.text

    def test_ceiling_at_exact_limit_logs_but_keeps_all(self, caplog):
        queue = IngestionQueue(max_size=1000)
        _fill(queue, 1000)

        with caplog.at_level(logging.WARNING):
            dropped = queue.enforce_ceiling()

        assert dropped == 0
        assert len(queue) == 1000
        assert "has reached limit" in caplog.text

    def test_clear(self):
        queue = IngestionQueue()
        _fill(queue, 3)

        queue.clear()

        assert len(queue) == 0
        assert not queue

    def test_entry_has_receipt_time(self):
        entry = QueueEntry(payload={})
        assert entry.received_at > 0
