"""
Batch consumer for the liquidation queue.

One cycle: pop a batch of unhealthy positions, hand each to the handler,
then record how many were processed, failed, or could not be parsed in
counters. Nothing is re-queued.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional
import structlog

from liquidator.errors import MalformedRecordError
from liquidator.storage.redis_queue import LiquidationQueue

logger = structlog.get_logger(__name__)


@dataclass
class BatchResult:
    """Outcome of one consumer cycle."""
    popped: int = 0
    processed: int = 0
    failed: int = 0
    malformed: int = 0


class LiquidationConsumer:
    """Drains the liquidation queue in fixed-size batches."""

    def __init__(
        self,
        queue: LiquidationQueue,
        handler: Callable[[Any], None],
        batch_size: int = 100,
        counter_prefix: str = "liquidator",
    ):
        if batch_size <= 0:
            raise ValueError(f"batch_size must be > 0, got {batch_size}")

        self.queue = queue
        self.handler = handler
        self.batch_size = batch_size
        self.processed_key = f"{counter_prefix}.processed"
        self.failed_key = f"{counter_prefix}.failed"
        self.malformed_key = f"{counter_prefix}.malformed"
        self._running = False

    def run_once(self) -> BatchResult:
        """Pop one batch and process it."""
        malformed = []
        try:
            records = self.queue.pop_batch(self.batch_size)
        except MalformedRecordError as e:
            # Already popped; process what parsed
            records, malformed = e.records, e.malformed

        result = BatchResult(
            popped=len(records) + len(malformed),
            malformed=len(malformed),
        )

        if not result.popped:
            return result

        for record in records:
            try:
                self.handler(record)
                result.processed += 1
            except Exception as e:
                result.failed += 1
                logger.error(
                    "liquidation_handler_failed",
                    error=str(e),
                    record=record,
                )

        if result.processed:
            self.queue.increment_by(self.processed_key, result.processed)
        if result.failed:
            self.queue.increment_by(self.failed_key, result.failed)
        if result.malformed:
            self.queue.increment_by(self.malformed_key, result.malformed)

        logger.info(
            "liquidation_batch_processed",
            popped=result.popped,
            processed=result.processed,
            failed=result.failed,
            malformed=result.malformed,
        )
        return result

    def run(
        self,
        max_batches: Optional[int] = None,
        idle_sleep: float = 1.0,
    ) -> BatchResult:
        """
        Loop over run_once until stop() or max_batches cycles.

        Sleeps idle_sleep seconds whenever the queue comes back empty.
        Returns totals across all cycles.
        """
        totals = BatchResult()
        batches = 0
        self._running = True

        logger.info("liquidation_consumer_started", queue_key=self.queue.key)

        while self._running:
            if max_batches is not None and batches >= max_batches:
                break

            result = self.run_once()
            batches += 1

            totals.popped += result.popped
            totals.processed += result.processed
            totals.failed += result.failed
            totals.malformed += result.malformed

            if result.popped == 0 and idle_sleep > 0:
                time.sleep(idle_sleep)

        self._running = False
        logger.info(
            "liquidation_consumer_stopped",
            batches=batches,
            processed=totals.processed,
            failed=totals.failed,
        )
        return totals

    def stop(self) -> None:
        self._running = False
