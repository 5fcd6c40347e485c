import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi.concurrency import run_in_threadpool

from donation_relay.core.config import Settings
from donation_relay.core.errors import RelayerNotConfiguredError
from donation_relay.donations.schemas import PENDING, PROCESSING
from . import scheduler
from .processor import ItemResult, RelayerProcessor

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    # what one scheduler tick did
    ran: bool
    pending: int = 0
    queue_age_ms: int = 0
    busy: bool = False
    results: List[ItemResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success and not r.skipped)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)


class RelayService:
    """
    The one place that owns the queue store, the processor and the batch lock.

    Built once at startup and kept on ``app.state``; request handlers and the
    background worker both go through it, so only one batch runs at a time.
    """

    def __init__(self, store, relay, settings: Settings, sleep=asyncio.sleep, rng=None):
        self.store = store
        self.relay = relay
        self.settings = settings
        self.rng = rng
        self.processor = None
        if relay is not None:
            self.processor = RelayerProcessor(store, relay, settings, sleep=sleep, rng=rng)
        self._lock = asyncio.Lock()
        self._current: Optional[asyncio.Task] = None

    @property
    def configured(self) -> bool:
        return self.processor is not None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def status(self) -> dict:
        now = self.store.clock()
        pending = self.store.list_by_status(PENDING)
        processing = self.store.list_by_status(PROCESSING)
        stats = self.store.stats()
        age = scheduler.queue_age_ms(pending, now)
        return {
            "pending": len(pending),
            "processing": len(processing),
            "minBatchSize": self.settings.min_batch_size,
            "queueAgeSeconds": age // 1000,
            "maxQueueAgeSeconds": self.settings.max_queue_age_ms // 1000,
            "shouldProcess": scheduler.should_run(
                pending, now, self.settings.min_batch_size, self.settings.max_queue_age_ms
            ),
            "lastProcessed": stats.last_processed,
            "totalProcessed": stats.total_processed,
            "totalFailed": stats.total_failed,
        }

    async def run_once(self) -> BatchOutcome:
        """One scheduler tick: check the thresholds and drain the pending set if they're met."""
        if not self.configured:
            raise RelayerNotConfiguredError("Relayer not configured")
        if self._lock.locked():
            return BatchOutcome(ran=False, busy=True)

        async with self._lock:
            pending = await run_in_threadpool(self.store.list_by_status, PENDING)
            now = self.store.clock()
            age = scheduler.queue_age_ms(pending, now)
            if not scheduler.should_run(pending, now, self.settings.min_batch_size,
                                        self.settings.max_queue_age_ms):
                return BatchOutcome(ran=False, pending=len(pending), queue_age_ms=age)

            # the order is fixed here, anything enqueued from now on waits for the next tick
            batch = scheduler.select_batch(pending, self.rng)
            logger.info("starting batch of %d donations", len(batch))
            results = await self.processor.run_batch(batch)
            return BatchOutcome(ran=True, pending=len(pending), queue_age_ms=age, results=results)

    async def run_detached(self) -> BatchOutcome:
        """Run a tick as its own task so a dropped HTTP client can't cancel it halfway."""
        task = asyncio.ensure_future(self.run_once())
        self._current = task
        return await asyncio.shield(task)

    async def aclose(self):
        if self._current is not None and not self._current.done():
            # let the batch finish, every item is persisted as it goes
            await asyncio.wait([self._current])
        if self.relay is not None:
            await self.relay.aclose()
