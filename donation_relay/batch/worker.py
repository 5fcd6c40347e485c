import asyncio
import logging

from donation_relay.core.errors import RelayError

logger = logging.getLogger(__name__)


class BatchWorker:
    """Background task that ticks the relay service on a fixed interval."""

    def __init__(self, service, interval: float):
        self.service = service
        self.interval = interval
        self._task = None
        self._stopping = asyncio.Event()

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name="batch-worker")
            logger.info("batch worker started, interval %.1fs", self.interval)
        return self._task

    async def tick(self):
        try:
            outcome = await self.service.run_once()
        except RelayError as e:
            # underfunded or unreachable gateway, everything stays pending for the next tick
            logger.warning("batch tick skipped: %s", e)
            return None
        except Exception:
            # keep the loop alive, the next tick starts from whatever the store says
            logger.exception("batch tick crashed")
            return None
        if outcome.ran:
            logger.info("batch tick processed %d, failed %d", outcome.processed, outcome.failed)
        return outcome

    async def _loop(self):
        while not self._stopping.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue

    async def stop(self):
        self._stopping.set()
        if self._task is not None:
            # a running batch is allowed to finish
            await self._task
            self._task = None
