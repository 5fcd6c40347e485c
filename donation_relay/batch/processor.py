import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Optional

from fastapi.concurrency import run_in_threadpool

from donation_relay.core.config import Settings
from donation_relay.core.errors import (
    ErrorKind,
    InvalidTransitionError,
    PartialFailureError,
    RelayError,
    RelayerUnderfundedError,
    RelayNetworkError,
    RelayTimeoutError,
)
from donation_relay.donations.schemas import COMPLETED, FAILED, PROCESSING
from donation_relay.relay.client import FEE_LEG, RECIPIENT_LEG
from . import fees

logger = logging.getLogger(__name__)


@dataclass
class ItemResult:
    id: str
    success: bool
    signature: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    failed_step: Optional[int] = None
    # picked up by another writer, this batch left it alone
    skipped: bool = False

    def public_view(self) -> dict:
        view = {"id": self.id, "success": self.success}
        if self.signature:
            view["signature"] = self.signature
        if self.error:
            view["error"] = self.error
        if self.skipped:
            view["skipped"] = True
        return view


class RelayerProcessor:
    """Runs queued donations through the relay gateway, one at a time."""

    def __init__(self, store, relay, settings: Settings, sleep=asyncio.sleep, rng=None):
        self.store = store
        self.relay = relay
        self.settings = settings
        self.sleep = sleep
        self.rng = rng or random.SystemRandom()

    def required_balance(self, batch_size: int) -> int:
        # worst case every item needs both legs
        worst_case = batch_size * 2 * self.settings.tx_fee_estimate
        return max(self.settings.min_relayer_balance, worst_case)

    async def ensure_funded(self, batch_size: int) -> int:
        balance = await self._call(self.relay.get_balance())
        required = self.required_balance(batch_size)
        if balance < required:
            logger.warning("relayer balance %d below floor %d, batch not started", balance, required)
            raise RelayerUnderfundedError(balance, required)
        return balance

    def next_delay(self) -> float:
        return self.settings.inter_item_delay + self.rng.uniform(0, self.settings.delay_jitter)

    async def _call(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.settings.relay_timeout)
        except asyncio.TimeoutError as e:
            raise RelayTimeoutError(f"relay call timed out after {self.settings.relay_timeout}s") from e

    async def _transition(self, donation_id, new_status, **fields):
        # the store is blocking sqlalchemy, keep it off the event loop
        return await run_in_threadpool(self.store.transition, donation_id, new_status, **fields)

    async def _redeem(self, item):
        split = fees.relayer_fee(
            item.amount, self.settings.fee_rate, self.settings.fee_min, self.settings.fee_max
        )

        fee_signature = None
        if split.fee_amount > 0:
            # transaction 1: the relayer's cut, the gateway pays it to its own account
            fee_signature = await self._call(
                self.relay.redeem(FEE_LEG, item, split.fee_amount, recipient=None)
            )

        try:
            # transaction 2: the rest goes to the campaign vault
            signature = await self._call(
                self.relay.redeem(RECIPIENT_LEG, item, split.recipient_amount, recipient=item.campaign_vault)
            )
        except RelayError as e:
            if fee_signature is not None:
                raise PartialFailureError(fee_signature, e) from e
            raise
        except Exception as e:
            if fee_signature is None:
                raise
            # the fee already posted, whatever broke the transfer has to be recorded against it
            cause = RelayNetworkError(str(e) or type(e).__name__)
            raise PartialFailureError(fee_signature, cause) from e
        return signature, fee_signature

    async def process_one(self, item) -> ItemResult:
        try:
            await self._transition(item.id, PROCESSING)
        except InvalidTransitionError:
            # somebody else already picked it up
            logger.warning("donation %s is no longer pending, skipped", item.id)
            return ItemResult(item.id, False, error="Donation is no longer pending",
                              error_kind=ErrorKind.INVALID_TRANSITION.value, skipped=True)
        logger.info("processing donation %s for campaign %s", item.id, item.campaign_id)

        try:
            signature, fee_signature = await self._redeem(item)
        except PartialFailureError as e:
            logger.error("donation %s: fee leg %s posted, transfer failed: %s",
                         item.id, e.fee_signature, e.cause)
            await self._transition(
                item.id, FAILED,
                error=str(e.cause),
                error_kind=ErrorKind.PARTIAL_FAILURE.value,
                failed_step=e.failed_step,
                fee_signature=e.fee_signature,
            )
            return ItemResult(item.id, False, error=str(e.cause),
                              error_kind=ErrorKind.PARTIAL_FAILURE.value, failed_step=e.failed_step)
        except RelayError as e:
            logger.warning("donation %s failed: %s", item.id, e)
            await self._transition(item.id, FAILED, error=str(e), error_kind=e.kind.value)
            return ItemResult(item.id, False, error=str(e), error_kind=e.kind.value)
        except Exception as e:
            # one broken item must not take the rest of the batch down with it
            logger.exception("donation %s failed unexpectedly", item.id)
            await self._transition(item.id, FAILED, error=str(e) or type(e).__name__,
                                   error_kind=ErrorKind.RELAY_NETWORK_ERROR.value)
            return ItemResult(item.id, False, error=str(e) or type(e).__name__,
                              error_kind=ErrorKind.RELAY_NETWORK_ERROR.value)

        await self._transition(item.id, COMPLETED, tx_signature=signature, fee_signature=fee_signature)
        logger.info("donation %s completed: %s", item.id, signature)
        return ItemResult(item.id, True, signature=signature)

    async def run_batch(self, items):
        """Process ``items`` in the given order; the balance floor is checked before anything moves."""
        await self.ensure_funded(len(items))

        results = []
        for index, item in enumerate(items):
            results.append(await self.process_one(item))
            if index < len(items) - 1:
                await self.sleep(self.next_delay())

        await run_in_threadpool(self.store.mark_batch_finished)
        succeeded = sum(1 for r in results if r.success)
        skipped = sum(1 for r in results if r.skipped)
        logger.info("batch done: %d succeeded, %d failed, %d skipped",
                    succeeded, len(results) - succeeded - skipped, skipped)
        return results
