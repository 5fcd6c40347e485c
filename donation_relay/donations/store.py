import logging
import secrets
import time

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from donation_relay.core.database import metadata
from donation_relay.core.errors import (
    DuplicateError,
    ErrorKind,
    InvalidTransitionError,
    NotFoundError,
)
from .models import Enqueued, QueueDonationRequest, QueuedDonation, QueueStats
from .schemas import (
    COMPLETED,
    FAILED,
    PENDING,
    PROCESSING,
    QUEUE_META_ID,
    STATUSES,
    TRANSITIONS,
    donations,
    queue_meta,
)

logger = logging.getLogger(__name__)

# columns a transition is allowed to fill in alongside the status
TRANSITION_FIELDS = {"processed_at", "tx_signature", "fee_signature", "error", "error_kind", "failed_step"}


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_id(now: int) -> str:
    return f"don_{now}_{secrets.token_hex(5)}"


class DonationQueueStore:
    """
    Durable queue of redemption requests.

    Every mutation runs in its own database transaction. Deduplication relies on
    the unique index on ``commitment`` and status changes are conditional
    updates on the expected current status, so two writers can never both win.
    """

    def __init__(self, engine, clock=now_ms):
        self.engine = engine
        self.clock = clock
        metadata.create_all(bind=engine)
        self._ensure_meta()

    def _ensure_meta(self):
        with self.engine.begin() as conn:
            exists = conn.scalar(select(queue_meta.c.id).where(queue_meta.c.id == QUEUE_META_ID))
            if not exists:
                conn.execute(queue_meta.insert().values(
                    id=QUEUE_META_ID, last_processed=0, total_processed=0, total_failed=0
                ))

    # --------------------------------------------------
    # enqueue
    # --------------------------------------------------
    def enqueue(self, request: QueueDonationRequest) -> Enqueued:
        now = self.clock()
        donation_id = generate_id(now)
        try:
            with self.engine.begin() as conn:
                conn.execute(donations.insert().values(
                    id=donation_id,
                    commitment=request.commitment,
                    nullifier=request.nullifier,
                    secret_hash=request.secret_hash,
                    amount=request.amount,
                    campaign_id=request.campaign_id,
                    campaign_vault=request.campaign_vault,
                    donor_signature=request.donor_signature,
                    timestamp=now,
                    status=PENDING,
                ))
                position = conn.scalar(
                    select(func.count()).select_from(donations).where(donations.c.status == PENDING)
                )
        except IntegrityError:
            # the unique index caught a commitment that is already queued
            existing = self._find_id_by_commitment(request.commitment)
            if existing is None:
                raise
            raise DuplicateError(existing)

        logger.info("queued donation %s for campaign %s", donation_id, request.campaign_id)
        logger.debug("donation %s amount %d", donation_id, request.amount)
        return Enqueued(id=donation_id, queue_position=position)

    def _find_id_by_commitment(self, commitment: str):
        with self.engine.begin() as conn:
            return conn.scalar(select(donations.c.id).where(donations.c.commitment == commitment))

    # --------------------------------------------------
    # lookups
    # --------------------------------------------------
    def get_by_id(self, donation_id: str) -> QueuedDonation:
        with self.engine.begin() as conn:
            row = conn.execute(select(donations).where(donations.c.id == donation_id)).fetchone()
        if row is None:
            raise NotFoundError(f"Donation {donation_id} not found")
        return QueuedDonation.from_row(row)

    def get_by_commitment(self, commitment: str) -> QueuedDonation:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(donations).where(donations.c.commitment == commitment.lower())
            ).fetchone()
        if row is None:
            raise NotFoundError("Donation not found for commitment")
        return QueuedDonation.from_row(row)

    def list_by_status(self, status: str):
        if status not in STATUSES:
            raise ValueError(f"Unknown status {status!r}")
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(donations).where(donations.c.status == status).order_by(donations.c.seq)
            ).fetchall()
        return [QueuedDonation.from_row(r) for r in rows]

    def recent_completed(self, limit: int = 10, within_ms: int = 3_600_000):
        since = self.clock() - within_ms
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(donations)
                .where(donations.c.status == COMPLETED, donations.c.processed_at >= since)
                .order_by(donations.c.processed_at.desc(), donations.c.seq.desc())
                .limit(limit)
            ).fetchall()
        # oldest first, like the tail of the queue
        return [QueuedDonation.from_row(r) for r in reversed(rows)]

    # --------------------------------------------------
    # state machine
    # --------------------------------------------------
    def transition(self, donation_id: str, new_status: str, **fields) -> QueuedDonation:
        unknown = set(fields) - TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Unexpected transition fields: {sorted(unknown)}")

        if new_status not in STATUSES:
            raise ValueError(f"Unknown status {new_status!r}")
        # the statuses this one may be reached from
        sources = [s for s, targets in TRANSITIONS.items() if new_status in targets]

        values = dict(fields, status=new_status)
        terminal = new_status in (COMPLETED, FAILED)
        if terminal:
            values.setdefault("processed_at", self.clock())

        with self.engine.begin() as conn:
            # write first and check after, the status guard makes the update the whole check
            result = conn.execute(
                donations.update()
                .where(donations.c.id == donation_id, donations.c.status.in_(sources))
                .values(**values)
            )
            if result.rowcount != 1:
                current = conn.scalar(select(donations.c.status).where(donations.c.id == donation_id))
                if current is None:
                    raise NotFoundError(f"Donation {donation_id} not found")
                logger.error("rejected transition %s -> %s for %s", current, new_status, donation_id)
                raise InvalidTransitionError(f"Cannot move {donation_id} from {current} to {new_status}")

            if terminal:
                counter = queue_meta.c.total_processed if new_status == COMPLETED else queue_meta.c.total_failed
                conn.execute(
                    queue_meta.update()
                    .where(queue_meta.c.id == QUEUE_META_ID)
                    .values({counter: counter + 1, queue_meta.c.last_processed: values["processed_at"]})
                )

            row = conn.execute(select(donations).where(donations.c.id == donation_id)).fetchone()
        return QueuedDonation.from_row(row)

    def mark_batch_finished(self, now=None) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                queue_meta.update()
                .where(queue_meta.c.id == QUEUE_META_ID)
                .values(last_processed=self.clock() if now is None else now)
            )

    def recover_interrupted(self) -> int:
        """Fail items a crash left in ``processing``; they never go back to pending."""
        stuck = self.list_by_status(PROCESSING)
        for item in stuck:
            try:
                self.transition(
                    item.id, FAILED,
                    error="Interrupted before the relay call finished",
                    error_kind=ErrorKind.INTERRUPTED.value,
                )
            except InvalidTransitionError:
                # another writer finished it first
                continue
            logger.warning("donation %s was left processing, marked failed", item.id)
        return len(stuck)

    # --------------------------------------------------
    # stats
    # --------------------------------------------------
    def stats(self) -> QueueStats:
        with self.engine.begin() as conn:
            counts = dict(conn.execute(
                select(donations.c.status, func.count()).group_by(donations.c.status)
            ).fetchall())
            meta = conn.execute(select(queue_meta).where(queue_meta.c.id == QUEUE_META_ID)).fetchone()

        return QueueStats(
            pending=counts.get(PENDING, 0),
            processing=counts.get(PROCESSING, 0),
            completed=counts.get(COMPLETED, 0),
            failed=counts.get(FAILED, 0),
            total=sum(counts.values()),
            last_processed=meta.last_processed,
            total_processed=meta.total_processed,
            total_failed=meta.total_failed,
        )
