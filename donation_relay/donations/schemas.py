from sqlalchemy import BigInteger, Column, Integer, String, Table

from donation_relay.core.database import metadata

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED)

# the only moves a donation can make, nothing goes back to pending and terminal states stay put
TRANSITIONS = {
    PENDING: {PROCESSING},
    PROCESSING: {COMPLETED, FAILED},
    COMPLETED: set(),
    FAILED: set(),
}

# ------------------------
# Donations Table
# ------------------------
# every redemption request the relayer has accepted, rows are never deleted (audit trail)
donations = Table(
    "donations", metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),  # enqueue order
    Column("id", String, unique=True, index=True, nullable=False),  # public donation id
    Column("commitment", String, unique=True, index=True, nullable=False),  # dedup key
    Column("nullifier", String, nullable=False),
    Column("secret_hash", String, nullable=False),
    Column("amount", BigInteger, nullable=False),  # lamports
    Column("campaign_id", String, nullable=False),
    Column("campaign_vault", String, nullable=False),  # destination
    Column("donor_signature", String, nullable=False),
    Column("timestamp", BigInteger, nullable=False),  # enqueue time, ms epoch
    Column("status", String, nullable=False, default=PENDING, index=True),
    Column("processed_at", BigInteger, nullable=True),
    Column("tx_signature", String, nullable=True),
    Column("fee_signature", String, nullable=True),  # fee leg, set even when the transfer leg fails
    Column("error", String, nullable=True),
    Column("error_kind", String, nullable=True),
    Column("failed_step", Integer, nullable=True),
)

# ------------------------
# Queue Meta Table
# ------------------------
# a single row of rolling counters for the whole queue
QUEUE_META_ID = 1

queue_meta = Table(
    "queue_meta", metadata,
    Column("id", Integer, primary_key=True),
    Column("last_processed", BigInteger, nullable=False, default=0),
    Column("total_processed", Integer, nullable=False, default=0),
    Column("total_failed", Integer, nullable=False, default=0),
)
