from sqlalchemy import BigInteger, Boolean, Column, Integer, String, Table, UniqueConstraint

from donation_relay.core.database import wallet_metadata

# ------------------------
# Notes Table
# ------------------------
# the donor's private notes, this lives in the wallet database and is never sent to the relayer
# each owner (wallet address) has its own append-only list, only `spent` ever changes
notes = Table(
    "notes", wallet_metadata,
    Column("id", Integer, primary_key=True),  # insertion order
    Column("owner_id", String, index=True, nullable=False),  # the owner's ledger identity
    Column("commitment", String(64), nullable=False),  # hex, public
    Column("payload", String, nullable=False),  # the serialized note (secrets included)
    Column("amount", BigInteger, nullable=False),
    Column("created_at", BigInteger, nullable=False),  # ms epoch
    Column("spent", Boolean, nullable=False, default=False),
    UniqueConstraint("owner_id", "commitment", name="uq_notes_owner_commitment"),
)
