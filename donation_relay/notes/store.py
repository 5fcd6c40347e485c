import json
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from donation_relay.core.database import wallet_metadata
from donation_relay.core.errors import NotFoundError
from . import codec
from .schemas import notes

logger = logging.getLogger(__name__)


class NoteStore:
    """Per-owner note storage on the donor side."""

    def __init__(self, engine):
        self.engine = engine
        wallet_metadata.create_all(bind=engine)

    def save(self, owner_id: str, note: codec.PrivateNote) -> None:
        payload = codec.serialize_note(note)
        try:
            with self.engine.begin() as conn:
                conn.execute(notes.insert().values(
                    owner_id=owner_id,
                    commitment=payload["commitment"],
                    payload=json.dumps(payload),
                    amount=note.amount,
                    created_at=note.created_at,
                    spent=note.spent,
                ))
        except IntegrityError:
            # same note saved twice, the stored copy already has it
            logger.debug("note %s already stored", codec.format_commitment(note.commitment))

    def _load(self, row) -> codec.PrivateNote:
        note = codec.deserialize_note(json.loads(row.payload))
        # the column is the source of truth for the spent flag
        note.spent = bool(row.spent)
        return note

    def list_notes(self, owner_id: str):
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(notes).where(notes.c.owner_id == owner_id).order_by(notes.c.id)
            ).fetchall()
        return [self._load(r) for r in rows]

    def list_unspent(self, owner_id: str):
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(notes)
                .where(notes.c.owner_id == owner_id, notes.c.spent.is_(False))
                .order_by(notes.c.id)
            ).fetchall()
        return [self._load(r) for r in rows]

    def mark_spent(self, owner_id: str, commitment: str) -> None:
        """Flip a note to spent; doing it twice is fine."""
        commitment = commitment.lower()
        with self.engine.begin() as conn:
            row = conn.execute(
                select(notes.c.id, notes.c.spent)
                .where(notes.c.owner_id == owner_id, notes.c.commitment == commitment)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"No note with commitment {commitment}")
            if row.spent:
                return
            conn.execute(notes.update().where(notes.c.id == row.id).values(spent=True))

    def delete(self, owner_id: str, commitment: str) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                notes.delete()
                .where(notes.c.owner_id == owner_id, notes.c.commitment == commitment.lower())
            )
        if result.rowcount == 0:
            raise NotFoundError(f"No note with commitment {commitment}")
