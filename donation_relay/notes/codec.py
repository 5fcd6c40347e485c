"""
Deposit notes for the commitment/nullifier scheme.

A note is what a donor keeps after depositing into the privacy pool:

    secret_hash = SHA256(secret)
    nullifier   = SHA256(nullifier_secret)
    commitment  = SHA256(secret_hash || nullifier || u64_le(amount))

Only the commitment is published at deposit time. The nullifier and
secret_hash are revealed at redemption; the two secrets never leave the
donor's wallet.
"""

import secrets
import string
import time
from dataclasses import dataclass

from donation_relay.core.errors import InvalidLengthError, MalformedError
from donation_relay.core.security import digest_equal, sha256

SECRET_SIZE = 32
HASH_SIZE = 32
U64_MAX = 2**64 - 1


@dataclass
class NoteHashes:
    secret_hash: bytes
    nullifier: bytes
    commitment: bytes


@dataclass
class PrivateNote:
    secret: bytes
    nullifier_secret: bytes
    amount: int
    secret_hash: bytes
    nullifier: bytes
    commitment: bytes
    created_at: int
    spent: bool = False

    @property
    def commitment_hex(self) -> str:
        return to_hex(self.commitment)


def _check_bytes(value: bytes, name: str, length: int = SECRET_SIZE):
    if not isinstance(value, (bytes, bytearray)):
        raise MalformedError(f"{name} must be bytes")
    if len(value) != length:
        raise InvalidLengthError(f"{name} must be {length} bytes, got {len(value)}")


def _amount_le64(amount: int) -> bytes:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise MalformedError("amount must be an integer")
    if amount < 0 or amount > U64_MAX:
        raise InvalidLengthError("amount does not fit in an unsigned 64-bit integer")
    return amount.to_bytes(8, "little")


def recompute(secret: bytes, nullifier_secret: bytes, amount: int) -> NoteHashes:
    """Derive secret_hash, nullifier and commitment from a note's secrets."""
    _check_bytes(secret, "secret")
    _check_bytes(nullifier_secret, "nullifier_secret")

    secret_hash = sha256(bytes(secret))
    nullifier = sha256(bytes(nullifier_secret))
    # 72-byte preimage: 32 + 32 + 8
    commitment = sha256(secret_hash + nullifier + _amount_le64(amount))
    return NoteHashes(secret_hash=secret_hash, nullifier=nullifier, commitment=commitment)


def generate(amount: int) -> PrivateNote:
    """Create a fresh note for depositing ``amount`` lamports."""
    secret = secrets.token_bytes(SECRET_SIZE)
    nullifier_secret = secrets.token_bytes(SECRET_SIZE)
    hashes = recompute(secret, nullifier_secret, amount)
    return PrivateNote(
        secret=secret,
        nullifier_secret=nullifier_secret,
        amount=amount,
        secret_hash=hashes.secret_hash,
        nullifier=hashes.nullifier,
        commitment=hashes.commitment,
        created_at=int(time.time() * 1000),
        spent=False,
    )


def verify(note: PrivateNote) -> bool:
    """True when the stored hashes are the ones the secrets produce."""
    hashes = recompute(note.secret, note.nullifier_secret, note.amount)
    return (
        digest_equal(hashes.commitment, note.commitment)
        and digest_equal(hashes.nullifier, note.nullifier)
        and digest_equal(hashes.secret_hash, note.secret_hash)
    )


# ------------------------
# Hex serialization
# ------------------------

def to_hex(value: bytes, length: int = HASH_SIZE) -> str:
    _check_bytes(value, "value", length)
    return bytes(value).hex()


def from_hex(text: str, length: int = HASH_SIZE) -> bytes:
    if not isinstance(text, str):
        raise MalformedError("hex value must be a string")
    clean = text[2:] if text.startswith(("0x", "0X")) else text
    # fromhex would let whitespace through, only plain hex digits are accepted
    if any(c not in string.hexdigits for c in clean):
        raise MalformedError(f"invalid hex: {text!r}")
    if len(clean) % 2:
        raise MalformedError("hex value has an odd number of digits")
    if len(clean) != 2 * length:
        raise InvalidLengthError(f"expected {length} bytes, got {len(clean) // 2}")
    return bytes.fromhex(clean)


def serialize_note(note: PrivateNote) -> dict:
    return {
        "secret": to_hex(note.secret),
        "nullifierSecret": to_hex(note.nullifier_secret),
        "amount": note.amount,
        "commitment": to_hex(note.commitment),
        "secretHash": to_hex(note.secret_hash),
        "nullifier": to_hex(note.nullifier),
        "createdAt": note.created_at,
        "spent": note.spent,
    }


def deserialize_note(data: dict) -> PrivateNote:
    try:
        note = PrivateNote(
            secret=from_hex(data["secret"]),
            nullifier_secret=from_hex(data["nullifierSecret"]),
            amount=data["amount"],
            secret_hash=from_hex(data["secretHash"]),
            nullifier=from_hex(data["nullifier"]),
            commitment=from_hex(data["commitment"]),
            created_at=int(data["createdAt"]),
            spent=bool(data.get("spent", False)),
        )
    except KeyError as e:
        raise MalformedError(f"missing note field {e}") from e

    # a note whose hashes don't match its secrets can never be redeemed
    if not verify(note):
        raise MalformedError("stored note does not match its secrets")
    return note


def format_commitment(commitment: bytes) -> str:
    hex_value = to_hex(commitment)
    return f"{hex_value[:8]}...{hex_value[-8:]}"
