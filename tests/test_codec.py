import hashlib
import secrets

import pytest

from donation_relay.core.errors import ErrorKind, InvalidLengthError, MalformedError
from donation_relay.notes import codec


def test_generate_matches_recompute():
    for amount in (0, 1, 100_000_000, 2**64 - 1):
        note = codec.generate(amount)
        hashes = codec.recompute(note.secret, note.nullifier_secret, note.amount)
        assert hashes.commitment == note.commitment
        assert hashes.nullifier == note.nullifier
        assert hashes.secret_hash == note.secret_hash
        assert codec.verify(note)


def test_commitment_layout():
    secret = bytes(range(32))
    nullifier_secret = bytes(range(32, 64))
    hashes = codec.recompute(secret, nullifier_secret, 500_000_000)

    secret_hash = hashlib.sha256(secret).digest()
    nullifier = hashlib.sha256(nullifier_secret).digest()
    preimage = secret_hash + nullifier + (500_000_000).to_bytes(8, "little")
    assert len(preimage) == 72
    assert hashes.commitment == hashlib.sha256(preimage).digest()


def test_recompute_is_deterministic():
    secret = secrets.token_bytes(32)
    nullifier_secret = secrets.token_bytes(32)
    assert codec.recompute(secret, nullifier_secret, 7) == codec.recompute(secret, nullifier_secret, 7)
    assert codec.recompute(secret, nullifier_secret, 7).commitment != \
        codec.recompute(secret, nullifier_secret, 8).commitment


def test_generated_notes_are_unique():
    notes = [codec.generate(100) for _ in range(200)]
    assert len({n.commitment for n in notes}) == 200
    assert len({n.secret for n in notes}) == 200
    assert all(n.secret != n.nullifier_secret for n in notes)
    assert not any(n.spent for n in notes)


def test_serialize_round_trip():
    note = codec.generate(123_456)
    data = codec.serialize_note(note)
    assert len(data["commitment"]) == 64
    assert len(data["secret"]) == 64
    assert codec.deserialize_note(data) == note


def test_from_hex_accepts_prefix():
    value = secrets.token_bytes(32)
    assert codec.from_hex("0x" + value.hex()) == value
    assert codec.from_hex(value.hex().upper()) == value


def test_from_hex_malformed():
    with pytest.raises(MalformedError) as exc:
        codec.from_hex("zz" * 32)
    assert exc.value.kind is ErrorKind.MALFORMED


@pytest.mark.parametrize("text", [
    " ".join(["ab"] * 32),
    "ab" * 31 + "a\nb",
    "\tab" * 32,
    "abc",
])
def test_from_hex_rejects_whitespace_and_odd_digits(text):
    with pytest.raises(MalformedError):
        codec.from_hex(text)


def test_from_hex_wrong_length():
    with pytest.raises(InvalidLengthError) as exc:
        codec.from_hex("ab" * 31)
    assert exc.value.kind is ErrorKind.INVALID_LENGTH


def test_recompute_rejects_short_secret():
    with pytest.raises(InvalidLengthError):
        codec.recompute(b"\x00" * 31, b"\x00" * 32, 1)


def test_recompute_rejects_amount_out_of_range():
    with pytest.raises(InvalidLengthError):
        codec.recompute(b"\x00" * 32, b"\x00" * 32, 2**64)
    with pytest.raises(InvalidLengthError):
        codec.recompute(b"\x00" * 32, b"\x00" * 32, -1)


def test_deserialize_rejects_tampered_note():
    data = codec.serialize_note(codec.generate(100))
    data["amount"] = 101
    with pytest.raises(MalformedError):
        codec.deserialize_note(data)


def test_deserialize_rejects_missing_field():
    data = codec.serialize_note(codec.generate(100))
    del data["nullifierSecret"]
    with pytest.raises(MalformedError):
        codec.deserialize_note(data)


def test_format_commitment():
    commitment = bytes(range(32))
    text = codec.format_commitment(commitment)
    assert text == commitment.hex()[:8] + "..." + commitment.hex()[-8:]
