import hashlib
import hmac


# plain SHA-256 over raw bytes, this is the hash the on-chain program checks
def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


# constant-time comparison for anything derived from a secret
def digest_equal(a: bytes, b: bytes) -> bool:
    return hmac.compare_digest(a, b)


# the exact message a donor signs to authorize a commitment for one campaign
def authorization_message(campaign_id: str, commitment_hex: str) -> bytes:
    return f"Authorize private donation to campaign {campaign_id}: {commitment_hex}".encode()


def bearer_matches(header, api_key: str) -> bool:
    if not header:
        return False
    return hmac.compare_digest(header.encode(), f"Bearer {api_key}".encode())
