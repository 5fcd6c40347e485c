from dataclasses import dataclass
from typing import Optional

import base58
from pydantic import BaseModel, ConfigDict, Field, field_validator

PUBKEY_SIZE = 32


class QueueDonationRequest(BaseModel):
    """Body of POST /queue-donation."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")

    commitment: str = Field(..., min_length=1, description="Commitment hash (hex)")
    nullifier: str = Field(..., min_length=1, description="Nullifier revealed at redemption (hex)")
    secret_hash: str = Field(..., min_length=1, alias="secretHash", description="SHA256(secret) (hex)")
    amount: int = Field(..., gt=0, description="Amount in lamports")
    campaign_id: str = Field(..., min_length=1, alias="campaignId")
    campaign_vault: str = Field(..., min_length=1, alias="campaignVault", description="Destination vault (base58)")
    donor_signature: str = Field(..., min_length=1, alias="donorSignature")

    @field_validator("commitment", "nullifier", "secret_hash")
    @classmethod
    def lowercase_hex(cls, v: str) -> str:
        return v.lower()


def is_valid_vault(address: str) -> bool:
    # a vault address is a base58 encoded 32 byte public key
    try:
        return len(base58.b58decode(address)) == PUBKEY_SIZE
    except ValueError:
        return False


@dataclass
class QueuedDonation:
    id: str
    commitment: str
    nullifier: str
    secret_hash: str
    amount: int
    campaign_id: str
    campaign_vault: str
    donor_signature: str
    timestamp: int
    status: str
    processed_at: Optional[int] = None
    tx_signature: Optional[str] = None
    fee_signature: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    failed_step: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "QueuedDonation":
        data = row._mapping
        return cls(**{name: data[name] for name in cls.__dataclass_fields__})

    def public_view(self) -> dict:
        # what a status lookup by id/commitment may see, no nullifier and no signatures from the donor
        return {
            "id": self.id,
            "status": self.status,
            "campaignId": self.campaign_id,
            "amount": self.amount,
            "timestamp": self.timestamp,
            "processedAt": self.processed_at,
            "txSignature": self.tx_signature,
            "error": self.error,
            "failedStep": self.failed_step,
        }


@dataclass
class Enqueued:
    id: str
    queue_position: int


@dataclass
class QueueStats:
    pending: int
    processing: int
    completed: int
    failed: int
    total: int
    last_processed: int
    total_processed: int
    total_failed: int
