"""
Donor side of a private batch donation.

    1. generate a note (secret + nullifier secret + amount -> commitment)
    2. deposit the amount into the privacy pool under that commitment
    3. sign an authorization for this commitment and this campaign
    4. queue the redemption with the relayer
    5. keep the note locally so it can be tracked and marked spent later

Steps 2 and 3 belong to the wallet, so they come in as callables.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from donation_relay.core.security import authorization_message
from donation_relay.notes import codec

logger = logging.getLogger(__name__)


@dataclass
class BatchDonationResult:
    success: bool
    donation_id: Optional[str] = None
    queue_position: Optional[int] = None
    estimated_processing_time: Optional[int] = None
    deposit_signature: Optional[str] = None
    commitment: Optional[str] = None
    error: Optional[str] = None


class DonationClient:
    def __init__(self, http: httpx.Client, note_store, owner_id: str):
        self.http = http
        self.note_store = note_store
        self.owner_id = owner_id

    def queue_private_donation(
        self,
        campaign_id: str,
        campaign_vault: str,
        amount: int,
        deposit: Callable[[codec.PrivateNote], str],
        sign_message: Callable[[bytes], bytes],
    ) -> BatchDonationResult:
        note = codec.generate(amount)
        commitment = note.commitment_hex

        # the deposit is on-chain, if it fails nothing was spent
        deposit_signature = deposit(note)
        # keep the note before talking to the relayer, losing it would lose the funds
        self.note_store.save(self.owner_id, note)
        logger.info("deposited note %s", codec.format_commitment(note.commitment))

        signature = sign_message(authorization_message(campaign_id, commitment))

        response = self.http.post("/queue-donation", json={
            "commitment": commitment,
            "nullifier": codec.to_hex(note.nullifier),
            "secretHash": codec.to_hex(note.secret_hash),
            "amount": note.amount,
            "campaignId": campaign_id,
            "campaignVault": campaign_vault,
            "donorSignature": signature.hex(),
        })
        data = response.json()

        if response.status_code == 409:
            # already queued under this commitment, treat it as queued
            logger.info("commitment already queued as %s", data.get("donationId"))
            return BatchDonationResult(True, donation_id=data.get("donationId"),
                                       deposit_signature=deposit_signature, commitment=commitment)

        if not data.get("success"):
            return BatchDonationResult(False, deposit_signature=deposit_signature,
                                       commitment=commitment, error=data.get("error", "Failed to queue donation"))

        return BatchDonationResult(
            True,
            donation_id=data["donationId"],
            queue_position=data["queuePosition"],
            estimated_processing_time=data["estimatedProcessingTime"],
            deposit_signature=deposit_signature,
            commitment=commitment,
        )

    def check_status(self, donation_id: str):
        response = self.http.get("/queue-donation", params={"id": donation_id})
        data = response.json()
        if not data.get("success"):
            return None
        return data["donation"]

    def sync_spent(self) -> int:
        """Mark local notes spent once the relayer reports their redemption completed."""
        marked = 0
        for note in self.note_store.list_unspent(self.owner_id):
            response = self.http.get("/queue-donation", params={"commitment": note.commitment_hex})
            if response.status_code != 200:
                continue
            if response.json()["donation"]["status"] == "completed":
                self.note_store.mark_spent(self.owner_id, note.commitment_hex)
                marked += 1
        return marked

    def batch_stats(self):
        data = self.http.get("/process-batch").json()
        return data["status"] if data.get("success") else None

    def trigger_batch(self, api_key: Optional[str] = None) -> dict:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        return self.http.post("/process-batch", headers=headers).json()


def wait_for_completion(client: DonationClient, donation_id: str, timeout: float = 600.0,
                        interval: float = 5.0, sleep=time.sleep):
    """Poll a donation until it reaches a terminal status or ``timeout`` runs out."""
    deadline = time.monotonic() + timeout
    while True:
        donation = client.check_status(donation_id)
        if donation and donation["status"] in ("completed", "failed"):
            return donation
        if time.monotonic() >= deadline:
            return donation
        sleep(interval)
