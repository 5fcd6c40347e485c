import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from donation_relay.core.errors import DuplicateError, NotFoundError
from .models import QueueDonationRequest, is_valid_vault
from .store import DonationQueueStore

logger = logging.getLogger(__name__)

router = APIRouter()

# --------------------------------------------------
# Queue endpoints: accept a donation intent, look up its status
# --------------------------------------------------


def get_store(request: Request) -> DonationQueueStore:
    return request.app.state.service.store


def _error(status_code: int, message: str, **extra):
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


def _describe(e: ValidationError) -> str:
    first = e.errors()[0]
    field = ".".join(str(p) for p in first["loc"]) or "body"
    if first["type"] == "missing":
        return f"Missing required field: {field}"
    return f"Invalid field {field}: {first['msg']}"


# --------------------------------------------------
# queue a donation for the next batch
# --------------------------------------------------
@router.post("/queue-donation")
def queue_donation(data: dict = Body(...), store: DonationQueueStore = Depends(get_store)):
    # validate the whole body against the request schema, every field is required
    try:
        body = QueueDonationRequest.model_validate(data)
    except ValidationError as e:
        return _error(400, _describe(e))

    # the destination has to be a real vault address
    if not is_valid_vault(body.campaign_vault):
        return _error(400, "Invalid campaign vault address")

    try:
        queued = store.enqueue(body)
    except DuplicateError as e:
        # same commitment again, hand back the id it already has
        logger.info("duplicate commitment for donation %s", e.existing_id)
        return _error(409, "Donation already queued", donationId=e.existing_id)

    # min 30s, +15s for every pending donation ahead
    estimated = max(30, queued.queue_position * 15)
    return {
        "success": True,
        "donationId": queued.id,
        "queuePosition": queued.queue_position,
        "estimatedProcessingTime": estimated,
        "message": "Donation queued. Will be processed in batch for maximum privacy.",
    }


# --------------------------------------------------
# check a donation by id or commitment, or the whole queue
# --------------------------------------------------
@router.get("/queue-donation")
def get_queue_donation(id: Optional[str] = None, commitment: Optional[str] = None,
                       store: DonationQueueStore = Depends(get_store)):
    try:
        if id:
            return {"success": True, "donation": store.get_by_id(id).public_view()}
        if commitment:
            return {"success": True, "donation": store.get_by_commitment(commitment).public_view()}
    except NotFoundError:
        return _error(404, "Donation not found")

    # no lookup key, just the aggregate numbers
    stats = store.stats()
    return {
        "success": True,
        "stats": {
            "pending": stats.pending,
            "processing": stats.processing,
            "completed": stats.completed,
            "failed": stats.failed,
            "total": stats.total,
            "lastProcessed": stats.last_processed,
        },
    }
