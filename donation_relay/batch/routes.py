import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from donation_relay.core.errors import RelayerNotConfiguredError, RelayerUnderfundedError, RelayError
from donation_relay.core.security import bearer_matches
from .service import RelayService

logger = logging.getLogger(__name__)

router = APIRouter()

# --------------------------------------------------
# Batch endpoints: trigger a batch, inspect the scheduler
# --------------------------------------------------


def get_service(request: Request) -> RelayService:
    return request.app.state.service


def _error(status_code: int, message: str):
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


# --------------------------------------------------
# run a batch if the thresholds say so
# --------------------------------------------------
@router.post("/process-batch")
async def process_batch(service: RelayService = Depends(get_service),
                        authorization: Optional[str] = Header(None)):
    # operators can lock this down with an api key
    api_key = service.settings.api_key
    if api_key and not bearer_matches(authorization, api_key):
        return _error(401, "Unauthorized")

    try:
        outcome = await service.run_detached()
    except RelayerNotConfiguredError:
        return _error(500, "Relayer not configured")
    except RelayerUnderfundedError:
        # nothing left pending, the next tick tries again
        return _error(500, "Relayer has insufficient balance for gas")
    except RelayError as e:
        logger.error("batch aborted before any donation moved: %s", e)
        return _error(502, "Relay gateway unavailable")

    if outcome.busy:
        return {"success": True, "busy": True, "message": "Batch already in progress", "processed": 0}

    if not outcome.ran:
        if outcome.pending == 0:
            return {"success": True, "message": "No pending donations", "processed": 0}
        return {
            "success": True,
            "message": (f"Waiting for more donations. Current: {outcome.pending}, "
                        f"Min: {service.settings.min_batch_size}"),
            "pending": outcome.pending,
            "queueAgeSeconds": outcome.queue_age_ms // 1000,
        }

    return {
        "success": True,
        "message": f"Processed {len(outcome.results)} donations",
        "processed": outcome.processed,
        "failed": outcome.failed,
        "skipped": outcome.skipped,
        "results": [r.public_view() for r in outcome.results],
    }


# --------------------------------------------------
# scheduler state plus the last few completed donations
# --------------------------------------------------
@router.get("/process-batch")
def batch_status(known: Optional[str] = None, service: RelayService = Depends(get_service)):
    # amounts are only shown for ids the caller already holds
    known_ids = {k.strip() for k in known.split(",")} if known else set()

    recent = service.store.recent_completed(limit=10)
    return {
        "success": True,
        "status": service.status(),
        "recentCompleted": [
            {
                "id": d.id,
                "campaignId": d.campaign_id,
                "amount": d.amount if d.id in known_ids else None,
                "processedAt": d.processed_at,
                "txSignature": d.tx_signature,
            }
            for d in recent
        ],
    }
