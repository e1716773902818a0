"""Manual recovery actions for videos left in a bad state."""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, HTTPException

from src.api.models import ActionResponse, RecoveryRequest
from src.config import settings
from src.ingestion.storage import VIDEOS_TABLE, delete_phrases, get_supabase_client, utc_now
from src.pipeline_config import VideoProcessingStatus

logger = logging.getLogger(__name__)

router = APIRouter()

STUCK_RESET_MESSAGE = "Reset due to stuck processing"


@router.post("/api/recovery", response_model=ActionResponse)
async def recover(request: RecoveryRequest) -> ActionResponse:
    """Run a recovery action.

    ``reset_stuck`` moves videos that have sat in processing for longer than
    the stale-claim window back to pending and drops their run claim.
    ``clear_phrases`` deletes every indexed phrase of one video.
    """
    client = get_supabase_client()

    if request.action == "clear_phrases":
        if request.video_id is None:
            raise HTTPException(status_code=400, detail="video_id is required for clear_phrases")
        deleted = delete_phrases(client, request.video_id)
        logger.info("Deleted %d phrases of video %s", deleted, request.video_id)
        return ActionResponse(
            message=f"Deleted {deleted} phrases for video {request.video_id}",
            affected=deleted,
        )

    now = utc_now()
    cutoff = (now - timedelta(minutes=settings.stale_claim_minutes)).isoformat()
    query = (
        client.table(VIDEOS_TABLE)
        .update(
            {
                "processing_status": VideoProcessingStatus.PENDING.value,
                "error_message": STUCK_RESET_MESSAGE,
                "last_processed_at": now.isoformat(),
                "run_token": None,
                "run_started_at": None,
            }
        )
        .eq("processing_status", VideoProcessingStatus.PROCESSING.value)
        .lt("last_processed_at", cutoff)
    )
    if request.video_id is not None:
        query = query.eq("id", request.video_id)
    reset = len(query.execute().data or [])

    logger.info("Reset %d stuck videos", reset)
    return ActionResponse(message=f"Reset {reset} stuck videos", affected=reset)
