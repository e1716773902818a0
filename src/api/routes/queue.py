"""Processing-queue admin endpoints: inspect, purge, reset, clear."""

from __future__ import annotations

import logging

from fastapi import APIRouter

from src.api.models import ActionResponse, QueueStatusResponse, QueueSummaryResponse
from src.config import settings
from src.ingestion.pipeline import build_scheduler
from src.ingestion.queue import QueueScheduler
from src.ingestion.storage import get_supabase_client
from src.pipeline_config import PipelineConfig

logger = logging.getLogger(__name__)

router = APIRouter()


def _scheduler() -> QueueScheduler:
    return build_scheduler(get_supabase_client(), PipelineConfig.from_settings(settings))


@router.get("/api/queue", response_model=QueueStatusResponse)
async def queue_status(video_id: int | None = None) -> QueueStatusResponse:
    """Per-video chunk counts, optionally for a single video."""
    summaries = _scheduler().queue_status(video_id)
    return QueueStatusResponse(
        queue_status=[
            QueueSummaryResponse(
                video_id=s.video_id,
                total_chunks=s.total_chunks,
                pending_chunks=s.pending_chunks,
                completed_chunks=s.completed_chunks,
                failed_chunks=s.failed_chunks,
                queue_started=s.queue_started,
                last_processed=s.last_processed,
            )
            for s in summaries
        ]
    )


@router.post("/api/queue/cleanup", response_model=ActionResponse)
async def cleanup_queue() -> ActionResponse:
    """Delete completed and failed chunks past the retention window."""
    purged = _scheduler().purge_expired()
    return ActionResponse(message=f"Cleaned up {purged} old queue items", affected=purged)


@router.post("/api/queue/{video_id}/reset", response_model=ActionResponse)
async def reset_failed_chunks(video_id: int) -> ActionResponse:
    """Put a video's failed chunks back to pending."""
    reset = _scheduler().reset_failed(video_id)
    logger.info("Reset %d failed chunks of video %s", reset, video_id)
    return ActionResponse(message=f"Reset {reset} failed chunks to pending", affected=reset)


@router.delete("/api/queue/{video_id}", response_model=ActionResponse)
async def clear_queue(video_id: int) -> ActionResponse:
    """Drop every queued chunk of a video."""
    cleared = _scheduler().clear(video_id)
    logger.info("Cleared %d queue chunks of video %s", cleared, video_id)
    return ActionResponse(message=f"Cleared {cleared} queue chunks", affected=cleared)
