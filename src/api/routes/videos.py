"""Video endpoints: run the pipeline, continue it, monitor it, retry it."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, cast

from fastapi import APIRouter, BackgroundTasks, HTTPException

from src.api.models import (
    Monitoring,
    ProcessRequest,
    ProcessResponse,
    RetryRequest,
    RetryResponse,
    VideoInfo,
    WorkerStatusResponse,
)
from src.config import settings
from src.ingestion.models import PipelineResult
from src.ingestion.pipeline import build_scheduler, continue_processing, process_video
from src.ingestion.storage import (
    VIDEOS_TABLE,
    count_phrases,
    get_supabase_client,
    get_video,
    utc_now,
)
from src.pipeline_config import PipelineConfig, ProcessingStatus, VideoProcessingStatus

logger = logging.getLogger(__name__)

router = APIRouter()

# Statuses a retry may restart from: every error plus partial processing.
RETRYABLE_PREFIXES = ("Error", "Partial Processing")
RETRYABLE_STATUSES = [s.value for s in VideoProcessingStatus if s.value.startswith(RETRYABLE_PREFIXES)]
MAX_RETRY_BATCH = 20

# Indexing should show progress sooner than fetching does.
INDEXING_STUCK_MINUTES = 5


def _to_response(result: PipelineResult) -> ProcessResponse:
    return ProcessResponse(
        video_id=result.video_id,
        youtube_video_id=result.youtube_video_id,
        status=result.status,
        phrases_indexed=result.phrases_indexed,
        message=result.message,
    )


def _minutes_since(timestamp: str | None, now: datetime) -> float:
    if not timestamp:
        return 0.0
    try:
        then = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return 0.0
    if then.tzinfo is None:
        then = then.replace(tzinfo=now.tzinfo)
    return (now - then).total_seconds() / 60


def build_monitoring(
    video: dict[str, Any],
    phrase_count: int,
    pending_chunks: int,
    failed_chunks: int,
    total_chunks: int,
    now: datetime,
    stuck_after_minutes: int,
) -> Monitoring:
    """Derive stage, progress and the stuck flag from a video's status."""
    status = video.get("processing_status") or ""
    minutes = _minutes_since(video.get("last_processed_at"), now)
    stage, progress, is_stuck = "unknown", 0, False

    if status == VideoProcessingStatus.PENDING.value:
        stage = "waiting"
    elif status == VideoProcessingStatus.PROCESSING.value:
        if phrase_count > 0:
            stage, progress = "indexing_phrases", 75
            is_stuck = minutes > INDEXING_STUCK_MINUTES
            if is_stuck:
                stage = "stuck_indexing"
        else:
            stage, progress = "fetching_subtitles", 25
            is_stuck = minutes > stuck_after_minutes
            if is_stuck:
                stage = "stuck_fetching"
    elif status == VideoProcessingStatus.PROCESSED.value:
        stage, progress = "completed", 100
    elif status == VideoProcessingStatus.PARTIAL.value:
        done = total_chunks - pending_chunks
        stage = "continuation_required"
        progress = 25 + (75 * done // total_chunks if total_chunks else 0)
    elif status == VideoProcessingStatus.NO_SUBTITLES.value:
        stage = "error_no_subtitles"
    elif status.startswith("Error"):
        stage = "error"

    return Monitoring(
        stage=stage,
        progress=progress,
        phrase_count=phrase_count,
        pending_chunks=pending_chunks,
        failed_chunks=failed_chunks,
        is_stuck=is_stuck,
        minutes_since_update=round(minutes),
    )


@router.post("/api/videos/{video_id}/process", response_model=ProcessResponse)
async def process(video_id: int, request: ProcessRequest) -> ProcessResponse:
    """Run the full caption pipeline for one video."""
    client = get_supabase_client()
    if get_video(client, video_id) is None:
        raise HTTPException(status_code=404, detail="Video not found")

    # The pipeline is synchronous (httpx + Supabase SDK); keep it off the event loop.
    result = await asyncio.to_thread(process_video, video_id, request.youtube_video_id, client=client)
    return _to_response(result)


@router.post("/api/videos/{video_id}/continue", response_model=ProcessResponse)
async def continue_video(video_id: int) -> ProcessResponse:
    """Drain a partially processed video's pending chunks."""
    client = get_supabase_client()
    if get_video(client, video_id) is None:
        raise HTTPException(status_code=404, detail="Video not found")

    result = await asyncio.to_thread(continue_processing, video_id, client=client)
    if result.status is ProcessingStatus.NOTHING_PENDING:
        raise HTTPException(status_code=400, detail=result.message)
    return _to_response(result)


@router.get("/api/videos/{video_id}/status", response_model=WorkerStatusResponse)
async def worker_status(video_id: int) -> WorkerStatusResponse:
    """Report where a video's processing stands and whether it looks stuck."""
    client = get_supabase_client()
    video = get_video(client, video_id)
    if video is None:
        raise HTTPException(status_code=404, detail="Video not found")

    scheduler = build_scheduler(client, PipelineConfig.from_settings(settings))
    summaries = scheduler.queue_status(video_id)
    summary = summaries[0] if summaries else None
    now = utc_now()

    return WorkerStatusResponse(
        video=VideoInfo(
            id=video["id"],
            youtube_video_id=video.get("youtube_video_id"),
            title=video.get("title"),
            processing_status=video.get("processing_status"),
            error_message=video.get("error_message"),
        ),
        monitoring=build_monitoring(
            video,
            phrase_count=count_phrases(client, video_id),
            pending_chunks=summary.pending_chunks if summary else 0,
            failed_chunks=summary.failed_chunks if summary else 0,
            total_chunks=summary.total_chunks if summary else 0,
            now=now,
            stuck_after_minutes=settings.stale_claim_minutes,
        ),
        timestamp=now.isoformat(),
    )


def _run_pipeline(video_id: int, youtube_video_id: str) -> None:
    result = process_video(video_id, youtube_video_id)
    logger.info("Retry of video %s finished: %s", video_id, result.status.value)


@router.post("/api/videos/retry", response_model=RetryResponse)
async def retry(request: RetryRequest, background_tasks: BackgroundTasks) -> RetryResponse:
    """Reset failed or partial videos and re-run the pipeline in the background.

    ``retry_all`` picks up to 20 of the most recently created retryable videos;
    otherwise only ``video_id`` is considered.
    """
    if not request.retry_all and request.video_id is None:
        raise HTTPException(status_code=400, detail="Provide video_id or set retry_all")

    client = get_supabase_client()
    query = client.table(VIDEOS_TABLE).select("id,youtube_video_id").in_("processing_status", RETRYABLE_STATUSES)
    if request.retry_all:
        query = query.order("created_at", desc=True).limit(MAX_RETRY_BATCH)
    else:
        query = query.eq("id", request.video_id)
    videos = cast(list[dict[str, Any]], query.execute().data)

    if not videos:
        return RetryResponse(message="No failed videos found to retry", retried=0)

    retried: list[int] = []
    for video in videos:
        try:
            client.table(VIDEOS_TABLE).update(
                {
                    "processing_status": VideoProcessingStatus.PENDING.value,
                    "error_message": None,
                    "last_processed_at": utc_now().isoformat(),
                }
            ).eq("id", video["id"]).execute()
        except Exception:
            logger.exception("Failed to reset video %s for retry", video["id"])
            continue
        background_tasks.add_task(_run_pipeline, video["id"], video["youtube_video_id"])
        retried.append(video["id"])

    return RetryResponse(
        message=f"Started retry processing for {len(retried)} videos",
        retried=len(retried),
        video_ids=retried,
    )
