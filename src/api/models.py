"""Pydantic request/response schemas for the Caption Phrase Indexer API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from src.pipeline_config import ProcessingStatus


class ProcessRequest(BaseModel):
    """Request body for /api/videos/{video_id}/process."""

    youtube_video_id: str


class ProcessResponse(BaseModel):
    """Result of one pipeline invocation."""

    video_id: int
    youtube_video_id: str
    status: ProcessingStatus
    phrases_indexed: int
    message: str | None = None


class VideoInfo(BaseModel):
    """Processing fields of a ``videos`` row."""

    id: int
    youtube_video_id: str | None = None
    title: str | None = None
    processing_status: str | None = None
    error_message: str | None = None


class Monitoring(BaseModel):
    """Derived view of where a video's processing stands."""

    stage: str
    progress: int
    phrase_count: int
    pending_chunks: int = 0
    failed_chunks: int = 0
    is_stuck: bool = False
    minutes_since_update: int = 0


class WorkerStatusResponse(BaseModel):
    """Response body for /api/videos/{video_id}/status."""

    video: VideoInfo
    monitoring: Monitoring
    timestamp: str


class RetryRequest(BaseModel):
    """Request body for /api/videos/retry."""

    video_id: int | None = None
    retry_all: bool = False


class RetryResponse(BaseModel):
    success: bool = True
    message: str
    retried: int
    video_ids: list[int] = []


class RecoveryRequest(BaseModel):
    """Request body for /api/recovery."""

    action: Literal["reset_stuck", "clear_phrases"]
    video_id: int | None = None


class ActionResponse(BaseModel):
    """Generic count-of-affected-rows response for admin actions."""

    success: bool = True
    message: str
    affected: int


class QueueSummaryResponse(BaseModel):
    video_id: int
    total_chunks: int
    pending_chunks: int
    completed_chunks: int
    failed_chunks: int
    queue_started: str | None = None
    last_processed: str | None = None


class QueueStatusResponse(BaseModel):
    """Response body for GET /api/queue."""

    success: bool = True
    queue_status: list[QueueSummaryResponse]
