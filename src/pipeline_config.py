"""Pipeline configuration: status enums and the PipelineConfig dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.config import Settings


class ProcessingStatus(str, Enum):
    """Outcome of one pipeline run, as returned to the caller."""

    COMPLETED = "completed"
    NO_SUBTITLES = "no_subtitles"
    PARTIAL = "partial"
    FAILED = "failed"
    ALREADY_PROCESSING = "already_processing"
    NOTHING_PENDING = "nothing_pending"


class VideoProcessingStatus(str, Enum):
    """Human-readable status stored on the ``videos`` row."""

    PENDING = "Pending Subtitle Processing"
    PROCESSING = "Processing Subtitles"
    PROCESSED = "Subtitles Processed"
    PARTIAL = "Partial Processing - Continuation Required"
    NO_SUBTITLES = "Error - No Subtitles"
    FETCH_FAILED = "Error - Fetch Failed"
    WRITE_FAILED = "Error - Write Failed"


class ChunkStatus(str, Enum):
    """Lifecycle of a row in the ``processing_queue`` table."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class AcquisitionFailureReason(str, Enum):
    """Why no caption strategy produced content.

    Ordered from least to most actionable: a transient failure anywhere means
    captions may well exist, so it outranks the other two.
    """

    NO_CAPTIONS = "no_captions"
    QUOTA_OR_AUTH = "quota_or_auth"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable tunables for one pipeline run.

    Earlier deployments ran with a 750 ms leeway and batch sizes of 100 or 10;
    those are just other values of these fields.
    """

    merge_leeway_ms: int = 2000
    overlap_word_count: int = 3
    dedup_window_seconds: float = 2.0
    similarity_threshold: float = 0.9
    write_batch_size: int = 25
    max_consecutive_batch_failures: int = 2
    write_budget_seconds: float = 5.0
    inline_write_threshold: int = 50
    queue_chunk_size: int = 25
    max_chunks_per_drain: int = 3
    drain_pause_seconds: float = 0.5
    queue_retention: timedelta = timedelta(hours=1)
    stale_claim: timedelta = timedelta(minutes=10)

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls(
            merge_leeway_ms=settings.merge_leeway_ms,
            overlap_word_count=settings.overlap_word_count,
            dedup_window_seconds=settings.dedup_window_seconds,
            similarity_threshold=settings.similarity_threshold,
            write_batch_size=settings.write_batch_size,
            max_consecutive_batch_failures=settings.max_consecutive_batch_failures,
            write_budget_seconds=settings.write_budget_seconds,
            inline_write_threshold=settings.inline_write_threshold,
            queue_chunk_size=settings.queue_chunk_size,
            max_chunks_per_drain=settings.max_chunks_per_drain,
            drain_pause_seconds=settings.drain_pause_seconds,
            queue_retention=timedelta(minutes=settings.queue_retention_minutes),
            stale_claim=timedelta(minutes=settings.stale_claim_minutes),
        )
