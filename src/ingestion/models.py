"""Data models for the caption ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.pipeline_config import ChunkStatus, ProcessingStatus


@dataclass(frozen=True)
class CaptionFragment:
    """One raw, unmerged caption cue. Times are in seconds."""

    start: float
    end: float
    text: str

    @property
    def is_special(self) -> bool:
        """Bracketed non-speech markers such as ``[Music]``."""
        return self.text.startswith("[") and self.text.endswith("]")


@dataclass(frozen=True)
class Phrase:
    """The persisted, searchable unit."""

    video_id: int
    text: str
    start: float
    end: float

    def to_row(self) -> dict[str, Any]:
        return {
            "video_id": self.video_id,
            "phrase_text": self.text,
            "start_time_seconds": self.start,
            "end_time_seconds": self.end,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Phrase:
        return cls(
            video_id=row["video_id"],
            text=row["phrase_text"],
            start=float(row["start_time_seconds"]),
            end=float(row["end_time_seconds"]),
        )

    def to_payload(self) -> dict[str, Any]:
        """Queue payload form; the owning chunk already carries ``video_id``."""
        return {"text": self.text, "start": self.start, "end": self.end}


@dataclass
class QueueChunk:
    """A durably queued slice of phrases awaiting write."""

    id: int | None
    video_id: int
    chunk_index: int
    payload: list[Phrase]
    status: ChunkStatus = ChunkStatus.PENDING
    created_at: str | None = None
    processed_at: str | None = None
    error_message: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> QueueChunk:
        """Build a chunk from a ``processing_queue`` row.

        Raises:
            KeyError, TypeError, ValueError: If the stored payload is not a list
                of ``{text, start, end}`` objects.
        """
        video_id = row["video_id"]
        return cls(
            id=row.get("id"),
            video_id=video_id,
            chunk_index=row["chunk_index"],
            payload=[
                Phrase(
                    video_id=video_id,
                    text=item["text"],
                    start=float(item["start"]),
                    end=float(item["end"]),
                )
                for item in row["payload"]
            ],
            status=ChunkStatus(row.get("status", ChunkStatus.PENDING)),
            created_at=row.get("created_at"),
            processed_at=row.get("processed_at"),
            error_message=row.get("error_message"),
        )


@dataclass
class WriteResult:
    """Outcome of one ResumableWriter call.

    ``processed`` counts phrases that were settled (inserted, already present or
    failed), so ``phrases[processed:]`` is exactly what remains. Rows that could
    not be written are kept in ``failed_phrases`` so the caller can record them.
    """

    inserted: int = 0
    processed: int = 0
    failed: int = 0
    budget_exhausted: bool = False
    errors: list[str] = field(default_factory=list)
    failed_phrases: list[Phrase] = field(default_factory=list)


@dataclass
class DrainResult:
    """Outcome of draining a video's pending chunks once."""

    chunks_completed: int = 0
    chunks_failed: int = 0
    inserted: int = 0
    pending_remaining: int = 0
    budget_exhausted: bool = False


@dataclass
class QueueSummary:
    """Per-video chunk counts for the queue status view."""

    video_id: int
    total_chunks: int = 0
    pending_chunks: int = 0
    completed_chunks: int = 0
    failed_chunks: int = 0
    queue_started: str | None = None
    last_processed: str | None = None


@dataclass
class PipelineResult:
    """What one pipeline invocation reports back to its caller."""

    video_id: int
    youtube_video_id: str
    status: ProcessingStatus
    phrases_indexed: int = 0
    message: str | None = None
