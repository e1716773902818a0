"""Durable chunk queue that lets a large phrase set be written across invocations.

Each row of ``processing_queue`` holds up to ``chunk_size`` phrases and moves
``pending -> completed`` once all of its rows are written, or
``pending -> failed`` when a row cannot be written or the payload is unreadable.
A chunk interrupted by the time budget simply stays ``pending``; because phrase
inserts ignore conflicts, writing it again later is safe. When a chunk fails
part way through because the budget ran out, its unwritten tail is queued
again as a new pending chunk.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any, cast

from postgrest import CountMethod
from supabase import Client

from src.ingestion.budget import TimeBudget
from src.ingestion.models import DrainResult, Phrase, QueueChunk, QueueSummary
from src.ingestion.storage import utc_now
from src.ingestion.writer import ResumableWriter
from src.pipeline_config import ChunkStatus

logger = logging.getLogger(__name__)

QUEUE_TABLE = "processing_queue"

TERMINAL_STATUSES = [ChunkStatus.COMPLETED.value, ChunkStatus.FAILED.value]


class QueueScheduler:
    """Owns the ``processing_queue`` table: enqueue, drain, purge."""

    def __init__(
        self,
        client: Client,
        writer: ResumableWriter,
        chunk_size: int = 25,
        max_chunks_per_drain: int = 3,
        pause_seconds: float = 0.5,
        retention: timedelta = timedelta(hours=1),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._writer = writer
        self.chunk_size = chunk_size
        self.max_chunks_per_drain = max_chunks_per_drain
        self.pause_seconds = pause_seconds
        self.retention = retention
        self._sleep = sleep

    @property
    def writer(self) -> ResumableWriter:
        return self._writer

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def _next_chunk_index(self, video_id: int) -> int:
        result = (
            self._client.table(QUEUE_TABLE)
            .select("chunk_index")
            .eq("video_id", video_id)
            .order("chunk_index", desc=True)
            .limit(1)
            .execute()
        )
        rows = cast(list[dict[str, Any]], result.data)
        return rows[0]["chunk_index"] + 1 if rows else 0

    def _insert_chunks(
        self,
        video_id: int,
        phrases: Sequence[Phrase],
        status: ChunkStatus,
        error_message: str | None = None,
    ) -> list[QueueChunk]:
        first_index = self._next_chunk_index(video_id)
        created_at = utc_now().isoformat()
        processed_at = created_at if status is not ChunkStatus.PENDING else None
        chunks = [
            QueueChunk(
                id=None,
                video_id=video_id,
                chunk_index=first_index + n,
                payload=list(phrases[i : i + self.chunk_size]),
                status=status,
                created_at=created_at,
                processed_at=processed_at,
                error_message=error_message,
            )
            for n, i in enumerate(range(0, len(phrases), self.chunk_size))
        ]

        self._client.table(QUEUE_TABLE).insert(
            [
                {
                    "video_id": chunk.video_id,
                    "chunk_index": chunk.chunk_index,
                    "payload": [p.to_payload() for p in chunk.payload],
                    "status": status.value,
                    "created_at": created_at,
                    "processed_at": processed_at,
                    "error_message": error_message,
                }
                for chunk in chunks
            ]
        ).execute()
        return chunks

    def enqueue(self, video_id: int, phrases: Sequence[Phrase]) -> list[QueueChunk]:
        """Split *phrases* into pending chunks and record them all at once.

        Nothing is written to the phrase store here; once this returns, the
        work survives the process dying.
        """
        if not phrases:
            return []

        chunks = self._insert_chunks(video_id, phrases, ChunkStatus.PENDING)
        logger.info("Queued %d phrases for video %s in %d chunks", len(phrases), video_id, len(chunks))
        return chunks

    def record_failed(self, video_id: int, phrases: Sequence[Phrase], errors: Sequence[str]) -> list[QueueChunk]:
        """Record phrases a direct write could not insert as failed chunks.

        They then count against the video like any failed chunk, and
        :meth:`reset_failed` queues them for another attempt.
        """
        if not phrases:
            return []

        message = f"{len(phrases)} phrases failed: " + "; ".join(errors[:3])
        chunks = self._insert_chunks(video_id, phrases, ChunkStatus.FAILED, message)
        logger.warning("Recorded %d failed phrases for video %s", len(phrases), video_id)
        return chunks

    # ------------------------------------------------------------------
    # Drain
    # ------------------------------------------------------------------

    def _pending_rows(self, video_id: int, limit: int) -> list[dict[str, Any]]:
        result = (
            self._client.table(QUEUE_TABLE)
            .select("*")
            .eq("video_id", video_id)
            .eq("status", ChunkStatus.PENDING.value)
            .order("chunk_index")
            .limit(limit)
            .execute()
        )
        return cast(list[dict[str, Any]], result.data)

    def _finish(self, row_id: Any, status: ChunkStatus, error_message: str | None = None) -> None:
        self._client.table(QUEUE_TABLE).update(
            {
                "status": status.value,
                "processed_at": utc_now().isoformat(),
                "error_message": error_message,
            }
        ).eq("id", row_id).execute()

    def drain(self, video_id: int, budget: TimeBudget) -> DrainResult:
        """Write up to ``max_chunks_per_drain`` pending chunks, oldest index first.

        Stops early when *budget* runs out; the interrupted chunk stays pending.
        """
        drained = DrainResult()
        rows = self._pending_rows(video_id, self.max_chunks_per_drain)

        for position, row in enumerate(rows):
            if budget.exceeded():
                drained.budget_exhausted = True
                break
            if position > 0 and self.pause_seconds > 0:
                self._sleep(self.pause_seconds)

            try:
                chunk = QueueChunk.from_row(row)
            except (KeyError, TypeError, ValueError) as exc:
                logger.error("Chunk %s of video %s has an unreadable payload: %s", row.get("id"), video_id, exc)
                self._finish(row.get("id"), ChunkStatus.FAILED, f"Unreadable payload: {exc}")
                drained.chunks_failed += 1
                continue

            written = self._writer.write(chunk.payload, budget)
            drained.inserted += written.inserted

            if written.failed:
                # The budget can run out after a row failed; keep the unwritten tail owed.
                tail = chunk.payload[written.processed :]
                if tail:
                    self.enqueue(video_id, tail)
                self._finish(
                    chunk.id,
                    ChunkStatus.FAILED,
                    f"{written.failed} of {len(chunk.payload)} phrases failed: " + "; ".join(written.errors[:3]),
                )
                drained.chunks_failed += 1
            elif written.processed >= len(chunk.payload):
                self._finish(chunk.id, ChunkStatus.COMPLETED)
                drained.chunks_completed += 1
            else:
                logger.info(
                    "Chunk %d of video %s interrupted by budget after %d/%d phrases",
                    chunk.chunk_index,
                    video_id,
                    written.processed,
                    len(chunk.payload),
                )

            if written.budget_exhausted:
                drained.budget_exhausted = True
                break

        drained.pending_remaining = self.pending_count(video_id)
        logger.info(
            "Drained video %s: %d completed, %d failed, %d inserted, %d pending",
            video_id,
            drained.chunks_completed,
            drained.chunks_failed,
            drained.inserted,
            drained.pending_remaining,
        )
        return drained

    # ------------------------------------------------------------------
    # Counts, maintenance and admin views
    # ------------------------------------------------------------------

    def _count(self, video_id: int, status: ChunkStatus) -> int:
        result = (
            self._client.table(QUEUE_TABLE)
            .select("id", count=CountMethod.exact)
            .eq("video_id", video_id)
            .eq("status", status.value)
            .execute()
        )
        return result.count or 0

    def pending_count(self, video_id: int) -> int:
        return self._count(video_id, ChunkStatus.PENDING)

    def failed_count(self, video_id: int) -> int:
        return self._count(video_id, ChunkStatus.FAILED)

    def videos_with_pending(self, limit: int | None = None) -> list[int]:
        """Video IDs that still have pending chunks, oldest queue first."""
        result = (
            self._client.table(QUEUE_TABLE)
            .select("video_id,created_at")
            .eq("status", ChunkStatus.PENDING.value)
            .order("created_at")
            .execute()
        )
        video_ids: list[int] = []
        for row in cast(list[dict[str, Any]], result.data):
            if row["video_id"] not in video_ids:
                video_ids.append(row["video_id"])
        return video_ids[:limit] if limit is not None else video_ids

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete terminal chunks processed longer ago than the retention window."""
        cutoff = ((now or utc_now()) - self.retention).isoformat()
        result = (
            self._client.table(QUEUE_TABLE)
            .delete()
            .in_("status", TERMINAL_STATUSES)
            .lt("processed_at", cutoff)
            .execute()
        )
        purged = len(result.data or [])
        if purged:
            logger.info("Purged %d queue chunks processed before %s", purged, cutoff)
        return purged

    def queue_status(self, video_id: int | None = None) -> list[QueueSummary]:
        """Per-video chunk counts, most recently queued video first."""
        query = self._client.table(QUEUE_TABLE).select("video_id,status,created_at,processed_at")
        if video_id is not None:
            query = query.eq("video_id", video_id)
        rows = cast(list[dict[str, Any]], query.execute().data)

        summaries: dict[int, QueueSummary] = {}
        for row in rows:
            summary = summaries.setdefault(row["video_id"], QueueSummary(video_id=row["video_id"]))
            summary.total_chunks += 1
            status = row.get("status")
            if status == ChunkStatus.PENDING.value:
                summary.pending_chunks += 1
            elif status == ChunkStatus.COMPLETED.value:
                summary.completed_chunks += 1
            elif status == ChunkStatus.FAILED.value:
                summary.failed_chunks += 1

            created_at = row.get("created_at")
            if created_at and (summary.queue_started is None or created_at < summary.queue_started):
                summary.queue_started = created_at
            processed_at = row.get("processed_at")
            if processed_at and (summary.last_processed is None or processed_at > summary.last_processed):
                summary.last_processed = processed_at

        return sorted(summaries.values(), key=lambda s: s.queue_started or "", reverse=True)

    def reset_failed(self, video_id: int) -> int:
        """Move a video's failed chunks back to pending so they are retried."""
        result = (
            self._client.table(QUEUE_TABLE)
            .update({"status": ChunkStatus.PENDING.value, "processed_at": None, "error_message": None})
            .eq("video_id", video_id)
            .eq("status", ChunkStatus.FAILED.value)
            .execute()
        )
        return len(result.data or [])

    def clear(self, video_id: int) -> int:
        """Delete every chunk of a video, whatever its status."""
        result = self._client.table(QUEUE_TABLE).delete().eq("video_id", video_id).execute()
        return len(result.data or [])
