"""Supabase storage helpers for videos and their indexed phrases."""

from __future__ import annotations

import os
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, cast

from postgrest import CountMethod
from supabase import Client, create_client

from src.ingestion.models import Phrase
from src.pipeline_config import VideoProcessingStatus

PHRASES_TABLE = "video_phrases"
VIDEOS_TABLE = "videos"

# Unique constraint backing the ignore-on-conflict insert.
PHRASE_CONFLICT_COLUMNS = "video_id,phrase_text,start_time_seconds"


def utc_now() -> datetime:
    return datetime.now(UTC)


def get_supabase_client() -> Client:
    """Create and return a Supabase client from environment variables."""
    return create_client(
        os.getenv("SUPABASE_URL", ""),
        os.getenv("SUPABASE_KEY", ""),
    )


def get_video(client: Client, video_id: int) -> dict[str, Any] | None:
    """Return the ``videos`` row for *video_id*, or None."""
    result = client.table(VIDEOS_TABLE).select("*").eq("id", video_id).execute()
    rows = cast(list[dict[str, Any]], result.data)
    return rows[0] if rows else None


def update_video_status(
    client: Client,
    video_id: int,
    status: VideoProcessingStatus,
    error_message: str | None = None,
) -> None:
    """Set the processing status (and error message) shown for a video."""
    client.table(VIDEOS_TABLE).update(
        {
            "processing_status": status.value,
            "error_message": error_message,
            "last_processed_at": utc_now().isoformat(),
        }
    ).eq("id", video_id).execute()


def claim_video(
    client: Client,
    video_id: int,
    run_token: str,
    stale_after: timedelta,
) -> bool:
    """Claim exclusive processing rights on a video.

    Compare-and-swap on ``videos.run_token``: the update only matches when no
    run holds the video, or when the holder's claim is older than
    *stale_after* (a crashed run). Returns False if another run owns it.
    """
    now = utc_now()
    claim = {"run_token": run_token, "run_started_at": now.isoformat()}

    result = client.table(VIDEOS_TABLE).update(claim).eq("id", video_id).is_("run_token", "null").execute()
    if result.data:
        return True

    cutoff = (now - stale_after).isoformat()
    result = client.table(VIDEOS_TABLE).update(claim).eq("id", video_id).lt("run_started_at", cutoff).execute()
    return bool(result.data)


def release_video(client: Client, video_id: int, run_token: str) -> None:
    """Drop the claim taken by :func:`claim_video`, if this run still holds it."""
    client.table(VIDEOS_TABLE).update({"run_token": None, "run_started_at": None}).eq(
        "id", video_id
    ).eq("run_token", run_token).execute()


def fetch_existing_phrases(client: Client, video_id: int) -> list[Phrase]:
    """Load every phrase already stored for *video_id*."""
    result = (
        client.table(PHRASES_TABLE)
        .select("video_id,phrase_text,start_time_seconds,end_time_seconds")
        .eq("video_id", video_id)
        .execute()
    )
    return [Phrase.from_row(row) for row in cast(list[dict[str, Any]], result.data)]


def insert_phrases(client: Client, phrases: Sequence[Phrase]) -> int:
    """Insert phrases in one statement, ignoring rows that already exist.

    Safe to retry: a phrase already stored (same video, text and start time)
    is skipped by the unique constraint instead of failing the statement.

    Returns:
        Number of rows actually inserted.
    """
    if not phrases:
        return 0
    result = (
        client.table(PHRASES_TABLE)
        .upsert(
            [p.to_row() for p in phrases],
            on_conflict=PHRASE_CONFLICT_COLUMNS,
            ignore_duplicates=True,
        )
        .execute()
    )
    return len(result.data or [])


def count_phrases(client: Client, video_id: int) -> int:
    result = client.table(PHRASES_TABLE).select("id", count=CountMethod.exact).eq("video_id", video_id).execute()
    return result.count or 0


def delete_phrases(client: Client, video_id: int) -> int:
    """Remove every phrase of a video (recovery from a corrupted run)."""
    result = client.table(PHRASES_TABLE).delete().eq("video_id", video_id).execute()
    return len(result.data or [])
