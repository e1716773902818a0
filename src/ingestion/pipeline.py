"""End-to-end caption pipeline: fetch -> parse -> clean -> merge -> dedup -> write.

Each stage runs as a named step through a :class:`StepRunner`. The default
runner executes steps inline; a durable orchestration harness can be plugged
in instead to checkpoint step results and resume in a fresh invocation.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from functools import partial
from typing import Protocol, TypeVar
from uuid import uuid4

import httpx
from supabase import Client

from src.config import settings
from src.ingestion.acquisition import CaptionAcquirer, CaptionsUnavailableError
from src.ingestion.budget import BudgetExceededError, TimeBudget
from src.ingestion.dedup import filter_duplicates
from src.ingestion.merging import merge_fragments
from src.ingestion.models import CaptionFragment, Phrase, PipelineResult
from src.ingestion.normalize import clean_text
from src.ingestion.queue import QueueScheduler
from src.ingestion.storage import (
    claim_video,
    fetch_existing_phrases,
    get_supabase_client,
    get_video,
    insert_phrases,
    release_video,
    update_video_status,
)
from src.ingestion.writer import ResumableWriter
from src.pipeline_config import (
    AcquisitionFailureReason,
    PipelineConfig,
    ProcessingStatus,
    VideoProcessingStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StepRunner(Protocol):
    """Runs one named unit of work and records its result."""

    def do(self, name: str, fn: Callable[[], T]) -> T: ...


class InlineStepRunner:
    """Runs steps immediately in-process, logging their duration."""

    def do(self, name: str, fn: Callable[[], T]) -> T:
        started = time.monotonic()
        logger.debug("Step %r started", name)
        result = fn()
        logger.debug("Step %r finished in %.2fs", name, time.monotonic() - started)
        return result


def build_scheduler(
    client: Client,
    config: PipelineConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> QueueScheduler:
    """Wire a ResumableWriter over the Supabase phrase store into a QueueScheduler."""
    writer = ResumableWriter(
        partial(insert_phrases, client),
        batch_size=config.write_batch_size,
        max_consecutive_failures=config.max_consecutive_batch_failures,
    )
    return QueueScheduler(
        client,
        writer,
        chunk_size=config.queue_chunk_size,
        max_chunks_per_drain=config.max_chunks_per_drain,
        pause_seconds=config.drain_pause_seconds,
        retention=config.queue_retention,
        sleep=sleep,
    )


def prepare_phrases(
    video_id: int,
    fragments: Sequence[CaptionFragment],
    persisted: Sequence[Phrase],
    config: PipelineConfig,
) -> list[Phrase]:
    """Clean, merge and deduplicate raw fragments into phrases worth inserting."""
    cleaned = [
        CaptionFragment(start=f.start, end=f.end, text=text)
        for f in fragments
        if (text := clean_text(f.text))
    ]
    merged = merge_fragments(
        cleaned,
        leeway_ms=config.merge_leeway_ms,
        overlap_words=config.overlap_word_count,
    )
    unique = filter_duplicates(
        video_id,
        merged,
        persisted,
        window_seconds=config.dedup_window_seconds,
        similarity_threshold=config.similarity_threshold,
    )
    logger.info(
        "Video %s: %d fragments -> %d cleaned -> %d merged -> %d unique",
        video_id,
        len(fragments),
        len(cleaned),
        len(merged),
        len(unique),
    )
    return unique


def _final_status(
    pending: int,
    failures: int,
) -> tuple[ProcessingStatus, VideoProcessingStatus]:
    if pending:
        return ProcessingStatus.PARTIAL, VideoProcessingStatus.PARTIAL
    if failures:
        return ProcessingStatus.FAILED, VideoProcessingStatus.WRITE_FAILED
    return ProcessingStatus.COMPLETED, VideoProcessingStatus.PROCESSED


def _status_message(inserted: int, pending: int, failures: int) -> str | None:
    if pending:
        return f"{inserted} phrases indexed; {pending} chunks queued for continuation"
    if failures:
        return f"{inserted} phrases indexed; {failures} writes failed, retry required"
    return None


def _index_phrases(
    video_id: int,
    phrases: list[Phrase],
    scheduler: QueueScheduler,
    config: PipelineConfig,
    clock: Callable[[], float],
) -> tuple[int, int, int]:
    """Write phrases directly or through the queue.

    Returns ``(inserted, pending_chunks, failures)``.
    """
    # A full run recomputes everything still missing, so leftovers of an
    # earlier run are superseded.
    scheduler.clear(video_id)
    budget = TimeBudget(config.write_budget_seconds, clock=clock)

    if len(phrases) <= config.inline_write_threshold:
        written = scheduler.writer.write(phrases, budget)
        # Failed rows stay on record as failed chunks until a retry.
        scheduler.record_failed(video_id, written.failed_phrases, written.errors)
        remaining = phrases[written.processed :]
        pending = len(scheduler.enqueue(video_id, remaining)) if remaining else 0
        return written.inserted, pending, written.failed

    # Record every chunk before the first write so a crash loses nothing.
    scheduler.enqueue(video_id, phrases)
    drained = scheduler.drain(video_id, budget)
    return drained.inserted, drained.pending_remaining, drained.chunks_failed


def _run(
    video_id: int,
    youtube_video_id: str,
    client: Client,
    acquirer: CaptionAcquirer,
    config: PipelineConfig,
    steps: StepRunner,
    scheduler: QueueScheduler,
    clock: Callable[[], float],
) -> PipelineResult:
    steps.do(
        "update status to processing",
        lambda: update_video_status(client, video_id, VideoProcessingStatus.PROCESSING),
    )

    try:
        fragments = steps.do("fetch subtitles", lambda: acquirer.acquire(youtube_video_id))
    except CaptionsUnavailableError as exc:
        if exc.reason is AcquisitionFailureReason.NO_CAPTIONS:
            status, video_status = ProcessingStatus.NO_SUBTITLES, VideoProcessingStatus.NO_SUBTITLES
        else:
            status, video_status = ProcessingStatus.FAILED, VideoProcessingStatus.FETCH_FAILED
        message = f"{exc.reason.value}: {exc.message}"
        steps.do(
            "mark fetch failure",
            lambda: update_video_status(client, video_id, video_status, message),
        )
        return PipelineResult(video_id, youtube_video_id, status, 0, message)

    phrases = steps.do(
        "clean merge and deduplicate subtitles",
        lambda: prepare_phrases(video_id, fragments, fetch_existing_phrases(client, video_id), config),
    )

    inserted, pending, failures = steps.do(
        "index phrases",
        lambda: _index_phrases(video_id, phrases, scheduler, config, clock),
    )

    status, video_status = _final_status(pending, failures)
    message = _status_message(inserted, pending, failures)
    steps.do(
        "mark processing result",
        lambda: update_video_status(client, video_id, video_status, message),
    )
    logger.info("Video %s (%s): %s, %d phrases indexed", video_id, youtube_video_id, status.value, inserted)
    return PipelineResult(video_id, youtube_video_id, status, inserted, message)


def _claimed(
    client: Client,
    video_id: int,
    youtube_video_id: str,
    config: PipelineConfig,
    work: Callable[[], PipelineResult],
) -> PipelineResult:
    """Run *work* while holding the video's run token; failures become results."""
    run_token = uuid4().hex
    if not claim_video(client, video_id, run_token, config.stale_claim):
        logger.info("Video %s is already being processed; skipping", video_id)
        return PipelineResult(
            video_id,
            youtube_video_id,
            ProcessingStatus.ALREADY_PROCESSING,
            0,
            "Video is already being processed",
        )

    try:
        return work()
    except Exception as exc:
        logger.exception("Processing failed for video %s (%s)", video_id, youtube_video_id)
        message = f"Processing error: {exc}"
        update_video_status(client, video_id, VideoProcessingStatus.WRITE_FAILED, message)
        return PipelineResult(video_id, youtube_video_id, ProcessingStatus.FAILED, 0, message)
    finally:
        release_video(client, video_id, run_token)


def process_video(
    video_id: int,
    youtube_video_id: str,
    *,
    client: Client | None = None,
    acquirer: CaptionAcquirer | None = None,
    config: PipelineConfig | None = None,
    steps: StepRunner | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> PipelineResult:
    """Full pipeline for one video: the single entry point for discovery.

    Args:
        video_id: Row ID of the video in the ``videos`` table.
        youtube_video_id: The YouTube video identifier.
        client: Supabase client (created from the environment if omitted).
        acquirer: Caption acquirer (an httpx-backed one is created if omitted).
        config: Pipeline tunables (defaults come from settings).
        steps: Step runner (inline if omitted).
        clock: Monotonic clock used by the write budget.
        sleep: Pause function used between drained chunks.

    Returns:
        A PipelineResult whose status is ``completed``, ``no_subtitles``,
        ``partial``, ``failed`` or ``already_processing``.
    """
    client = client or get_supabase_client()
    config = config or PipelineConfig.from_settings(settings)
    steps = steps or InlineStepRunner()
    scheduler = build_scheduler(client, config, sleep)

    if acquirer is not None:
        return _claimed(
            client,
            video_id,
            youtube_video_id,
            config,
            lambda: _run(video_id, youtube_video_id, client, acquirer, config, steps, scheduler, clock),
        )

    with httpx.Client(timeout=settings.http_timeout_seconds, follow_redirects=True) as http:
        default_acquirer = CaptionAcquirer(http, settings.youtube_api_key)
        return _claimed(
            client,
            video_id,
            youtube_video_id,
            config,
            lambda: _run(video_id, youtube_video_id, client, default_acquirer, config, steps, scheduler, clock),
        )


def continue_processing(
    video_id: int,
    *,
    client: Client | None = None,
    config: PipelineConfig | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> PipelineResult:
    """Drain a partially processed video's pending chunks with a fresh budget.

    A video that is neither awaiting continuation nor holding pending chunks is
    left untouched and reported as ``nothing_pending``.
    """
    client = client or get_supabase_client()
    config = config or PipelineConfig.from_settings(settings)
    scheduler = build_scheduler(client, config, sleep)

    video = get_video(client, video_id)
    youtube_video_id = str(video.get("youtube_video_id", "")) if video else ""
    awaiting = video is not None and video.get("processing_status") == VideoProcessingStatus.PARTIAL.value
    if not awaiting and scheduler.pending_count(video_id) == 0:
        logger.info("Video %s has nothing to continue", video_id)
        return PipelineResult(
            video_id,
            youtube_video_id,
            ProcessingStatus.NOTHING_PENDING,
            0,
            "Video is not awaiting continuation",
        )

    def work() -> PipelineResult:
        drained = scheduler.drain(video_id, TimeBudget(config.write_budget_seconds, clock=clock))
        failures = scheduler.failed_count(video_id)
        status, video_status = _final_status(drained.pending_remaining, failures)
        message = _status_message(drained.inserted, drained.pending_remaining, failures)
        update_video_status(client, video_id, video_status, message)
        return PipelineResult(video_id, youtube_video_id, status, drained.inserted, message)

    return _claimed(client, video_id, youtube_video_id, config, work)


def drain_pending(
    *,
    client: Client | None = None,
    config: PipelineConfig | None = None,
    max_videos: int | None = None,
    sweep_seconds: float | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> list[PipelineResult]:
    """Continue every video with pending chunks, then purge expired chunks.

    The sweep as a whole is bounded by *sweep_seconds* (default: the write
    budget); each video still gets its own fresh write budget.
    """
    client = client or get_supabase_client()
    config = config or PipelineConfig.from_settings(settings)
    scheduler = build_scheduler(client, config, sleep)
    sweep = TimeBudget(sweep_seconds if sweep_seconds is not None else config.write_budget_seconds, clock=clock)

    results: list[PipelineResult] = []
    for video_id in scheduler.videos_with_pending(limit=max_videos):
        try:
            sweep.check()
        except BudgetExceededError as exc:
            logger.info("Stopping queue sweep: %s", exc)
            break
        results.append(continue_processing(video_id, client=client, config=config, clock=clock, sleep=sleep))

    scheduler.purge_expired()
    return results
