"""Tests for the processing-queue scheduler against an in-memory Supabase."""

from __future__ import annotations

from datetime import timedelta
from functools import partial
from typing import Any

import pytest

from src.ingestion.budget import TimeBudget
from src.ingestion.models import Phrase
from src.ingestion.queue import QUEUE_TABLE, QueueScheduler
from src.ingestion.storage import PHRASES_TABLE, insert_phrases, utc_now
from src.ingestion.writer import ResumableWriter
from src.pipeline_config import ChunkStatus
from tests.fakes import FakeClock, FakeSupabaseClient


def make_phrases(n: int, video_id: int = 1) -> list[Phrase]:
    return [Phrase(video_id=video_id, text=f"phrase {i}", start=float(i), end=i + 0.5) for i in range(n)]


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def scheduler(fake_client: FakeSupabaseClient, sleeps: list[float]) -> QueueScheduler:
    writer = ResumableWriter(partial(insert_phrases, fake_client), batch_size=10)
    return QueueScheduler(fake_client, writer, chunk_size=25, max_chunks_per_drain=3, sleep=sleeps.append)


def queue_rows(client: FakeSupabaseClient, video_id: int = 1) -> list[dict[str, Any]]:
    return sorted(
        (r for r in client.rows(QUEUE_TABLE) if r["video_id"] == video_id),
        key=lambda r: r["chunk_index"],
    )


class TestEnqueue:
    def test_splits_into_pending_chunks(self, scheduler: QueueScheduler, fake_client: FakeSupabaseClient) -> None:
        chunks = scheduler.enqueue(1, make_phrases(60))
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        rows = queue_rows(fake_client)
        assert [len(r["payload"]) for r in rows] == [25, 25, 10]
        assert {r["status"] for r in rows} == {"pending"}
        assert rows[0]["payload"][0] == {"text": "phrase 0", "start": 0.0, "end": 0.5}

    def test_nothing_is_written_on_enqueue(self, scheduler: QueueScheduler, fake_client: FakeSupabaseClient) -> None:
        scheduler.enqueue(1, make_phrases(30))
        assert fake_client.rows(PHRASES_TABLE) == []

    def test_numbering_continues_after_existing_chunks(self, scheduler: QueueScheduler) -> None:
        scheduler.enqueue(1, make_phrases(30))
        later = scheduler.enqueue(1, make_phrases(5))
        assert [c.chunk_index for c in later] == [2]

    def test_empty_enqueue(self, scheduler: QueueScheduler, fake_client: FakeSupabaseClient) -> None:
        assert scheduler.enqueue(1, []) == []
        assert fake_client.rows(QUEUE_TABLE) == []


class TestDrain:
    def test_drains_all_chunks(
        self, scheduler: QueueScheduler, fake_client: FakeSupabaseClient, sleeps: list[float]
    ) -> None:
        scheduler.enqueue(1, make_phrases(60))
        result = scheduler.drain(1, TimeBudget(60.0))

        assert result.chunks_completed == 3
        assert result.inserted == 60
        assert result.pending_remaining == 0
        assert len(fake_client.rows(PHRASES_TABLE)) == 60
        assert all(r["status"] == "completed" and r["processed_at"] for r in queue_rows(fake_client))
        assert sleeps == [0.5, 0.5]

    def test_drains_at_most_max_chunks(self, scheduler: QueueScheduler) -> None:
        scheduler.enqueue(1, make_phrases(110))
        result = scheduler.drain(1, TimeBudget(60.0))
        assert result.chunks_completed == 3
        assert result.pending_remaining == 2
        assert scheduler.pending_count(1) == 2

    def test_exhausted_budget_leaves_chunks_pending(
        self, scheduler: QueueScheduler, fake_client: FakeSupabaseClient
    ) -> None:
        scheduler.enqueue(1, make_phrases(60))
        clock = FakeClock()
        budget = TimeBudget(1.0, clock=clock)
        clock.advance(1.0)

        result = scheduler.drain(1, budget)

        assert result.budget_exhausted
        assert result.inserted == 0
        assert result.pending_remaining == 3
        assert fake_client.rows(PHRASES_TABLE) == []

    def test_interrupted_chunk_stays_pending_and_is_rewritten_safely(self, fake_client: FakeSupabaseClient) -> None:
        clock = FakeClock()

        def slow_insert(phrases: Any) -> int:
            clock.advance(1.0)
            return insert_phrases(fake_client, phrases)

        scheduler = QueueScheduler(
            fake_client, ResumableWriter(slow_insert, batch_size=10), chunk_size=25, sleep=lambda _: None
        )
        scheduler.enqueue(1, make_phrases(25))

        first = scheduler.drain(1, TimeBudget(2.0, clock=clock))
        assert first.budget_exhausted
        assert first.inserted == 20
        assert queue_rows(fake_client)[0]["status"] == "pending"

        second = scheduler.drain(1, TimeBudget(60.0, clock=clock))
        assert second.chunks_completed == 1
        assert second.inserted == 5
        assert len(fake_client.rows(PHRASES_TABLE)) == 25

    def test_row_failure_marks_chunk_failed(
        self, scheduler: QueueScheduler, fake_client: FakeSupabaseClient
    ) -> None:
        def reject_bad_rows(table: str, op: str, payload: Any) -> None:
            if op == "upsert" and any(row["phrase_text"] == "phrase 3" for row in payload):
                raise RuntimeError("value rejected")

        fake_client.on_execute = reject_bad_rows
        scheduler.enqueue(1, make_phrases(10))
        result = scheduler.drain(1, TimeBudget(60.0))

        assert result.chunks_failed == 1
        assert result.inserted == 9
        row = queue_rows(fake_client)[0]
        assert row["status"] == "failed"
        assert row["error_message"].startswith("1 of 10 phrases failed")
        assert scheduler.failed_count(1) == 1

    def test_unwritten_tail_of_failed_chunk_is_requeued(self, fake_client: FakeSupabaseClient) -> None:
        clock = FakeClock()

        def slow_insert(phrases: Any) -> int:
            clock.advance(1.0)
            if any(p.text == "phrase 0" for p in phrases):
                raise RuntimeError("value rejected")
            return insert_phrases(fake_client, phrases)

        scheduler = QueueScheduler(
            fake_client, ResumableWriter(slow_insert, batch_size=5), chunk_size=25, sleep=lambda _: None
        )
        scheduler.enqueue(1, make_phrases(10))

        first = scheduler.drain(1, TimeBudget(3.0, clock=clock))

        assert first.budget_exhausted
        assert first.chunks_failed == 1
        assert first.inserted == 1
        assert first.pending_remaining == 1
        failed, tail = queue_rows(fake_client)
        assert failed["status"] == "failed"
        assert tail["status"] == "pending"
        assert tail["chunk_index"] == 1
        assert [item["text"] for item in tail["payload"]] == [f"phrase {i}" for i in range(2, 10)]

        second = scheduler.drain(1, TimeBudget(60.0, clock=clock))

        assert second.chunks_completed == 1
        assert second.inserted == 8
        assert len(fake_client.rows(PHRASES_TABLE)) == 9

    def test_record_failed(self, scheduler: QueueScheduler, fake_client: FakeSupabaseClient) -> None:
        scheduler.enqueue(1, make_phrases(3))
        scheduler.record_failed(1, make_phrases(2), ["0.00s 'phrase 0': value rejected"])

        row = queue_rows(fake_client)[1]
        assert row["chunk_index"] == 1
        assert row["status"] == "failed"
        assert row["processed_at"] is not None
        assert row["error_message"].startswith("2 phrases failed: 0.00s 'phrase 0'")
        assert scheduler.failed_count(1) == 1
        assert scheduler.pending_count(1) == 1
        assert scheduler.record_failed(1, [], []) == []

    def test_unreadable_payload_marks_chunk_failed(
        self, scheduler: QueueScheduler, fake_client: FakeSupabaseClient
    ) -> None:
        fake_client.add_row(
            QUEUE_TABLE,
            {"video_id": 1, "chunk_index": 0, "payload": "not a list", "status": "pending", "created_at": "x"},
        )
        result = scheduler.drain(1, TimeBudget(60.0))
        assert result.chunks_failed == 1
        row = queue_rows(fake_client)[0]
        assert row["status"] == "failed"
        assert row["error_message"].startswith("Unreadable payload")

    def test_other_videos_untouched(self, scheduler: QueueScheduler, fake_client: FakeSupabaseClient) -> None:
        scheduler.enqueue(1, make_phrases(10))
        scheduler.enqueue(2, make_phrases(10, video_id=2))
        scheduler.drain(1, TimeBudget(60.0))
        assert scheduler.pending_count(2) == 1


class TestMaintenance:
    def test_purge_expired_removes_only_old_terminal_chunks(
        self, scheduler: QueueScheduler, fake_client: FakeSupabaseClient
    ) -> None:
        now = utc_now()
        old = (now - timedelta(hours=2)).isoformat()
        recent = (now - timedelta(minutes=10)).isoformat()
        for index, (status, processed_at) in enumerate(
            [("completed", old), ("failed", old), ("completed", recent), ("pending", None)]
        ):
            fake_client.add_row(
                QUEUE_TABLE,
                {"video_id": 1, "chunk_index": index, "payload": [], "status": status, "processed_at": processed_at},
            )

        assert scheduler.purge_expired(now) == 2
        assert [r["chunk_index"] for r in queue_rows(fake_client)] == [2, 3]

    def test_reset_failed(self, scheduler: QueueScheduler, fake_client: FakeSupabaseClient) -> None:
        fake_client.add_row(
            QUEUE_TABLE,
            {"video_id": 1, "chunk_index": 0, "payload": [], "status": "failed", "error_message": "boom"},
        )
        assert scheduler.reset_failed(1) == 1
        row = queue_rows(fake_client)[0]
        assert row["status"] == ChunkStatus.PENDING.value
        assert row["error_message"] is None

    def test_clear(self, scheduler: QueueScheduler, fake_client: FakeSupabaseClient) -> None:
        scheduler.enqueue(1, make_phrases(60))
        scheduler.enqueue(2, make_phrases(5, video_id=2))
        assert scheduler.clear(1) == 3
        assert queue_rows(fake_client) == []
        assert scheduler.pending_count(2) == 1

    def test_queue_status(self, scheduler: QueueScheduler) -> None:
        scheduler.enqueue(1, make_phrases(60))
        scheduler.drain(1, TimeBudget(60.0))
        scheduler.enqueue(1, make_phrases(5))

        (summary,) = scheduler.queue_status(1)
        assert summary.total_chunks == 4
        assert summary.completed_chunks == 3
        assert summary.pending_chunks == 1
        assert summary.last_processed is not None

    def test_videos_with_pending(self, scheduler: QueueScheduler) -> None:
        scheduler.enqueue(2, make_phrases(5, video_id=2))
        scheduler.enqueue(1, make_phrases(5))
        assert scheduler.videos_with_pending() == [2, 1]
        assert scheduler.videos_with_pending(limit=1) == [2]
