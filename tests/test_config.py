"""Tests for Settings, PipelineConfig and the status enums."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.config import Settings
from src.pipeline_config import (
    AcquisitionFailureReason,
    ChunkStatus,
    PipelineConfig,
    ProcessingStatus,
    VideoProcessingStatus,
)

# ---------------------------------------------------------------------------
# Enum tests
# ---------------------------------------------------------------------------


class TestProcessingStatus:
    def test_values(self) -> None:
        assert [s.value for s in ProcessingStatus] == [
            "completed",
            "no_subtitles",
            "partial",
            "failed",
            "already_processing",
            "nothing_pending",
        ]

    def test_from_string(self) -> None:
        assert ProcessingStatus("partial") is ProcessingStatus.PARTIAL

    def test_invalid_raises(self) -> None:
        with pytest.raises(ValueError):
            ProcessingStatus("invalid")

    def test_is_str_subclass(self) -> None:
        """Enum values behave as plain strings for JSON serialization."""
        assert isinstance(ProcessingStatus.COMPLETED, str)


class TestVideoProcessingStatus:
    def test_display_strings(self) -> None:
        assert VideoProcessingStatus.PENDING.value == "Pending Subtitle Processing"
        assert VideoProcessingStatus.PROCESSING.value == "Processing Subtitles"
        assert VideoProcessingStatus.PROCESSED.value == "Subtitles Processed"
        assert VideoProcessingStatus.NO_SUBTITLES.value == "Error - No Subtitles"

    def test_error_statuses_share_prefix(self) -> None:
        errors = [s for s in VideoProcessingStatus if s.value.startswith("Error")]
        assert set(errors) == {
            VideoProcessingStatus.NO_SUBTITLES,
            VideoProcessingStatus.FETCH_FAILED,
            VideoProcessingStatus.WRITE_FAILED,
        }

    def test_partial_prefix(self) -> None:
        assert VideoProcessingStatus.PARTIAL.value.startswith("Partial Processing")


class TestChunkStatus:
    def test_values(self) -> None:
        assert {s.value for s in ChunkStatus} == {"pending", "completed", "failed"}


class TestAcquisitionFailureReason:
    def test_values(self) -> None:
        assert AcquisitionFailureReason("quota_or_auth") is AcquisitionFailureReason.QUOTA_OR_AUTH
        assert AcquisitionFailureReason.TRANSIENT.value == "transient"


# ---------------------------------------------------------------------------
# PipelineConfig tests
# ---------------------------------------------------------------------------


class TestPipelineConfig:
    def test_defaults(self) -> None:
        cfg = PipelineConfig()
        assert cfg.merge_leeway_ms == 2000
        assert cfg.overlap_word_count == 3
        assert cfg.dedup_window_seconds == 2.0
        assert cfg.similarity_threshold == 0.9
        assert cfg.write_batch_size == 25
        assert cfg.queue_chunk_size == 25
        assert cfg.max_chunks_per_drain == 3
        assert cfg.queue_retention == timedelta(hours=1)
        assert cfg.stale_claim == timedelta(minutes=10)

    def test_immutable(self) -> None:
        cfg = PipelineConfig()
        with pytest.raises(AttributeError):
            cfg.write_batch_size = 10  # type: ignore[misc]

    def test_from_settings(self) -> None:
        settings = Settings(
            _env_file=None,  # type: ignore[call-arg]
            merge_leeway_ms=750,
            write_batch_size=100,
            queue_retention_minutes=30,
            stale_claim_minutes=5,
        )
        cfg = PipelineConfig.from_settings(settings)
        assert cfg.merge_leeway_ms == 750
        assert cfg.write_batch_size == 100
        assert cfg.queue_retention == timedelta(minutes=30)
        assert cfg.stale_claim == timedelta(minutes=5)


class TestSettings:
    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WRITE_BUDGET_SECONDS", "12.5")
        monkeypatch.setenv("YOUTUBE_API_KEY", "abc")
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.write_budget_seconds == 12.5
        assert settings.youtube_api_key == "abc"
