from __future__ import annotations

import pytest

from src.pipeline_config import VideoProcessingStatus
from tests.fakes import FakeSupabaseClient


@pytest.fixture
def fake_client() -> FakeSupabaseClient:
    """A fake Supabase client holding one pending video with id 1."""
    client = FakeSupabaseClient()
    client.add_row(
        "videos",
        {
            "id": 1,
            "youtube_video_id": "abc123",
            "title": "Test video",
            "processing_status": VideoProcessingStatus.PENDING.value,
            "error_message": None,
            "last_processed_at": None,
            "run_token": None,
            "run_started_at": None,
            "created_at": "2026-01-01T00:00:00+00:00",
        },
    )
    return client
