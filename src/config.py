from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    youtube_api_key: str = ""  # Optional; without it the captions API strategy is skipped

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    http_timeout_seconds: float = 15.0

    # Merge / dedup tuning
    merge_leeway_ms: int = 2000
    overlap_word_count: int = 3
    dedup_window_seconds: float = 2.0
    similarity_threshold: float = 0.9

    # Writer / queue tuning
    write_batch_size: int = 25
    max_consecutive_batch_failures: int = 2
    write_budget_seconds: float = 5.0
    inline_write_threshold: int = 50
    queue_chunk_size: int = 25
    max_chunks_per_drain: int = 3
    drain_pause_seconds: float = 0.5
    queue_retention_minutes: int = 60
    stale_claim_minutes: int = 10

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
