"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # External company source
    source_base_url: str = "https://stages.example.nl/api"
    source_api_key: Optional[str] = None

    # Cache settings
    cache_ttl_seconds: int = 300
    cache_max_entries: int = 1024
    max_results: int = 5

    # Rate limiting
    rate_limit_window_seconds: int = 60
    identity_requests_per_window: int = 10
    session_max_concurrent: int = 5
    global_requests_per_window: int = 100
    session_retry_after_seconds: int = 1

    # Fetch / retry
    fetch_timeout_seconds: float = 15.0
    fetch_max_attempts: int = 3
    fetch_backoff_base_seconds: float = 0.5
    fetch_backoff_factor: float = 2.0
    fetch_jitter_seconds: float = 0.25

    # Client-facing timeout, must leave room for the full retry budget
    request_timeout_seconds: float = 60.0

    # Outcome logging (JSONL)
    search_logging: bool = False
    log_directory: Path = Path("./logs")
    # Key for query hashes in the outcome log; random per process when unset
    search_log_salt: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @property
    def worst_case_fetch_seconds(self) -> float:
        """Upper bound for one retrying fetch: every attempt times out."""
        backoff = sum(
            self.fetch_backoff_base_seconds * self.fetch_backoff_factor ** i
            + self.fetch_jitter_seconds
            for i in range(self.fetch_max_attempts - 1)
        )
        return self.fetch_max_attempts * self.fetch_timeout_seconds + backoff

    @model_validator(mode="after")
    def _check_timeouts(self) -> "Settings":
        if self.fetch_max_attempts < 1:
            raise ValueError("fetch_max_attempts must be at least 1")
        if self.worst_case_fetch_seconds >= self.request_timeout_seconds:
            raise ValueError(
                f"request_timeout_seconds ({self.request_timeout_seconds}) must exceed "
                f"the worst-case fetch budget ({self.worst_case_fetch_seconds:.1f}s)"
            )
        return self


settings = Settings()
