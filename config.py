"""
Configuration settings for the lms-offline sync service.

Uses Pydantic Settings for environment variable management with .env file support.
All variables are prefixed with LMS_ (e.g. LMS_API_BASE_URL, LMS_LOG_LEVEL).
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LMS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Local Storage
    # ========================================
    data_dir: Path = Field(
        default=Path.home() / ".lms_offline",
        description="Directory holding the offline cache database",
    )
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL for the offline cache (defaults to sqlite in data_dir)",
    )

    # ========================================
    # Remote Data API (PostgREST-compatible backend)
    # ========================================
    api_base_url: str = Field(
        default="http://localhost:54321",
        description="Base URL of the hosted backend",
    )
    api_key: str = Field(
        default="",
        description="Backend anon/public API key (sent as the apikey header)",
    )
    api_access_token: str | None = Field(
        default=None,
        description="Session access token for the signed-in user",
    )
    api_timeout_seconds: float = Field(
        default=30.0,
        description="HTTP timeout for backend requests",
    )

    user_id: str | None = Field(
        default=None,
        description="Signed-in user whose cache the CLI operates on",
    )

    # ========================================
    # Sync Behavior
    # ========================================
    conflict_policy_overrides: dict[str, Literal["server_wins", "local_wins", "merged"]] = Field(
        default_factory=dict,
        description="Per entity kind resolution override, e.g. {'conversation': 'local_wins'}",
    )

    # ========================================
    # Grading
    # ========================================
    trend_min_records: int = Field(
        default=2,
        description="Minimum dated scores before a trend other than 'stable' is reported",
    )
    trend_tolerance: float = Field(
        default=2.0,
        description="Percentage-point band treated as a stable trend",
    )
    default_weight_assignments: float = Field(default=0.40)
    default_weight_quizzes: float = Field(default=0.30)
    default_weight_participation: float = Field(default=0.20)
    default_weight_attendance: float = Field(default=0.10)

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    def get_database_url(self) -> str:
        """Resolve the cache database URL, defaulting to a sqlite file in data_dir."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'offline_cache.db'}"

    def get_default_weights(self) -> dict[str, float]:
        """Default grade category weights as a dictionary."""
        return {
            "assignments": self.default_weight_assignments,
            "quizzes": self.default_weight_quizzes,
            "participation": self.default_weight_participation,
            "attendance": self.default_weight_attendance,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
