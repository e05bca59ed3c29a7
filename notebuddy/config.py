"""
NoteBuddy Client - Application Configuration
=============================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads from environment variables (prefix NOTEBUDDY_)
       or a .env file, validates types/ranges, and provides a singleton
       `settings` object.
Who:   Every service accepts an optional Settings instance; when omitted the
       module singleton is used.
When:  Loaded once at module import time.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

MB = 1024 * 1024


class Settings(BaseSettings):
    """
    Client settings loaded from environment variables.

    Attributes are grouped by concern. All durations are seconds.
    """

    # ── Backend ───────────────────────────────────────────────────────────
    api_base_url: str = Field(
        default="https://note-buddy-backend.onrender.com",
        description="Base URL of the NoteBuddy backend",
    )

    # Liveness probe budget; a cold backend answers slowly or not at all
    health_timeout: float = Field(default=10.0, gt=0, le=60)

    # Budget for every other request
    request_timeout: float = Field(default=30.0, gt=0, le=300)

    # ── Health Gate ───────────────────────────────────────────────────────
    # Background re-probe period (5 minutes)
    health_refresh_interval: float = Field(default=300.0, gt=0)

    # Spacing between probes while waiting for a starting backend
    health_wait_interval: float = Field(default=5.0, ge=0, le=60)

    # Extra probes after the immediate one: login/register and data calls
    login_health_retries: int = Field(default=2, ge=0, le=20)
    call_health_retries: int = Field(default=1, ge=0, le=20)

    # ── Per-call Retry ────────────────────────────────────────────────────
    # 401/403 and timeouts are retried with a fixed backoff
    call_fetch_retries: int = Field(default=2, ge=0, le=10)
    auth_retry_delay: float = Field(default=1.0, ge=0, le=30)

    # ── Transcription Workflow ────────────────────────────────────────────
    poll_interval: float = Field(default=3.0, gt=0, le=60)
    poll_ceiling: float = Field(default=120.0, gt=0, le=3600)
    workflow_max_attempts: int = Field(default=3, ge=1, le=10)
    workflow_retry_delay: float = Field(default=2.0, ge=0, le=60)

    # ── Upload Limits ─────────────────────────────────────────────────────
    max_audio_size: int = Field(default=25 * MB, ge=MB)
    audio_size_warning: int = Field(default=20 * MB, ge=MB)
    max_pdf_size: int = Field(default=10 * MB, ge=MB)

    # ── Local State ───────────────────────────────────────────────────────
    credential_path: str = Field(
        default=str(Path.home() / ".notebuddy" / "credentials.json"),
        description="JSON file holding the persisted session",
    )

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Paths are joined as base + '/path'."""
        return v.rstrip("/")

    model_config = {
        "env_prefix": "NOTEBUDDY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


settings = Settings()
