"""
Application configuration via environment variables.

Uses Pydantic BaseSettings to load and validate all config from env vars
or a .env.local file. Every setting has a sensible default for local
development so the service can start with an in-memory record store and
no external credentials.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment selector."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class StoreBackend(str, Enum):
    """Which record store implementation backs the services."""

    SUPABASE = "supabase"
    MEMORY = "memory"


class LockBackend(str, Enum):
    """Where customer-creation locks live."""

    LOCAL = "local"
    REDIS = "redis"


class Settings(BaseSettings):
    """
    Central configuration for the Call Intelligence Service.

    Values are loaded from environment variables first, falling back
    to a `.env.local` file in the project root. Secrets should NEVER
    be committed.
    """

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Environment ──────────────────────────────────────────────
    environment: Environment = Environment.DEVELOPMENT

    # ── AI Model Keys ────────────────────────────────────────────
    openai_api_key: str = Field(default="", description="OpenAI API key for appointment extraction")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI API base URL")
    extraction_model: str = Field(default="gpt-4o-mini", description="Chat model used for extraction")
    deepgram_api_key: str = Field(default="", description="Deepgram API key for transcription")
    transcription_model: str = Field(default="nova-2", description="Deepgram model for recordings")

    # ── Record Store ─────────────────────────────────────────────
    store_backend: StoreBackend = Field(default=StoreBackend.MEMORY, description="Record store backend")
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_key: str = Field(default="", description="Supabase service-role key")

    # ── Redis ────────────────────────────────────────────────────
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    customer_lock_backend: LockBackend = Field(default=LockBackend.LOCAL, description="Customer creation lock backend")
    lock_timeout_seconds: float = Field(default=5.0, gt=0, le=60, description="Max hold/wait time for a customer lock")

    # ── Timeouts ─────────────────────────────────────────────────
    extraction_timeout_seconds: float = Field(default=30.0, gt=0, le=300, description="Bound on the extraction call")
    transcription_timeout_seconds: float = Field(default=120.0, gt=0, le=900, description="Bound on the transcription call")

    # ── Confidence Thresholds (0..1) ─────────────────────────────
    min_job_confidence: float = Field(default=0.6, ge=0.0, le=1.0, description="Minimum usable extraction confidence for a job")
    review_threshold: float = Field(default=0.7, ge=0.0, le=1.0, description="Below this, an extraction needs human review")
    issue_confidence_penalty: float = Field(default=0.15, ge=0.0, le=1.0, description="Confidence deducted per quality issue")
    name_match_threshold: float = Field(default=80.0, ge=0.0, le=100.0, description="Name similarity must exceed this to match")

    # ── Notifications / Keyed TTL State ──────────────────────────
    notification_ttl_seconds: int = Field(default=7 * 24 * 3600, ge=60, description="Notification retention")
    notification_max_per_user: int = Field(default=100, ge=1, le=1000, description="Notifications kept per user")
    verification_code_ttl_seconds: int = Field(default=600, ge=60, le=3600, description="Verification code lifetime")

    # ── API ──────────────────────────────────────────────────────
    rate_limit_window_seconds: int = Field(default=60, ge=1, description="Rate limit window")
    rate_limit_max_requests: int = Field(default=100, ge=1, description="Requests per window per client")

    # ── Worker ───────────────────────────────────────────────────
    worker_poll_interval: float = Field(default=10.0, gt=0, description="Idle sleep between polls")
    max_retry_attempts: int = Field(default=3, ge=0, le=10, description="Pipeline retries per call")

    # ── Feature Flags ────────────────────────────────────────────
    feature_auto_create_jobs: bool = Field(default=True, description="Create jobs from confident extractions")
    feature_notifications: bool = Field(default=True, description="Emit notification events")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Root log level")

    # ── Derived helpers ──────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return cached Settings instance.

    Using lru_cache ensures we read env vars exactly once, and every
    module that calls ``get_settings()`` gets the same object.
    """
    return Settings()
