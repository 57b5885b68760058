"""
ReviewSight Configuration Module
================================

Centralized configuration management using environment variables.
Supports both .env files and system environment variables.

Environment Variables:
    LLM_PROVIDER: anthropic | openai (default: picked from available API keys)
    LLM_MODEL: Scoring model name (default: provider default)
    USE_FALLBACK_ANALYSIS: Force deterministic analysis, no external calls (default: false)

    COLLECTION_TARGET_RECENT: Target reviews for the recent phase (default: 100)
    COLLECTION_TARGET_WORST: Target reviews for the worst phase (default: 100)
    COLLECTION_TARGET_BEST: Target reviews for the best phase (default: 100)
    COLLECTION_PHASE_TIMEOUT: Per-phase timeout in seconds (default: 120)
    COLLECTION_TOTAL_TIMEOUT: Whole-session timeout in seconds (default: 300)
    COLLECTION_PHASE_RETRIES: Attempts per harvesting phase (default: 3)
    COLLECTION_RETRY_BASE_DELAY: Base delay between phase attempts (default: 1.0)
    COLLECTION_BATCH_SIZE: Progress reporting granularity (default: 20)
    COLLECTION_ANALYSIS_CONCURRENCY: 2 = both analysis pipelines concurrently (default: 2)

    SESSION_RETENTION_SECONDS: Sessions older than this are purged (default: 3600)
    SESSION_REAPER_INTERVAL: Reaper period in seconds (default: 300)
    OBSERVER_TIMEOUT_SECONDS: Timeout for async observers (default: 5.0)
    ALLOWED_SOURCE_DOMAINS: Comma-separated allowed source hosts (default: any)

    NOTIFICATION_WEBHOOK_URL: Webhook receiving session events
    ENABLE_NOTIFICATIONS: "true" to push session events (default: false)

    LOG_LEVEL, LOG_JSON, LOG_FILE: Logging (default: INFO, false, none)
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file if present
env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: Optional[str] = None) -> Optional[str]:
    """Raw environment value, empty strings treated as unset."""
    value = os.getenv(key)
    return value if value else default


def get_env_int(key: str, default: int) -> int:
    """Get environment variable as integer."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable '{key}' must be an integer, got: {value}")


def get_env_float(key: str, default: float) -> float:
    """Get environment variable as float."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable '{key}' must be a float, got: {value}")


def get_env_bool(key: str, default: bool) -> bool:
    """Get environment variable as boolean."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def get_env_list(key: str) -> List[str]:
    """Get comma-separated environment variable as a list of lowercase items."""
    value = os.getenv(key, "")
    return [item.strip().lower() for item in value.split(",") if item.strip()]


@dataclass
class AnalysisConfig:
    """Scoring service configuration."""

    provider: Optional[str] = field(default_factory=lambda: get_env("LLM_PROVIDER"))
    model: Optional[str] = field(default_factory=lambda: get_env("LLM_MODEL"))

    # Global fallback-only switch
    use_fallback: bool = field(default_factory=lambda: get_env_bool("USE_FALLBACK_ANALYSIS", False))

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.provider is not None and self.provider not in ("anthropic", "openai"):
            raise ValueError(f"LLM_PROVIDER must be 'anthropic' or 'openai', got: {self.provider}")


@dataclass
class CollectionDefaults:
    """Default collection parameters, overridable per request."""

    target_recent: int = field(default_factory=lambda: get_env_int("COLLECTION_TARGET_RECENT", 100))
    target_worst: int = field(default_factory=lambda: get_env_int("COLLECTION_TARGET_WORST", 100))
    target_best: int = field(default_factory=lambda: get_env_int("COLLECTION_TARGET_BEST", 100))

    # Timeouts in seconds
    phase_timeout: float = field(default_factory=lambda: get_env_float("COLLECTION_PHASE_TIMEOUT", 120.0))
    total_timeout: float = field(default_factory=lambda: get_env_float("COLLECTION_TOTAL_TIMEOUT", 300.0))

    # Retry configuration
    phase_retries: int = field(default_factory=lambda: get_env_int("COLLECTION_PHASE_RETRIES", 3))
    retry_base_delay: float = field(default_factory=lambda: get_env_float("COLLECTION_RETRY_BASE_DELAY", 1.0))

    # Performance knobs
    batch_size: int = field(default_factory=lambda: get_env_int("COLLECTION_BATCH_SIZE", 20))
    analysis_concurrency: int = field(default_factory=lambda: get_env_int("COLLECTION_ANALYSIS_CONCURRENCY", 2))

    def __post_init__(self):
        """Validate configuration."""
        if min(self.target_recent, self.target_worst, self.target_best) < 0:
            raise ValueError("collection targets cannot be negative")
        if self.phase_timeout <= 0 or self.total_timeout <= 0:
            raise ValueError("collection timeouts must be positive")
        if self.phase_retries < 1:
            raise ValueError("phase_retries must be at least 1")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self.analysis_concurrency not in (1, 2):
            raise ValueError("analysis_concurrency must be 1 or 2")


@dataclass
class SessionConfig:
    """Session registry configuration."""

    retention_seconds: float = field(default_factory=lambda: get_env_float("SESSION_RETENTION_SECONDS", 3600.0))
    reaper_interval: float = field(default_factory=lambda: get_env_float("SESSION_REAPER_INTERVAL", 300.0))
    observer_timeout: float = field(default_factory=lambda: get_env_float("OBSERVER_TIMEOUT_SECONDS", 5.0))
    allowed_source_domains: List[str] = field(default_factory=lambda: get_env_list("ALLOWED_SOURCE_DOMAINS"))

    def __post_init__(self):
        """Validate configuration."""
        if self.retention_seconds <= 0:
            raise ValueError("retention_seconds must be positive")
        if self.reaper_interval <= 0:
            raise ValueError("reaper_interval must be positive")


@dataclass
class NotificationConfig:
    """Notification sink configuration."""

    webhook_url: str = field(default_factory=lambda: get_env("NOTIFICATION_WEBHOOK_URL", ""))
    enabled: bool = field(default_factory=lambda: get_env_bool("ENABLE_NOTIFICATIONS", False))


@dataclass
class CacheConfig:
    """Result store configuration."""

    redis_url: Optional[str] = field(default_factory=lambda: get_env("REDIS_URL"))
    prefix: str = field(default_factory=lambda: get_env("CACHE_PREFIX", "reviewsight"))


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    log_file: Optional[str] = field(default_factory=lambda: get_env("LOG_FILE"))

    # Structured logging
    json_logs: bool = field(default_factory=lambda: get_env_bool("LOG_JSON", False))


@dataclass
class Settings:
    """Main application settings container."""

    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    collection: CollectionDefaults = field(default_factory=CollectionDefaults)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Global settings instance (lazy-loaded)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Settings built from the environment on first use, then shared.

    Raises:
        ValueError: If a variable is malformed or a value fails validation
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the global settings instance (next get_settings() re-reads the environment)."""
    global _settings
    _settings = None
