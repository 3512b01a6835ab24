"""Centralized configuration loading."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    # Storage
    audit_db_path: Path
    draft_cache_path: Path
    catalog_path: Path | None

    # Remote response API
    remote_api_url: str
    remote_api_token: str | None
    remote_write_timeout: float
    remote_retry_attempts: int
    remote_retry_wait_min: float
    remote_retry_wait_max: float

    # Autosave
    autosave_debounce_seconds: float
    retry_interval_seconds: float

    # Scoring and drilldown
    top_risks_limit: int
    default_page_size: int
    max_page_size: int
    max_timeseries_buckets: int


def _get_optional_env(key: str, default: str) -> str:
    """Get optional environment variable with default."""
    value = os.getenv(key)
    return value.strip() if value else default


def _get_default_data_dir() -> Path:
    """Get default data directory in user's cache directory."""
    data_dir = Path.home() / ".cache" / "compliance-engine"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def _get_path_env(key: str, filename: str) -> Path:
    """Get a path from the environment, defaulting to the data directory."""
    value = os.getenv(key)
    return Path(value) if value else _get_default_data_dir() / filename


def load_config() -> Config:
    """Load and validate configuration from environment."""
    load_dotenv()
    catalog_env = os.getenv("CATALOG_PATH")
    token = os.getenv("REMOTE_API_TOKEN")

    return Config(
        audit_db_path=_get_path_env("AUDIT_DB_PATH", "audits.db"),
        draft_cache_path=_get_path_env("DRAFT_CACHE_PATH", "drafts.db"),
        catalog_path=Path(catalog_env) if catalog_env else None,
        remote_api_url=_get_optional_env("REMOTE_API_URL", "http://127.0.0.1:8000"),
        remote_api_token=token.strip() if token and token.strip() else None,
        remote_write_timeout=float(_get_optional_env("REMOTE_WRITE_TIMEOUT", "10")),
        remote_retry_attempts=int(_get_optional_env("REMOTE_RETRY_ATTEMPTS", "3")),
        remote_retry_wait_min=float(_get_optional_env("REMOTE_RETRY_WAIT_MIN", "0.5")),
        remote_retry_wait_max=float(_get_optional_env("REMOTE_RETRY_WAIT_MAX", "4")),
        # Autosave timings
        autosave_debounce_seconds=float(_get_optional_env("AUTOSAVE_DEBOUNCE_SECONDS", "30")),
        retry_interval_seconds=float(_get_optional_env("RETRY_INTERVAL_SECONDS", "15")),
        # Scoring and drilldown
        top_risks_limit=int(_get_optional_env("TOP_RISKS_LIMIT", "5")),
        default_page_size=int(_get_optional_env("DEFAULT_PAGE_SIZE", "10")),
        max_page_size=int(_get_optional_env("MAX_PAGE_SIZE", "100")),
        max_timeseries_buckets=int(_get_optional_env("MAX_TIMESERIES_BUCKETS", "1000")),
    )


# Singleton config instance (lazy loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the configuration singleton."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Reset config singleton (useful for testing)."""
    global _config
    _config = None
