"""
Application settings using Pydantic.

Provides environment-based configuration loading with METRICATLAS_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./metricatlas.db"

    # Debug
    debug: bool = False
    log_level: str = "INFO"

    # Sources
    sources_file: str | None = None
    workspace_dir: str | None = None
    default_ref: str = "main"

    # Run limits
    max_workers: int | None = None  # None: 2 x CPU count
    max_concurrent_fetches: int = 4
    run_timeout_seconds: float = 3600.0

    # Fetching
    fetch_timeout_seconds: int = 600
    fetch_max_attempts: int = 3
    fetch_backoff_seconds: float = 1.0
    git_binary: str = "git"

    # GitHub archive fetcher
    github_api_url: str = "https://api.github.com"
    github_token: str | None = None

    # Enrichment
    catalog_path: str | None = None
    catalog_include_semconv: bool = True
    catalog_include_incubating: bool = True
    enrichment_batch_size: int = 500

    # Normalization
    normalization_policy_path: str | None = None

    # API
    api_prefix: str = ""
    cors_origins: list[str] = []
    default_page_size: int = 50
    max_page_size: int = 500

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "METRICATLAS_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
