"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Remote session store
    api_url: str = "http://localhost:8000"
    api_timeout: float = 10.0

    # Device cache
    cache_dir: Path = Path.home() / ".restock" / "cache"
    cache_key: str = "current_restock_session"

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="RESTOCK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
