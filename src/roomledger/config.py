"""Configuration management for RoomLedger."""

from decimal import Decimal
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Which backend holds expenses, members and settlements
    store_backend: Literal["sqlite", "supabase"] = "sqlite"

    # Local database path
    database_path: Path = Path.home() / ".roomledger" / "roomledger.db"

    # Hosted backend (PostgREST)
    supabase_url: str | None = None
    supabase_api_key: str | None = None
    request_timeout: float = 30.0

    # Largest amount a single settlement may carry
    max_settlement_amount: Decimal = Decimal("1000000")

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        if self.store_backend == "sqlite":
            self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check your environment and .env file.\n"
            f"Error: {e}"
        ) from e
