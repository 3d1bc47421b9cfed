"""Application configuration using pydantic-settings."""

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via:
    1. Environment variables (e.g., WRITE_TOKEN=secret)
    2. .env file in the project root

    The two credentials are the only secrets the gateway knows about. Leaving
    one of them unset disables that access tier entirely.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # API settings
    api_title: str = "SQL Gateway API"
    api_version: str = "0.1.0"
    api_prefix: str = "api"
    debug: bool = False

    # Authentication
    write_token: str | None = None
    read_only_token: str | None = None

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    # Store settings (":memory:" keeps everything in process)
    database_path: str = "./data/gateway.duckdb"
    duckdb_threads: int = 4
    duckdb_memory_limit: str = "1GB"

    # Schema version written into the reserved version row of every new table
    db_version: int = 1

    @property
    def in_memory(self) -> bool:
        return self.database_path == ":memory:"

    @property
    def database_file(self) -> Path | None:
        """Path of the DuckDB file, or None for an in-memory store."""
        if self.in_memory:
            return None
        return Path(self.database_path)


# Global settings instance
settings = Settings()
