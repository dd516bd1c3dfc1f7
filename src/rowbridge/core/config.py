"""Configuration management.

Uses pydantic-settings for type-safe configuration from environment variables.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Hard limit of the table store for a single entity group transaction
TABLE_STORE_MAX_BATCH = 100


class Settings(BaseSettings):
    """Application settings.

    All settings can be overridden via environment variables.
    Prefix: ROWBRIDGE_
    """

    model_config = SettingsConfigDict(
        env_prefix="ROWBRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # SQL connector (SQLAlchemy)
    sql_url: str = Field(
        default="sqlite+aiosqlite:///./rowbridge.db",
        description="SQLAlchemy async database URL",
    )
    sql_echo: bool = Field(default=False, description="Echo SQL statements")
    sql_bulk_batch_size: int = Field(
        default=500,
        ge=1,
        description="Rows per committed transaction during bulk loads",
    )

    # Table store (Azure Table Storage)
    table_store_connection_string: str | None = Field(
        default=None,
        description="Connection string for the table store account",
    )
    table_store_batch_size: int = Field(
        default=TABLE_STORE_MAX_BATCH,
        ge=1,
        le=TABLE_STORE_MAX_BATCH,
        description="Operations per batch transaction (store maximum is 100)",
    )
    table_store_page_size: int = Field(
        default=1000,
        ge=1,
        description="Entities requested per page when reading",
    )
    table_store_partition_default: str = Field(
        default="default",
        description="Partition key used when a row does not provide one",
    )
    table_store_create_retries: int = Field(
        default=10,
        ge=1,
        description="Attempts to create a table while its old name is still being deleted",
    )
    table_store_retry_delay: float = Field(
        default=5.0,
        ge=0.0,
        description="Seconds between table creation attempts",
    )

    # Flat files
    flat_file_root: Path = Field(
        default=Path("./data"),
        description="Root directory holding one directory per table",
    )
    flat_file_incoming: str = Field(default="incoming")
    flat_file_processed: str = Field(default="processed")
    flat_file_rejected: str = Field(default="rejected")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")  # 'json' or 'console'


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
