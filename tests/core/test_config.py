"""Tests for settings and the connector configs built from them."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from rowbridge.connections.flatfile import FlatFileConfig
from rowbridge.connections.sql import SqlConnectionConfig
from rowbridge.connections.tablestore import TableStoreConfig
from rowbridge.core.config import TABLE_STORE_MAX_BATCH, Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.table_store_batch_size == TABLE_STORE_MAX_BATCH
        assert settings.table_store_partition_default == "default"
        assert settings.sql_bulk_batch_size == 500
        assert settings.flat_file_incoming == "incoming"

    def test_environment_override(self, monkeypatch):
        """Settings are read from ROWBRIDGE_ prefixed variables."""
        monkeypatch.setenv("ROWBRIDGE_TABLE_STORE_PAGE_SIZE", "50")
        monkeypatch.setenv("ROWBRIDGE_SQL_URL", "sqlite+aiosqlite:///./other.db")

        settings = Settings(_env_file=None)

        assert settings.table_store_page_size == 50
        assert settings.sql_url == "sqlite+aiosqlite:///./other.db"

    def test_batch_size_cannot_exceed_store_limit(self, monkeypatch):
        monkeypatch.setenv("ROWBRIDGE_TABLE_STORE_BATCH_SIZE", "101")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)


class TestConnectorConfigs:
    """Tests for the from_settings constructors."""

    def test_table_store_config(self):
        settings = Settings(_env_file=None, table_store_page_size=10)
        config = TableStoreConfig.from_settings(settings, retry_delay=0)
        assert config.page_size == 10
        assert config.retry_delay == 0
        assert config.batch_size == TABLE_STORE_MAX_BATCH

    def test_sql_config(self):
        settings = Settings(_env_file=None, sql_url="sqlite+aiosqlite:///./x.db", sql_echo=True)
        config = SqlConnectionConfig.from_settings(settings)
        assert config.url == "sqlite+aiosqlite:///./x.db"
        assert config.echo_sql
        assert config.backend == "sqlite"
        assert not config.is_sqlite_memory

    def test_sql_in_memory(self):
        assert SqlConnectionConfig.in_memory().is_sqlite_memory

    def test_flat_file_config(self, tmp_path: Path):
        settings = Settings(_env_file=None, flat_file_root=tmp_path, flat_file_rejected="bad")
        config = FlatFileConfig.from_settings(settings)
        assert config.root == tmp_path
        assert config.rejected == "bad"
