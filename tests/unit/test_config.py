"""
Unit tests for configuration loading and validation.

Tests cover:
- Defaults
- Environment variable loading
- Validation failures
"""

import pytest

from historian.config import HistorianConfig, HistoryConfig, StorageConfig, StoreBackend
from historian.store import InMemoryHistoryStore, SqliteHistoryStore, create_history_store


class TestHistoryConfig:
    """Tests for HistoryConfig."""

    def test_defaults(self):
        config = HistoryConfig()

        assert config.collection == "__histories"
        assert config.no_event_save is True
        assert config.no_diff_save is False
        assert config.record_field_names == {
            "user": "user",
            "account": "account",
            "timestamp": "timestamp",
            "method": "method",
        }
        config.validate()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("HISTORY_COLLECTION", "tank_history")
        monkeypatch.setenv("HISTORY_IGNORE", "updated_at, ,etag")
        monkeypatch.setenv("HISTORY_NO_DIFF_SAVE_ON_METHODS", "delete")
        monkeypatch.setenv("HISTORY_NO_EVENT_SAVE", "false")
        monkeypatch.setenv("HISTORY_USER_FIELD", "actor")

        config = HistoryConfig.from_env()

        assert config.collection == "tank_history"
        assert config.ignore == ("updated_at", "etag")
        assert config.no_diff_save_on_methods == ("delete",)
        assert config.no_event_save is False
        assert config.record_field_names["user"] == "actor"

    def test_logical_name(self):
        assert HistoryConfig().logical_name("tank") == "tank"
        embedded = HistoryConfig(embedded=True, embedded_collection="fish")
        assert embedded.logical_name("tank") == "fish"

    def test_empty_collection_rejected(self):
        with pytest.raises(ValueError):
            HistoryConfig(collection="").validate()

    def test_embedded_requires_alias(self):
        with pytest.raises(ValueError, match="HISTORY_EMBEDDED_COLLECTION"):
            HistoryConfig(embedded=True).validate()

    def test_bound_names_must_be_distinct(self):
        with pytest.raises(ValueError):
            HistoryConfig(user_field="who", account_field="who").validate()


class TestHistorianConfig:
    """Tests for HistorianConfig."""

    def test_from_env_defaults(self, monkeypatch):
        monkeypatch.delenv("HISTORY_STORE", raising=False)

        config = HistorianConfig.from_env()

        assert config.store_backend == StoreBackend.MEMORY

    def test_from_env_sqlite(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HISTORY_STORE", "sqlite")
        monkeypatch.setenv("DATA_DIR", str(tmp_path))
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")

        config = HistorianConfig.from_env()

        assert config.store_backend == StoreBackend.SQLITE
        assert config.storage.data_dir == str(tmp_path)
        assert config.storage.wal_mode is False

    def test_invalid_backend(self, monkeypatch):
        monkeypatch.setenv("HISTORY_STORE", "mongo")
        with pytest.raises(ValueError, match="HISTORY_STORE"):
            HistorianConfig.from_env()

    def test_invalid_log_format(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "xml")
        with pytest.raises(ValueError, match="LOG_FORMAT"):
            HistorianConfig.from_env()

    def test_store_factory(self, tmp_path):
        memory = create_history_store(HistorianConfig())
        assert isinstance(memory, InMemoryHistoryStore)

        config = HistorianConfig(
            store_backend=StoreBackend.SQLITE,
            history=HistoryConfig(collection="tank_history"),
            storage=StorageConfig(data_dir=str(tmp_path)),
        )
        sqlite = create_history_store(config)
        assert isinstance(sqlite, SqliteHistoryStore)
        assert sqlite.table == "tank_history"

    def test_log_config(self, caplog):
        with caplog.at_level("INFO", logger="historian.config"):
            HistorianConfig().log_config()
        assert "Historian configuration loaded" in caplog.text
