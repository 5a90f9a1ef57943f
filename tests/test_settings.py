"""Tests for environment-driven configuration."""
import pytest

from settings import Config


def test_defaults(monkeypatch):
    for name in ("XES_DATABASE_URI", "LOG_LEVEL", "SQL_FLUSH_INTERVAL", "PROGRESS_INTERVAL",
                 "MAX_RETRIES", "LARGE_FILE_WARNING_MB"):
        monkeypatch.delenv(name, raising=False)
    config = Config()
    assert config.DATABASE_URI == "sqlite:///xes_data.db"
    assert config.LOG_LEVEL == "INFO"
    assert config.SQL_FLUSH_INTERVAL == 100
    assert config.PROGRESS_INTERVAL == 1000
    assert config.MAX_RETRIES == 3
    assert config.LARGE_FILE_WARNING_MB == 100


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("XES_DATABASE_URI", "postgresql://postgres@localhost:5432/xes")
    monkeypatch.setenv("SQL_FLUSH_INTERVAL", "25")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    config = Config()
    assert config.SQL_FLUSH_INTERVAL == 25
    assert config.is_postgresql()
    assert not config.is_sqlite()


@pytest.mark.parametrize("name,value", [
    ("SQL_FLUSH_INTERVAL", "0"),
    ("PROGRESS_INTERVAL", "-1"),
    ("MAX_RETRIES", "-1"),
    ("LOG_LEVEL", "LOUD"),
    ("XES_DATABASE_URI", ""),
])
def test_invalid_values_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        Config()


def test_database_type_detection(monkeypatch):
    monkeypatch.delenv("XES_DATABASE_URI", raising=False)
    config = Config()
    assert config.get_database_type() == "sqlite"
    assert config.get_database_type("postgresql+psycopg2://u@h/db") == "postgresql"
    assert config.get_database_type("mysql://u@h/db") == "unknown"
