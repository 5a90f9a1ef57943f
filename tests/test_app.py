"""Tests for the dashboard's connection defaults."""
import importlib.util
from pathlib import Path

import pytest

from settings import Config

APP_PATH = Path(__file__).resolve().parent.parent / "app.py"


@pytest.fixture(scope="module")
def app_module():
    spec = importlib.util.spec_from_file_location("xes_explorer_app", APP_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_default_matches_importer(app_module, monkeypatch):
    """Test the dashboard opens the same database the CLI writes by default."""
    monkeypatch.delenv("XES_DATABASE_URI", raising=False)
    assert app_module.default_database_uri() == Config().DATABASE_URI


def test_default_follows_environment(app_module, monkeypatch, sqlite_uri):
    monkeypatch.setenv("XES_DATABASE_URI", sqlite_uri)
    assert app_module.default_database_uri() == sqlite_uri
