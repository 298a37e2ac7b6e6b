import importlib
from pathlib import Path

import pytest

import kidpoints.config as config


@pytest.fixture()
def reload_config(monkeypatch):
    yield lambda: importlib.reload(config)
    monkeypatch.undo()
    importlib.reload(config)


def test_settings_come_from_the_environment(monkeypatch, reload_config, tmp_path) -> None:
    monkeypatch.setenv("KIDPOINTS_DATABASE_URL", "sqlite:///family.db")
    monkeypatch.setenv("KIDPOINTS_SQL_ECHO", "yes")
    monkeypatch.setenv("KIDPOINTS_EVENT_LOG", str(tmp_path / "events.jsonl"))
    monkeypatch.setenv("KIDPOINTS_LEADERBOARD_LIMIT", "5")

    settings = reload_config()

    assert settings.DATABASE_URL == "sqlite:///family.db"
    assert settings.SQL_ECHO is True
    assert settings.EVENT_LOG_PATH == Path(tmp_path / "events.jsonl")
    assert settings.LEADERBOARD_LIMIT == 5


def test_defaults_use_a_local_sqlite_file(monkeypatch, reload_config) -> None:
    for name in (
        "KIDPOINTS_DATABASE_URL",
        "KIDPOINTS_SQLITE",
        "KIDPOINTS_SQL_ECHO",
        "KIDPOINTS_EVENT_LOG",
        "KIDPOINTS_LEADERBOARD_LIMIT",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = reload_config()

    assert settings.DATABASE_URL == "sqlite:///kidpoints.db"
    assert settings.SQL_ECHO is False
    assert settings.EVENT_LOG_PATH is None
    assert settings.LEADERBOARD_LIMIT == 10


def test_malformed_integer_is_reported(monkeypatch, reload_config) -> None:
    monkeypatch.setenv("KIDPOINTS_LEADERBOARD_LIMIT", "lots")
    with pytest.raises(ValueError, match="KIDPOINTS_LEADERBOARD_LIMIT"):
        reload_config()
