"""Shared fixtures: every test gets its own config file and SQLite database under tmp_path."""
from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

import config
from config import AppConfig
from database import DEFAULT_PROFILE_ID, init_database


@pytest.fixture
def app_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.setattr(config, "CONFIG_PATH", tmp_path / "config.json")
    cfg = AppConfig(database_path=str(tmp_path / "taskloop-test.db"), user_timezone="UTC")
    cfg.save()
    return cfg


@pytest.fixture
def db(app_config: AppConfig) -> Path:
    """Initialized database; yields its path."""
    return init_database()


@pytest.fixture
def profile_id(db: Path) -> str:
    return DEFAULT_PROFILE_ID


@pytest.fixture
def make_task(profile_id: str):
    """Factory for tasks in the default profile."""
    import task_service

    def _make(title: str = "Water plants", start: date = date(2024, 3, 1), **kwargs):
        return task_service.create_task(profile_id, title, start, **kwargs)

    return _make
