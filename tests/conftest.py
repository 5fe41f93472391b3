"""Shared fixtures for the habit-rank test suite."""

from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Settable UTC clock; starts on Monday 2026-01-05 at noon."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.habit-rank/config.json."""
    monkeypatch.setattr("habit_rank.config.DEFAULT_CONFIG_PATH", tmp_path / "config.json")
