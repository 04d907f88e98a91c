"""Tests for environment-driven settings."""

from datetime import time

from install_scheduler.config import get_settings


def test_default_settings(monkeypatch):
    for name in ("SCHEDULER_CLUSTER_RADIUS_MILES", "SCHEDULER_PAIRING_THRESHOLD", "SCHEDULER_API_KEYS"):
        monkeypatch.delenv(name, raising=False)

    settings = get_settings()

    assert settings["cluster_radius_miles"] == 25.0
    assert settings["min_jobs_per_cluster"] == 2
    assert settings["pairing_threshold"] == 60.0
    assert settings["workday_start"] == time(8, 0)
    assert settings["workday_end"] == time(17, 0)
    assert settings["route_time_limit_seconds"] == 0
    assert settings["api_keys"] == []


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("SCHEDULER_CLUSTER_RADIUS_MILES", "10.5")
    monkeypatch.setenv("SCHEDULER_API_KEYS", "key-one,,key-two")
    monkeypatch.setenv("SCHEDULER_WORKDAY_END", "18:45")

    settings = get_settings()

    assert settings["cluster_radius_miles"] == 10.5
    assert settings["api_keys"] == ["key-one", "key-two"]
    assert settings["workday_end"] == time(18, 45)


def test_settings_are_cached(monkeypatch):
    first = get_settings()
    monkeypatch.setenv("SCHEDULER_PAIRING_THRESHOLD", "99")

    assert get_settings() is first
    get_settings.cache_clear()
    assert get_settings()["pairing_threshold"] == 99.0
