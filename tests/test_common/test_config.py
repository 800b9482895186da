"""Tests for configuration loading and validation."""

import pytest

from screener.app.common.config import Config, get_config, reset_config


def test_defaults(monkeypatch):
    """Unset variables fall back to their defaults."""
    for name in ("HISTORY_DAYS", "BATCH_SIZE", "HISTORY_INTERVAL", "INSERT_BATCH_SIZE"):
        monkeypatch.delenv(name, raising=False)

    config = Config()

    assert config.history_days == 90
    assert config.batch_size == 50
    assert config.history_interval == "5minute"
    assert config.insert_batch_size == 500
    assert config.groq_model == "llama-3.1-70b-versatile"


def test_env_overrides(monkeypatch):
    """Environment variables override defaults and are type-converted."""
    monkeypatch.setenv("HISTORY_DAYS", "30")
    monkeypatch.setenv("DELAY_BETWEEN_BATCHES_SEC", "1.5")

    config = Config()

    assert config.history_days == 30
    assert config.delay_between_batches_sec == 1.5


def test_get_config_is_cached():
    """get_config returns the same instance until reset."""
    first = get_config()
    assert get_config() is first
    reset_config()
    assert get_config() is not first


@pytest.mark.parametrize(
    "name,value",
    [
        ("BATCH_SIZE", "0"),
        ("INSERT_BATCH_SIZE", "-1"),
        ("HISTORY_DAYS", "0"),
        ("MAX_REQUESTS_PER_SECOND", "0"),
        ("DELAY_BETWEEN_BATCHES_SEC", "-0.5"),
    ],
)
def test_validate_rejects_bad_values(monkeypatch, name, value):
    """Non-positive sizes and negative delays are rejected."""
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        get_config()
