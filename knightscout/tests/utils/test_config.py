# ==============================================================================
# test_config.py  –  Environment parsing and fail-fast validation
# ==============================================================================

import os
from datetime import date
from unittest.mock import patch

import pytest

from knightscout.utils.config import ConfigError, IngestionConfig


@pytest.fixture
def no_env_file(tmp_path):
    return tmp_path / "missing.env"


def test_defaults_are_valid():
    config = IngestionConfig()
    config.validate()

    assert config.window_step_days == 21
    assert config.window_span_days == 14
    assert config.rotation_prime == 13
    assert config.players_per_batch == 8
    assert config.per_player_cap == 25
    assert config.empty_batch_ceiling == 6
    assert config.min_plies == 20
    assert config.window_floor == date(2018, 1, 1)
    assert config.sources == ("lichess",)


def test_from_env_overrides(monkeypatch, no_env_file):
    monkeypatch.setenv("WINDOW_STEP_DAYS", "30")
    monkeypatch.setenv("PLAYERS_PER_BATCH", "4")
    monkeypatch.setenv("BACKOFF_DECAY", "0.5")
    monkeypatch.setenv("WINDOW_FLOOR", "2020-06-01")
    monkeypatch.setenv("POOL_CATEGORIES", "blitz, rapid")
    monkeypatch.setenv("CLOUD_EVAL", "yes")
    monkeypatch.setenv("SOURCES", "Lichess, chesscom")

    config = IngestionConfig.from_env(no_env_file)

    assert config.window_step_days == 30
    assert config.players_per_batch == 4
    assert config.backoff_decay == 0.5
    assert config.window_floor == date(2020, 6, 1)
    assert config.pool_categories == ("blitz", "rapid")
    assert config.cloud_eval is True
    assert config.sources == ("lichess", "chesscom")


def test_from_env_reads_dotenv_file(tmp_path):
    env_file = tmp_path / ".env.local"
    env_file.write_text("MIN_PLIES=30\n")

    with patch.dict(os.environ):
        os.environ.pop("MIN_PLIES", None)
        assert IngestionConfig.from_env(env_file).min_plies == 30


@pytest.mark.parametrize(
    "name, value",
    [
        ("WINDOW_STEP_DAYS", "three"),
        ("BACKOFF_DECAY", "fast"),
        ("WINDOW_FLOOR", "01/01/2018"),
    ],
)
def test_unparseable_values(monkeypatch, no_env_file, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigError):
        IngestionConfig.from_env(no_env_file)


@pytest.mark.parametrize(
    "overrides",
    [
        {"window_step_days": 14, "window_span_days": 14},
        {"players_per_batch": 0},
        {"per_player_cap": -1},
        {"empty_batch_ceiling": 0},
        {"backoff_decay": 1.0},
        {"backoff_decay": 0.0},
        {"min_backoff_ms": 40_000, "max_backoff_ms": 30_000},
        {"base_window_days": -1},
        {"pool_categories": ()},
        {"sources": ()},
        {"sources": ("lichess", "fics")},
    ],
)
def test_validate_rejects(overrides):
    with pytest.raises(ConfigError):
        IngestionConfig(**overrides).validate()


def test_config_error_is_value_error():
    assert issubclass(ConfigError, ValueError)
