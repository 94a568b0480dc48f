# ==============================================================================
# config.py  –  Tunables of the game-acquisition pipeline
# ------------------------------------------------------------------------------
# Every knob is read from the environment (optionally seeded from
# config/.env.local). `IngestionConfig.validate()` fails fast on values that
# would make the pipeline misbehave, before any network call is made.
# ==============================================================================

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Final, Tuple

from dotenv import load_dotenv

ENV_FILE: Final[Path] = Path(__file__).resolve().parents[2] / "config" / ".env.local"

DEFAULT_CATEGORIES: Final[Tuple[str, ...]] = ("bullet", "blitz", "rapid", "classical")
DATA_RICH_EPOCH: Final[date] = date(2018, 1, 1)
KNOWN_SOURCES: Final[Tuple[str, ...]] = ("lichess", "chesscom")


class ConfigError(ValueError):
    """Raised at startup when the pipeline configuration is unusable."""


# ------------------------------------------------------------------------------
# Env parsing helpers
# ------------------------------------------------------------------------------


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


def _env_date(name: str, default: date) -> date:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return date.fromisoformat(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be an ISO date, got {raw!r}") from exc


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


# ------------------------------------------------------------------------------
# Config object
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class IngestionConfig:
    # Batch planner
    window_step_days: int = 21
    window_span_days: int = 14
    base_window_days: int = 0
    window_floor: date = DATA_RICH_EPOCH
    rotation_prime: int = 13
    players_per_batch: int = 8
    per_player_cap: int = 25

    # Rate-limit coordinator (milliseconds)
    initial_backoff_ms: int = 4_000
    min_backoff_ms: int = 2_000
    max_backoff_ms: int = 30_000
    recovery_backoff_ms: int = 10_000
    backoff_decay: float = 0.9
    safety_margin_ms: int = 2_000
    default_reset_ms: int = 60_000
    max_limit_retries: int = 5

    # Orchestrator / eligibility
    empty_batch_ceiling: int = 6
    max_batches: int = 0  # 0 → unlimited
    min_plies: int = 20
    min_eval_depth: int = 0

    # Player pool
    pool_top_n: int = 50
    pool_categories: Tuple[str, ...] = field(default=DEFAULT_CATEGORIES)
    pool_cache_seconds: int = 30 * 60
    pool_shuffle: bool = False

    # Game sites / HTTP / enrichment
    sources: Tuple[str, ...] = ("lichess",)
    request_timeout: int = 30
    cloud_eval: bool = False

    @classmethod
    def from_env(cls, env_file: Path = ENV_FILE) -> "IngestionConfig":
        """Build a validated config from environment variables."""
        load_dotenv(env_file, override=False)
        config = cls(
            window_step_days=_env_int("WINDOW_STEP_DAYS", cls.window_step_days),
            window_span_days=_env_int("WINDOW_SPAN_DAYS", cls.window_span_days),
            base_window_days=_env_int("BASE_WINDOW_DAYS", cls.base_window_days),
            window_floor=_env_date("WINDOW_FLOOR", cls.window_floor),
            rotation_prime=_env_int("ROTATION_PRIME", cls.rotation_prime),
            players_per_batch=_env_int("PLAYERS_PER_BATCH", cls.players_per_batch),
            per_player_cap=_env_int("PER_PLAYER_CAP", cls.per_player_cap),
            initial_backoff_ms=_env_int("INITIAL_BACKOFF_MS", cls.initial_backoff_ms),
            min_backoff_ms=_env_int("MIN_BACKOFF_MS", cls.min_backoff_ms),
            max_backoff_ms=_env_int("MAX_BACKOFF_MS", cls.max_backoff_ms),
            recovery_backoff_ms=_env_int(
                "RECOVERY_BACKOFF_MS", cls.recovery_backoff_ms
            ),
            backoff_decay=_env_float("BACKOFF_DECAY", cls.backoff_decay),
            safety_margin_ms=_env_int("SAFETY_MARGIN_MS", cls.safety_margin_ms),
            default_reset_ms=_env_int("DEFAULT_RESET_MS", cls.default_reset_ms),
            max_limit_retries=_env_int("MAX_LIMIT_RETRIES", cls.max_limit_retries),
            empty_batch_ceiling=_env_int(
                "EMPTY_BATCH_CEILING", cls.empty_batch_ceiling
            ),
            max_batches=_env_int("MAX_BATCHES", cls.max_batches),
            min_plies=_env_int("MIN_PLIES", cls.min_plies),
            min_eval_depth=_env_int("MIN_EVAL_DEPTH", cls.min_eval_depth),
            pool_top_n=_env_int("POOL_TOP_N", cls.pool_top_n),
            pool_categories=_env_list("POOL_CATEGORIES", DEFAULT_CATEGORIES),
            pool_cache_seconds=_env_int("POOL_CACHE_SECONDS", cls.pool_cache_seconds),
            pool_shuffle=_env_bool("POOL_SHUFFLE", cls.pool_shuffle),
            sources=tuple(
                source.lower() for source in _env_list("SOURCES", cls.sources)
            ),
            request_timeout=_env_int("REQUEST_TIMEOUT", cls.request_timeout),
            cloud_eval=_env_bool("CLOUD_EVAL", cls.cloud_eval),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Raise `ConfigError` on the first unusable value."""
        positive = {
            "window_step_days": self.window_step_days,
            "window_span_days": self.window_span_days,
            "rotation_prime": self.rotation_prime,
            "players_per_batch": self.players_per_batch,
            "per_player_cap": self.per_player_cap,
            "initial_backoff_ms": self.initial_backoff_ms,
            "min_backoff_ms": self.min_backoff_ms,
            "max_backoff_ms": self.max_backoff_ms,
            "default_reset_ms": self.default_reset_ms,
            "max_limit_retries": self.max_limit_retries,
            "empty_batch_ceiling": self.empty_batch_ceiling,
            "min_plies": self.min_plies,
            "pool_top_n": self.pool_top_n,
            "request_timeout": self.request_timeout,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigError(f"{name} must be positive, got {value}")

        non_negative = {
            "base_window_days": self.base_window_days,
            "safety_margin_ms": self.safety_margin_ms,
            "max_batches": self.max_batches,
            "min_eval_depth": self.min_eval_depth,
            "pool_cache_seconds": self.pool_cache_seconds,
        }
        for name, value in non_negative.items():
            if value < 0:
                raise ConfigError(f"{name} must not be negative, got {value}")

        if self.window_step_days <= self.window_span_days:
            raise ConfigError(
                "window_step_days must exceed window_span_days "
                f"({self.window_step_days} <= {self.window_span_days}); "
                "consecutive windows would overlap"
            )
        if not 0 < self.backoff_decay < 1:
            raise ConfigError(
                f"backoff_decay must be in (0, 1), got {self.backoff_decay}"
            )
        if self.min_backoff_ms > self.max_backoff_ms:
            raise ConfigError("min_backoff_ms must not exceed max_backoff_ms")
        if not self.pool_categories:
            raise ConfigError("pool_categories must name at least one category")
        if not self.sources:
            raise ConfigError("sources must name at least one game site")
        unknown = [source for source in self.sources if source not in KNOWN_SOURCES]
        if unknown:
            raise ConfigError(
                f"unknown source(s) {', '.join(unknown)}; "
                f"expected one of {', '.join(KNOWN_SOURCES)}"
            )
