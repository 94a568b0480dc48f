# ==============================================================================
# rate_limit.py  –  Process-wide cooldown / pacing state, one per game site
# ------------------------------------------------------------------------------
# One coordinator per site gates every outbound call to that site:
#   • is_limited(now)       → is a cooldown still running?
#   • record_limited(...)   → 429 seen: set cooldown, raise pacing
#   • record_success()      → decay pacing towards its floor
#   • next_delay_ms()       → pause to apply after each call
#
# A cooldown is never cleared early; it expires on its own. Callers wait it
# out and then resume the same work instead of abandoning it.
# ==============================================================================

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Optional

from knightscout.ingestion.models import Site
from knightscout.utils.config import IngestionConfig


@dataclass
class RateLimitState:
    cooldown_until: Optional[float] = None  # epoch seconds
    current_backoff_ms: int = 4_000
    consecutive_limit_hits: int = 0


class RateLimitCoordinator:
    """Shared cooldown and backoff bookkeeping for one upstream API."""

    def __init__(
        self,
        initial_backoff_ms: int = 4_000,
        min_backoff_ms: int = 2_000,
        max_backoff_ms: int = 30_000,
        recovery_backoff_ms: int = 10_000,
        decay: float = 0.9,
        safety_margin_ms: int = 2_000,
    ) -> None:
        self.min_backoff_ms = min_backoff_ms
        self.max_backoff_ms = max_backoff_ms
        self.recovery_backoff_ms = min(recovery_backoff_ms, max_backoff_ms)
        self.decay = decay
        self.safety_margin_ms = safety_margin_ms
        self._lock = threading.Lock()
        self._state = RateLimitState(
            current_backoff_ms=self._bounded(initial_backoff_ms)
        )

    @classmethod
    def from_config(cls, config: IngestionConfig) -> "RateLimitCoordinator":
        return cls(
            initial_backoff_ms=config.initial_backoff_ms,
            min_backoff_ms=config.min_backoff_ms,
            max_backoff_ms=config.max_backoff_ms,
            recovery_backoff_ms=config.recovery_backoff_ms,
            decay=config.backoff_decay,
            safety_margin_ms=config.safety_margin_ms,
        )

    # ------------------------------------------------------------------ queries

    def is_limited(self, now: float) -> bool:
        with self._lock:
            until = self._state.cooldown_until
            return until is not None and now < until

    def remaining_ms(self, now: float) -> int:
        """Milliseconds left in the cooldown (0 when not limited)."""
        with self._lock:
            until = self._state.cooldown_until
            if until is None or now >= until:
                return 0
            return int((until - now) * 1000)

    def next_delay_ms(self) -> int:
        with self._lock:
            return self._state.current_backoff_ms

    def snapshot(self) -> RateLimitState:
        with self._lock:
            return RateLimitState(
                cooldown_until=self._state.cooldown_until,
                current_backoff_ms=self._state.current_backoff_ms,
                consecutive_limit_hits=self._state.consecutive_limit_hits,
            )

    # ---------------------------------------------------------------- mutations

    def record_limited(self, now: float, reset_hint_ms: int) -> float:
        """
        Register an explicit "too many requests" answer.

        Returns the new ``cooldown_until`` (epoch seconds). An existing, later
        cooldown is kept.
        """
        until = now + (max(reset_hint_ms, 0) + self.safety_margin_ms) / 1000
        with self._lock:
            state = self._state
            if state.cooldown_until is None or until > state.cooldown_until:
                state.cooldown_until = until
            state.consecutive_limit_hits += 1
            grown = max(state.current_backoff_ms / self.decay, self.recovery_backoff_ms)
            state.current_backoff_ms = self._bounded(grown)
            return state.cooldown_until

    def record_success(self) -> None:
        with self._lock:
            state = self._state
            state.consecutive_limit_hits = 0
            state.current_backoff_ms = self._bounded(
                state.current_backoff_ms * self.decay
            )

    # ---------------------------------------------------------------- internals

    def _bounded(self, value: float) -> int:
        return int(min(self.max_backoff_ms, max(self.min_backoff_ms, round(value))))


# ------------------------------------------------------------------------------
# Process-wide instances (one per site)
# ------------------------------------------------------------------------------

_COORDINATORS: Dict[Site, RateLimitCoordinator] = {}
_COORDINATOR_LOCK = threading.Lock()


def get_coordinator(
    config: Optional[IngestionConfig] = None, site: Site = Site.LICHESS
) -> RateLimitCoordinator:
    """Return this process's coordinator for `site`, creating it on first use."""
    with _COORDINATOR_LOCK:
        if site not in _COORDINATORS:
            _COORDINATORS[site] = RateLimitCoordinator.from_config(
                config if config is not None else IngestionConfig()
            )
        return _COORDINATORS[site]


def reset_coordinator() -> None:
    """Drop every process-wide coordinator (tests and re-configuration)."""
    with _COORDINATOR_LOCK:
        _COORDINATORS.clear()
