# ==============================================================================
# batch_planner.py  –  Which time window and which players a batch explores
# ------------------------------------------------------------------------------
# Time window (batch index i ≥ 1):
#     end   = today - (base + (i - 1) * step)
#     start = end - span
#   Both dates are included, so batch 1 covers today's games. step > span,
#   so windows of different batches never share a day and each new batch
#   reaches further back. A window that would start before the floor
#   (data-rich epoch) is pinned to [floor, floor + span].
#
# Player subset:
#     offset = (i * rotation_prime) mod pool_size
#   then `players_per_batch` consecutive entries from offset, wrapping around.
# ==============================================================================

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from knightscout.ingestion.models import BatchPlan, PlayerEntry, TimeWindow
from knightscout.utils.config import DATA_RICH_EPOCH, ConfigError, IngestionConfig


class BatchPlanner:
    def __init__(
        self,
        window_step_days: int = 21,
        window_span_days: int = 14,
        base_window_days: int = 0,
        window_floor: date = DATA_RICH_EPOCH,
        rotation_prime: int = 13,
        players_per_batch: int = 8,
        per_player_cap: int = 25,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        if window_step_days <= window_span_days:
            raise ConfigError("window step must exceed window span")
        self.window_step_days = window_step_days
        self.window_span_days = window_span_days
        self.base_window_days = base_window_days
        self.window_floor = window_floor
        self.rotation_prime = rotation_prime
        self.players_per_batch = players_per_batch
        self.per_player_cap = per_player_cap
        self._today = today or _utc_today

    @classmethod
    def from_config(
        cls, config: IngestionConfig, today: Optional[Callable[[], date]] = None
    ) -> "BatchPlanner":
        return cls(
            window_step_days=config.window_step_days,
            window_span_days=config.window_span_days,
            base_window_days=config.base_window_days,
            window_floor=config.window_floor,
            rotation_prime=config.rotation_prime,
            players_per_batch=config.players_per_batch,
            per_player_cap=config.per_player_cap,
            today=today,
        )

    def window_for(self, batch_index: int, today: Optional[date] = None):
        """Return (window, clamped) for `batch_index`."""
        if batch_index < 1:
            raise ValueError(f"batch index starts at 1, got {batch_index}")
        today = today or self._today()

        days_back = self.base_window_days + (batch_index - 1) * self.window_step_days
        end = today - timedelta(days=days_back)
        start = end - timedelta(days=self.window_span_days)

        if start < self.window_floor:
            start = self.window_floor
            return TimeWindow(start, start + timedelta(days=self.window_span_days)), True
        return TimeWindow(start, end), False

    def offset_for(self, batch_index: int, pool_size: int) -> int:
        if pool_size <= 0:
            raise ConfigError("player pool is empty")
        return (batch_index * self.rotation_prime) % pool_size

    def plan(
        self,
        batch_index: int,
        pool: Sequence[PlayerEntry],
        today: Optional[date] = None,
    ) -> BatchPlan:
        window, clamped = self.window_for(batch_index, today)
        offset = self.offset_for(batch_index, len(pool))

        size = min(self.players_per_batch, len(pool))
        players = tuple(pool[(offset + k) % len(pool)] for k in range(size))

        return BatchPlan(
            batch_index=batch_index,
            window=window,
            players=players,
            per_player_cap=self.per_player_cap,
            offset=offset,
            clamped=clamped,
        )

def _utc_today() -> date:
    return datetime.now(timezone.utc).date()

