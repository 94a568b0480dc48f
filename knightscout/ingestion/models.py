# ==============================================================================
# models.py  –  Value objects shared by the acquisition pipeline
# ------------------------------------------------------------------------------
#   • SourceItem   – one fetched game (immutable)
#   • Evaluation   – optional external position evaluation
#   • PlayerEntry  – one sampling unit; equality by site + handle
#   • TimeWindow   – calendar-day range [start, end] queried for a batch (both
#                    days included)
#   • BatchPlan    – per-batch output of the planner
# ==============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple


class EnrichmentMode(str, Enum):
    """How downstream consumers should treat the game's evaluation."""

    EXTERNAL = "external"  # trusted evaluation attached
    NEUTRAL = "neutral"  # no usable evaluation; consumer runs its own analysis


class Site(str, Enum):
    """Game server a player account and its games live on."""

    LICHESS = "lichess"
    CHESSCOM = "chesscom"


class PoolSource(str, Enum):
    LIVE = "live"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Evaluation:
    """Engine evaluation from white's point of view."""

    cp: Optional[int] = None
    mate: Optional[int] = None
    depth: Optional[int] = None
    source: str = "lichess-analysis"


@dataclass(frozen=True)
class SourceItem:
    game_id: str
    created_at: datetime
    ply_count: int
    evaluation: Optional[Evaluation] = None
    enrichment_mode: Optional[EnrichmentMode] = None

    white: str = ""
    black: str = ""
    white_rating: Optional[int] = None
    black_rating: Optional[int] = None
    speed: str = ""
    rated: bool = True
    variant: str = "standard"
    status: str = ""
    winner: Optional[str] = None
    opening_eco: str = ""
    opening_name: str = ""
    moves: str = ""
    last_fen: str = ""
    fetched_for: str = ""
    site: Site = Site.LICHESS

    @property
    def result(self) -> str:
        if self.winner == "white":
            return "1-0"
        if self.winner == "black":
            return "0-1"
        return "1/2-1/2"

    def to_record(self) -> dict:
        """Flat JSON-ready mapping for downstream consumers."""
        evaluation = self.evaluation
        return {
            "id_game": self.game_id,
            "tm_created": self.created_at.isoformat(),
            "n_plies": self.ply_count,
            "val_enrichment_mode": (
                self.enrichment_mode.value if self.enrichment_mode else None
            ),
            "val_eval_cp": evaluation.cp if evaluation else None,
            "val_eval_mate": evaluation.mate if evaluation else None,
            "val_eval_depth": evaluation.depth if evaluation else None,
            "val_eval_source": evaluation.source if evaluation else None,
            "id_user_white": self.white,
            "id_user_black": self.black,
            "val_elo_white": self.white_rating,
            "val_elo_black": self.black_rating,
            "val_speed": self.speed,
            "ind_rated": self.rated,
            "val_variant": self.variant,
            "val_status": self.status,
            "val_result": self.result,
            "val_opening_eco_code": self.opening_eco,
            "val_opening_name": self.opening_name,
            "val_moves": self.moves,
            "val_last_fen": self.last_fen,
            "id_user_fetched_for": self.fetched_for,
            "val_site": self.site.value,
        }


@dataclass(frozen=True, eq=False)
class PlayerEntry:
    """
    A player to sample games from.

    Equality and hashing use the site plus the case-folded handle, so the
    same account surfaced by two leaderboards (or by the static list)
    collapses to one entry, while namesakes on different sites stay apart.
    """

    handle: str
    rating: int
    category: str
    title: Optional[str] = None
    source: PoolSource = PoolSource.FALLBACK
    site: Site = Site.LICHESS

    @property
    def key(self) -> str:
        return f"{self.site.value}:{self.handle.lower()}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PlayerEntry):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)


@dataclass(frozen=True)
class TimeWindow:
    start: date
    end: date  # inclusive: games played on `end` are part of the window

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start <= other.end and other.start <= self.end

    @property
    def since_ms(self) -> int:
        return _epoch_ms(self.start)

    @property
    def until_ms(self) -> int:
        """Midnight UTC after `end`, exclusive upper bound for the API."""
        return _epoch_ms(self.end + timedelta(days=1))


@dataclass(frozen=True)
class BatchPlan:
    batch_index: int
    window: TimeWindow
    players: Tuple[PlayerEntry, ...]
    per_player_cap: int
    offset: int = 0
    clamped: bool = field(default=False)


def _epoch_ms(day: date) -> int:
    return int(datetime.combine(day, time.min, tzinfo=timezone.utc).timestamp() * 1000)
