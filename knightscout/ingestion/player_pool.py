# ==============================================================================
# player_pool.py  –  Population of players the pipeline samples games from
# ------------------------------------------------------------------------------
# Workflow of `get_pool()`:
#   1. Live leaderboard (top N per category, merged across categories),
#      served from a 30 min cache when the caller wants the sorted order
#   2. Any failure → empty live list, logged, never raised
#   3. Union with the bundled static list(s), live entries win on handle
#      clashes; the Chess.com list only joins when that site is enabled
#   4. Uniform reshuffle, or rating-descending order when `sorted_order=True`
# ==============================================================================

from __future__ import annotations

import random
import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from knightscout.ingestion.lichess_client import (
    LichessClient,
    RateLimitedError,
    UpstreamError,
)
from knightscout.ingestion.models import PlayerEntry, PoolSource, Site
from knightscout.ingestion.rate_limit import RateLimitCoordinator
from knightscout.utils.config import DEFAULT_CATEGORIES
from knightscout.utils.logging_utils import setup_logger
from knightscout.utils.telemetry import POOL_FALLBACKS, RATE_LIMIT_HITS

LOGGER = setup_logger("player_pool")

# (handle, title, rating, category) – used when the leaderboard is unreachable
_LICHESS_PLAYERS: Tuple[Tuple[str, Optional[str], int, str], ...] = (
    ("DrNykterstein", "GM", 3200, "bullet"),
    ("nihalsarin2004", "GM", 3150, "bullet"),
    ("Fins", "GM", 3050, "bullet"),
    ("penguingm1", "GM", 3100, "bullet"),
    ("lance5500", "IM", 3000, "bullet"),
    ("Firouzja2003", "GM", 3050, "blitz"),
    ("GMWSO", "GM", 3000, "blitz"),
    ("opperwezen", "GM", 2950, "blitz"),
    ("Zhigalko_Sergei", "GM", 2950, "blitz"),
    ("LyonBeast", "GM", 2950, "blitz"),
    ("Polish_fighter3000", "GM", 2900, "blitz"),
    ("Msb2", "GM", 2900, "blitz"),
    ("DanielNaroditsky", "GM", 2900, "blitz"),
    ("EricRosen", "IM", 2700, "blitz"),
    ("chessbrah", "GM", 2650, "blitz"),
    ("BogdanDeac", "GM", 2850, "blitz"),
    ("Arjun_Erigaisi", "GM", 2950, "blitz"),
    ("RaunakSadhwani2005", "GM", 2850, "blitz"),
    ("TemurKuybokarov", "GM", 2800, "blitz"),
    ("ChessNetwork", "NM", 2500, "rapid"),
    ("GM_Srinath", "GM", 2750, "rapid"),
    ("Oleksandr_Bortnyk", "GM", 2950, "bullet"),
    ("FabianoCaruana", "GM", 2800, "rapid"),
    ("LevonAronian", "GM", 2800, "rapid"),
    ("AnishGiri", "GM", 2800, "rapid"),
    ("VladimirKramnik", "GM", 2750, "rapid"),
    ("duhless", "GM", 2900, "blitz"),
    ("howitzer14", "GM", 2750, "blitz"),
    ("rajabboy", "GM", 2800, "blitz"),
    ("Jospem", "GM", 2850, "blitz"),
    ("Alireza2003", "GM", 3000, "bullet"),
    ("Navaraok", "GM", 2800, "rapid"),
    ("Nodirbek2004", "GM", 2850, "rapid"),
    ("VincentKeymer2004", "GM", 2750, "rapid"),
    ("pengcheng2004", "GM", 2700, "rapid"),
    ("Svidler", "GM", 2750, "rapid"),
    ("taniasachdev", "IM", 2450, "rapid"),
    ("JW_Praggnanandhaa", "GM", 2850, "blitz"),
    ("nepoking", "GM", 2850, "blitz"),
    ("BakhtiyarIbadov", "IM", 2650, "blitz"),
    ("Andrej_Esipenko", "GM", 2800, "blitz"),
    ("DanielFridman", "GM", 2650, "rapid"),
    ("kirthibhat", "FM", 2450, "rapid"),
    ("alexandrpredke", "GM", 2800, "blitz"),
    ("der_kaufmann", "IM", 2600, "blitz"),
    ("Fenrisulfur", "GM", 2700, "blitz"),
    ("KontraJaKO", "GM", 2650, "blitz"),
    ("SindarovGM", "GM", 2850, "blitz"),
    ("tornike_sanikidze", "GM", 2650, "blitz"),
    ("AidenCohen", "FM", 2500, "blitz"),
    ("GenghisConn", "FM", 2550, "blitz"),
    ("Chess4ever", None, 2400, "classical"),
)


# Chess.com accounts; that site has no leaderboard call here, so this list is
# its whole population
_CHESSCOM_PLAYERS: Tuple[Tuple[str, Optional[str], int, str], ...] = (
    ("Hikaru", "GM", 3250, "blitz"),
    ("MagnusCarlsen", "GM", 3300, "blitz"),
    ("nihalsarin", "GM", 3150, "bullet"),
    ("FabianoCaruana", "GM", 2950, "blitz"),
    ("LevonAronian", "GM", 2950, "blitz"),
    ("Firouzja2003", "GM", 3100, "blitz"),
    ("DanielNaroditsky", "GM", 3100, "blitz"),
    ("GothamChess", "IM", 2650, "blitz"),
    ("AnishGiri", "GM", 2950, "blitz"),
    ("GMWSO", "GM", 3000, "blitz"),
    ("rpragchess", "GM", 2950, "blitz"),
    ("DominguezPerez", "GM", 2900, "blitz"),
    ("Grischuk", "GM", 2900, "blitz"),
    ("lachesisQ", "GM", 3000, "blitz"),
    ("BogdanDeac", "GM", 2850, "blitz"),
    ("RichardRapport", "GM", 2850, "rapid"),
    ("VladimirFedoseev", "GM", 2850, "blitz"),
    ("Duda", "GM", 2900, "rapid"),
    ("VladimirKramnik", "GM", 2800, "rapid"),
    ("SergeyKarjakin", "GM", 2850, "blitz"),
    ("HansNiemann", "GM", 2900, "blitz"),
    ("EricRosen", "IM", 2600, "blitz"),
    ("BotezLive", "WFM", 2200, "blitz"),
)

_STATIC_PLAYERS = {
    Site.LICHESS: _LICHESS_PLAYERS,
    Site.CHESSCOM: _CHESSCOM_PLAYERS,
}


def static_player_list(sites: Iterable[Site] = (Site.LICHESS,)) -> List[PlayerEntry]:
    """The bundled fallback population of the given sites."""
    return [
        PlayerEntry(
            handle=handle,
            title=title,
            rating=rating,
            category=category,
            source=PoolSource.FALLBACK,
            site=site,
        )
        for site in sites
        for handle, title, rating, category in _STATIC_PLAYERS[site]
    ]


def merge_pools(*pools: Sequence[PlayerEntry]) -> List[PlayerEntry]:
    """Union of `pools` deduplicated by handle; earlier pools take precedence."""
    merged: Dict[str, PlayerEntry] = {}
    for pool in pools:
        for entry in pool:
            merged.setdefault(entry.key, entry)
    return list(merged.values())


class PlayerPoolProvider:
    def __init__(
        self,
        client: Optional[LichessClient],
        fallback: Optional[Sequence[PlayerEntry]] = None,
        categories: Sequence[str] = DEFAULT_CATEGORIES,
        top_n: int = 50,
        cache_seconds: int = 30 * 60,
        coordinator: Optional[RateLimitCoordinator] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.client = client
        self.fallback = list(fallback) if fallback is not None else static_player_list()
        self.categories = tuple(categories)
        self.top_n = top_n
        self.cache_seconds = cache_seconds
        self.coordinator = coordinator
        self.clock = clock
        self.rng = rng if rng is not None else random.Random()
        self._cache: Optional[Tuple[float, List[PlayerEntry]]] = None

    # ------------------------------------------------------------------ public

    def get_pool(self, sorted_order: bool = False) -> List[PlayerEntry]:
        """Live ∪ static players, shuffled unless `sorted_order` is requested."""
        live = self._cached_live() if sorted_order else self._fetch_live()
        pool = merge_pools(live, self.fallback)

        if sorted_order:
            pool.sort(key=lambda entry: (-entry.rating, entry.key))
        else:
            self.rng.shuffle(pool)

        LOGGER.info(
            "Player pool ready – %d players (%d live, %d fallback)",
            len(pool),
            sum(1 for entry in pool if entry.source is PoolSource.LIVE),
            sum(1 for entry in pool if entry.source is PoolSource.FALLBACK),
        )
        return pool

    # ---------------------------------------------------------------- helpers

    def _cached_live(self) -> List[PlayerEntry]:
        now = self.clock()
        if self._cache is not None:
            fetched_at, entries = self._cache
            if now - fetched_at < self.cache_seconds:
                return list(entries)

        entries = self._fetch_live()
        if entries:
            self._cache = (now, list(entries))
        return entries

    def _fetch_live(self) -> List[PlayerEntry]:
        if self.client is None:
            return []
        if self.coordinator is not None and self.coordinator.is_limited(self.clock()):
            LOGGER.warning("Leaderboard skipped – cooldown active, using static list")
            POOL_FALLBACKS.inc()
            return []

        by_handle: Dict[str, PlayerEntry] = {}
        try:
            for category in self.categories:
                for user in self.client.fetch_leaderboard(category, self.top_n):
                    entry = self._to_entry(user, category)
                    if entry is None:
                        continue
                    current = by_handle.get(entry.key)
                    if current is None or entry.rating > current.rating:
                        by_handle[entry.key] = entry
        except RateLimitedError as exc:
            RATE_LIMIT_HITS.labels(endpoint="leaderboard").inc()
            if self.coordinator is not None:
                self.coordinator.record_limited(self.clock(), exc.reset_ms)
            LOGGER.warning("Leaderboard rate limited – using static list")
            POOL_FALLBACKS.inc()
            return []
        except (UpstreamError, ValueError, TypeError, AttributeError) as exc:
            LOGGER.warning("Leaderboard unavailable (%s) – using static list", exc)
            POOL_FALLBACKS.inc()
            return []

        if not by_handle:
            LOGGER.warning("Leaderboard returned no players – using static list")
            POOL_FALLBACKS.inc()
        return list(by_handle.values())

    @staticmethod
    def _to_entry(user: dict, category: str) -> Optional[PlayerEntry]:
        handle = user.get("username") or user.get("id")
        if not handle:
            return None
        perf = (user.get("perfs") or {}).get(category) or {}
        rating = perf.get("rating")
        if not isinstance(rating, int):
            return None
        return PlayerEntry(
            handle=handle,
            title=user.get("title"),
            rating=rating,
            category=category,
            source=PoolSource.LIVE,
        )
