# ==============================================================================
# chesscom_client.py  –  requests wrapper around the Chess.com published-data
#                        API monthly game archives
# ------------------------------------------------------------------------------
#   • GET /pub/player/{handle}/games/{YYYY}/{MM}   one month of finished games
#
# Archives are per calendar month, so a window is served by walking its months
# newest first and filtering on `end_time`. A 404 means "no archive for that
# month" and is skipped. 429 and other failures map onto the same
# `RateLimitedError` / `UpstreamError` pair the Lichess client raises, so the
# fetch executor treats both sites alike.
# ==============================================================================

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import requests

from knightscout.ingestion.lichess_client import (
    PERF_TYPES,
    USER_AGENT,
    RateLimitedError,
    UpstreamError,
    parse_retry_after,
)
from knightscout.ingestion.models import TimeWindow
from knightscout.utils.logging_utils import setup_logger

LOGGER = setup_logger("chesscom_client")

BASE_URL = "https://api.chess.com"

# Chess.com `time_class` → Lichess-style speed category
TIME_CLASS_TO_SPEED = {
    "bullet": "bullet",
    "blitz": "blitz",
    "rapid": "rapid",
    "daily": "classical",
}


def months_between(start: date, end: date) -> Iterator[Tuple[int, int]]:
    """(year, month) pairs covering [start, end], newest first."""
    year, month = end.year, end.month
    while (year, month) >= (start.year, start.month):
        yield year, month
        year, month = (year, month - 1) if month > 1 else (year - 1, 12)


class ChessComClient:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        default_reset_ms: int = 60_000,
        base_url: str = BASE_URL,
    ) -> None:
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self.default_reset_ms = default_reset_ms
        self.base_url = base_url.rstrip("/")

        self.session.headers.update(
            {"User-Agent": USER_AGENT, "Accept": "application/json"}
        )

    def fetch_user_games(
        self,
        handle: str,
        window: TimeWindow,
        cap: int,
        perf_types: Iterable[str] = PERF_TYPES,
    ) -> List[Dict[str, Any]]:
        """Most recent rated games of `handle` that ended inside `window`."""
        speeds = set(perf_types)
        games: List[Dict[str, Any]] = []

        for year, month in months_between(window.start, window.end):
            archive = self._fetch_month(handle, year, month)
            for game in archive:
                if self._in_window(game, window, speeds):
                    games.append(game)
            if len(games) >= cap:
                break

        games.sort(key=lambda game: game.get("end_time") or 0, reverse=True)
        return games[:cap]

    # ---------------------------------------------------------------- helpers

    def _fetch_month(self, handle: str, year: int, month: int) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/pub/player/{handle.lower()}/games/{year}/{month:02d}"
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise UpstreamError(f"chesscom-games request failed: {exc}") from exc

        if resp.status_code == 429:
            reset_ms = parse_retry_after(
                resp.headers.get("Retry-After"), self.default_reset_ms
            )
            raise RateLimitedError(reset_ms, "chesscom-games")
        if resp.status_code == 404:
            LOGGER.debug("No archive for '%s' in %d/%02d", handle, year, month)
            return []
        if not resp.ok:
            raise UpstreamError(
                f"Chess.com returned {resp.status_code} for games of '{handle}'"
            )

        try:
            games = resp.json()["games"]
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamError(f"Malformed archive for '{handle}'") from exc
        if not isinstance(games, list):
            raise UpstreamError(f"Malformed archive for '{handle}'")
        return [game for game in games if isinstance(game, dict)]

    @staticmethod
    def _in_window(game: Dict[str, Any], window: TimeWindow, speeds: set) -> bool:
        end_time = game.get("end_time")
        if not isinstance(end_time, (int, float)) or isinstance(end_time, bool):
            return False
        if not window.since_ms <= end_time * 1000 < window.until_ms:
            return False
        if not game.get("rated", False):
            return False
        return TIME_CLASS_TO_SPEED.get(game.get("time_class", "")) in speeds
