# ==============================================================================
# lichess_client.py  –  Thin requests wrapper around the Lichess endpoints used
#                       by the acquisition pipeline
# ------------------------------------------------------------------------------
#   • GET /api/games/user/{handle}   NDJSON game history in a time window
#   • GET /api/player/top/{n}/{perf} leaderboard for one category
#   • GET /api/cloud-eval            cached cloud evaluation for a FEN
#
# A 429 becomes `RateLimitedError` (with the reset hint); every other failure
# becomes `UpstreamError`. The client keeps no rate-limit state of its own.
# ==============================================================================

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional

import requests

from knightscout.ingestion.models import TimeWindow
from knightscout.utils.db_utils import get_lichess_token
from knightscout.utils.logging_utils import setup_logger

LOGGER = setup_logger("lichess_client")

BASE_URL = "https://lichess.org"
USER_AGENT = "knightscout/0.1 (game acquisition)"
PERF_TYPES = ("bullet", "blitz", "rapid", "classical")


class UpstreamError(RuntimeError):
    """Transient upstream failure: network, timeout, bad status, bad payload."""


class RateLimitedError(RuntimeError):
    """The server answered 429; `reset_ms` is how long it asked us to back off."""

    def __init__(self, reset_ms: int, endpoint: str = "") -> None:
        super().__init__(f"rate limited on {endpoint or 'lichess'} for {reset_ms} ms")
        self.reset_ms = reset_ms
        self.endpoint = endpoint


def parse_retry_after(value: Optional[str], default_ms: int) -> int:
    """Retry-After seconds → milliseconds, `default_ms` when absent/invalid."""
    if value is None:
        return default_ms
    try:
        seconds = float(value.strip())
    except (AttributeError, ValueError):
        return default_ms
    return int(seconds * 1000) if seconds >= 0 else default_ms


class LichessClient:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        token: Optional[str] = None,
        timeout: int = 30,
        default_reset_ms: int = 60_000,
        base_url: str = BASE_URL,
    ) -> None:
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self.default_reset_ms = default_reset_ms
        self.base_url = base_url.rstrip("/")

        self.session.headers.update({"User-Agent": USER_AGENT})
        token = token if token is not None else get_lichess_token()
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    # ------------------------------------------------------------------ games

    def fetch_user_games(
        self,
        handle: str,
        window: TimeWindow,
        cap: int,
        perf_types: Iterable[str] = PERF_TYPES,
    ) -> List[Dict[str, Any]]:
        """Most recent games of `handle` inside `window`, newest first."""
        params = {
            "since": window.since_ms,
            "until": window.until_ms,
            "max": cap,
            "rated": "true",
            "perfType": ",".join(perf_types),
            "moves": "true",
            "evals": "true",
            "opening": "true",
            "lastFen": "true",
            "clocks": "false",
            "sort": "dateDesc",
        }
        resp = self._get(
            f"/api/games/user/{handle}",
            params=params,
            headers={"Accept": "application/x-ndjson"},
            endpoint="games",
        )
        if resp.status_code == 404:
            LOGGER.warning("Player '%s' not found – no games", handle)
            return []
        self._raise_for_status(resp, f"games of '{handle}'")

        return list(self._iter_ndjson(resp.text, handle))

    # ------------------------------------------------------------ leaderboard

    def fetch_leaderboard(self, category: str, top_n: int) -> List[Dict[str, Any]]:
        """Top `top_n` users of one perf category (raw user objects)."""
        resp = self._get(
            f"/api/player/top/{top_n}/{category}",
            headers={"Accept": "application/vnd.lichess.v3+json"},
            endpoint="leaderboard",
        )
        self._raise_for_status(resp, f"leaderboard '{category}'")
        try:
            users = resp.json()["users"]
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamError(f"Malformed leaderboard '{category}'") from exc
        if not isinstance(users, list):
            raise UpstreamError(f"Malformed leaderboard '{category}'")
        return users

    # ------------------------------------------------------------- cloud eval

    def fetch_cloud_eval(self, fen: str) -> Optional[Dict[str, Any]]:
        """Cloud evaluation for `fen`, or None if Lichess has none cached."""
        resp = self._get(
            "/api/cloud-eval",
            params={"fen": fen, "multiPv": 1},
            headers={"Accept": "application/json"},
            endpoint="cloud-eval",
        )
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, "cloud eval")
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError("Malformed cloud eval payload") from exc

    # ---------------------------------------------------------------- helpers

    def _get(
        self,
        path: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        try:
            resp = self.session.get(
                f"{self.base_url}{path}",
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamError(f"{endpoint} request failed: {exc}") from exc

        if resp.status_code == 429:
            reset_ms = parse_retry_after(
                resp.headers.get("Retry-After"), self.default_reset_ms
            )
            raise RateLimitedError(reset_ms, endpoint)
        return resp

    @staticmethod
    def _raise_for_status(resp: requests.Response, what: str) -> None:
        if not resp.ok:
            raise UpstreamError(f"Lichess returned {resp.status_code} for {what}")

    @staticmethod
    def _iter_ndjson(text: str, handle: str):
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                LOGGER.warning("Skipping malformed game line for '%s'", handle)
