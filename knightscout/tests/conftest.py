# ==============================================================================
# conftest.py  –  Shared fixtures for the knightscout test-suite
#   • fake_clock   – deterministic time + sleep that advances it
#   • make_game    – factory for raw Lichess NDJSON game objects
#   • make_chesscom_game – factory for raw Chess.com archive game objects
#   • FakeLichessClient – scripted stand-in for either site's HTTP client
# ==============================================================================

import os
from datetime import date, datetime, timezone

# Keep test runs from writing log files
os.environ.setdefault("KNIGHTSCOUT_LOG_TO_FILE", "false")

import pytest

from knightscout.ingestion.lichess_client import RateLimitedError, UpstreamError
from knightscout.ingestion.rate_limit import reset_coordinator

TODAY = date(2026, 10, 17)
SAN = "e4 e5 Nf3 Nc6 Bb5 a6 Ba4 Nf6 O-O Be7 Re1 b5 Bb3 d6 c3 O-O h3 Nb8 d4 Nbd7 c4 c6"
FEN = "r1bq1rk1/3nbppp/p1pp1n2/1p2p3/2PPP3/1B3N1P/PP3PP1/RNBQR1K1 w - - 0 12"


def chesscom_pgn(sans, result="1-0"):
    """PGN the way Chess.com archives ship it: headers, numbers, clocks."""
    tokens = []
    for ply, san in enumerate(sans):
        number = ply // 2 + 1
        tokens.append(f"{number}." if ply % 2 == 0 else f"{number}...")
        tokens.append(san)
        tokens.append("{[%clk 0:02:59.9]}")
    headers = (
        '[Event "Live Chess"]\n[Site "Chess.com"]\n[ECO "C84"]\n'
        '[ECOUrl "https://www.chess.com/openings/Ruy-Lopez-Opening-Closed"]\n'
        f'[Result "{result}"]\n\n'
    )
    return headers + " ".join(tokens) + f" {result}"


class FakeClock:
    """Epoch-second clock whose `sleep` only moves time forward."""

    def __init__(self, start: float = 1_760_000_000.0) -> None:
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeLichessClient:
    """
    Scripted client. `games[handle]` is a list of responses consumed in
    order; a response is a list of raw games or an exception instance.
    Once a handle's script is exhausted it answers with `default`.
    """

    def __init__(self, games=None, leaderboard=None, cloud_evals=None, default=()):
        self.default = list(default)
        self.games = {k: list(v) for k, v in (games or {}).items()}
        self.leaderboard = leaderboard or {}
        self.cloud_evals = cloud_evals or {}
        self.calls = []
        self.leaderboard_calls = []
        self.cloud_eval_calls = []

    def fetch_user_games(self, handle, window, cap, perf_types=()):
        self.calls.append((handle, window, cap))
        script = self.games.get(handle) or []
        response = script.pop(0) if script else self.default
        if isinstance(response, Exception):
            raise response
        return [dict(game) for game in response][:cap]

    def fetch_leaderboard(self, category, top_n):
        self.leaderboard_calls.append((category, top_n))
        response = self.leaderboard.get(category, [])
        if isinstance(response, Exception):
            raise response
        return response

    def fetch_cloud_eval(self, fen):
        self.cloud_eval_calls.append(fen)
        response = self.cloud_evals.get(fen)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def _fresh_coordinator():
    reset_coordinator()
    yield
    reset_coordinator()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_game():
    def _make(game_id, plies=30, analysed=False, created_at=None, **extra):
        created = created_at or datetime(2026, 10, 10, 12, 0, tzinfo=timezone.utc)
        moves = " ".join((SAN.split() * 10)[:plies])
        game = {
            "id": game_id,
            "rated": True,
            "variant": "standard",
            "speed": "blitz",
            "createdAt": int(created.timestamp() * 1000),
            "status": "resign",
            "winner": "white",
            "players": {
                "white": {"user": {"name": "Alice", "id": "alice"}, "rating": 2800},
                "black": {"user": {"name": "Bob", "id": "bob"}, "rating": 2750},
            },
            "opening": {"eco": "C84", "name": "Ruy Lopez: Closed"},
            "moves": moves,
            "lastFen": FEN,
        }
        if analysed:
            game["analysis"] = [{"eval": 15}, {"eval": 22}, {"eval": 31}]
        game.update(extra)
        return game

    return _make


@pytest.fixture
def rate_limited():
    def _make(reset_ms=60_000):
        return RateLimitedError(reset_ms, "games")

    return _make


@pytest.fixture
def upstream_error():
    return UpstreamError("Lichess returned 503 for games")


@pytest.fixture
def make_chesscom_game():
    def _make(num, plies=30, ended_at=None, **extra):
        ended = ended_at or datetime(2026, 10, 10, 12, 0, tzinfo=timezone.utc)
        game = {
            "url": f"https://www.chess.com/game/live/{num}",
            "pgn": chesscom_pgn((SAN.split() * 10)[:plies]),
            "end_time": int(ended.timestamp()),
            "time_class": "blitz",
            "rated": True,
            "rules": "chess",
            "fen": FEN,
            "white": {"username": "Hikaru", "rating": 3250, "result": "win"},
            "black": {"username": "MagnusCarlsen", "rating": 3300, "result": "resigned"},
        }
        game.update(extra)
        return game

    return _make
