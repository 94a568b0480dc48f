# ==============================================================================
# game_parser.py  –  Lichess NDJSON / Chess.com archive game → SourceItem
# ------------------------------------------------------------------------------
# Responsibilities:
#   • Normalise one JSON game object into an immutable SourceItem
#   • Count plies from the SAN move string
#   • Lift an evaluation out of embedded server analysis (evals=true)
#   • Strip a Chess.com PGN down to its SAN move list
# ==============================================================================

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from knightscout.ingestion.models import Evaluation, Site, SourceItem


class MalformedGameError(ValueError):
    """Raised when a game object lacks the fields every game must have."""


# ------------------------------------------------------------------------------
# Parsing helpers
# ------------------------------------------------------------------------------


def parse_int(value: Any) -> Optional[int]:
    """
    Safely cast a value to int, or return None if invalid.

    Handles:
      • Integers (1500)
      • Numeric strings ("2400")
      • Empty strings, nulls, "?" → None
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Lichess timestamps are epoch milliseconds."""
    millis = parse_int(value)
    if millis is None:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def count_plies(moves: Optional[str]) -> int:
    """Number of half-moves in a space separated SAN string."""
    if not moves:
        return 0
    return len(moves.split())


def _player(raw: Dict[str, Any], color: str) -> Dict[str, Any]:
    players = raw.get("players") or {}
    return players.get(color) or {}


def _player_name(side: Dict[str, Any]) -> str:
    user = side.get("user") or {}
    return user.get("name") or user.get("id") or ""


def _evaluation(raw: Dict[str, Any]) -> Optional[Evaluation]:
    """Last evaluated ply of the server analysis, if the game was analysed."""
    analysis = raw.get("analysis")
    if not isinstance(analysis, list):
        return None

    for entry in reversed(analysis):
        if not isinstance(entry, dict):
            continue
        cp, mate = parse_int(entry.get("eval")), parse_int(entry.get("mate"))
        if cp is not None or mate is not None:
            return Evaluation(
                cp=cp,
                mate=mate,
                depth=parse_int(entry.get("depth")),
                source="lichess-analysis",
            )
    return None


# ------------------------------------------------------------------------------
# Public helpers
# ------------------------------------------------------------------------------


def parse_game(raw: Dict[str, Any], fetched_for: str = "") -> SourceItem:
    """Build a SourceItem from one exported game object."""
    if not isinstance(raw, dict):
        raise MalformedGameError(f"expected an object, got {type(raw).__name__}")

    game_id = raw.get("id")
    if not game_id or not isinstance(game_id, str):
        raise MalformedGameError("game without id")

    created_at = _parse_timestamp(raw.get("createdAt"))
    if created_at is None:
        raise MalformedGameError(f"game {game_id} without createdAt")

    white, black = _player(raw, "white"), _player(raw, "black")
    opening = raw.get("opening") or {}
    moves = raw.get("moves") or ""

    return SourceItem(
        game_id=game_id,
        created_at=created_at,
        ply_count=count_plies(moves),
        evaluation=_evaluation(raw),
        white=_player_name(white),
        black=_player_name(black),
        white_rating=parse_int(white.get("rating")),
        black_rating=parse_int(black.get("rating")),
        speed=raw.get("speed") or "",
        rated=bool(raw.get("rated", True)),
        variant=raw.get("variant") or "standard",
        status=raw.get("status") or "",
        winner=raw.get("winner"),
        opening_eco=opening.get("eco") or "",
        opening_name=opening.get("name") or "",
        moves=moves,
        last_fen=raw.get("lastFen") or "",
        fetched_for=fetched_for,
    )


# ------------------------------------------------------------------------------
# Chess.com archive games
# ------------------------------------------------------------------------------

_PGN_HEADER = re.compile(r"^\s*\[(\w+)\s+\"(.*)\"\]\s*$", re.MULTILINE)
_PGN_COMMENT = re.compile(r"\{[^}]*\}|\([^)]*\)|;[^\n]*")
_PGN_MOVE_NUMBER = re.compile(r"^\d+\.(\.\.)?")
_PGN_RESULTS = {"1-0", "0-1", "1/2-1/2", "*"}
_CHESSCOM_ID = re.compile(r"/(\d+)/?$")

# Result of the side that did not win → Lichess status vocabulary
_CHESSCOM_STATUS = {
    "checkmated": "mate",
    "resigned": "resign",
    "timeout": "outoftime",
    "abandoned": "timeout",
    "stalemate": "stalemate",
    "agreed": "draw",
    "repetition": "draw",
    "insufficient": "draw",
    "50move": "draw",
    "timevsinsufficient": "draw",
}


def pgn_headers(pgn: str) -> Dict[str, str]:
    return {name: value for name, value in _PGN_HEADER.findall(pgn or "")}


def pgn_moves(pgn: str) -> str:
    """SAN moves of a PGN, without headers, clocks, numbers or result."""
    body = _PGN_HEADER.sub("", pgn or "")
    body = _PGN_COMMENT.sub(" ", body)
    sans = []
    for token in body.split():
        san = _PGN_MOVE_NUMBER.sub("", token)
        if san and san not in _PGN_RESULTS and not san.startswith("$"):
            sans.append(san)
    return " ".join(sans)


def _opening_from_url(url: str) -> str:
    """".../openings/Sicilian-Defense-Najdorf" → "Sicilian Defense Najdorf"."""
    if "/openings/" not in url:
        return ""
    return url.rsplit("/openings/", 1)[1].replace("-", " ").strip()


def _chesscom_status(white: Dict[str, Any], black: Dict[str, Any]) -> str:
    for side in (white, black):
        result = side.get("result")
        if result and result != "win":
            return _CHESSCOM_STATUS.get(result, result)
    return ""


def parse_chesscom_game(raw: Dict[str, Any], fetched_for: str = "") -> SourceItem:
    """Build a SourceItem from one Chess.com monthly-archive game object."""
    if not isinstance(raw, dict):
        raise MalformedGameError(f"expected an object, got {type(raw).__name__}")

    match = _CHESSCOM_ID.search(raw.get("url") or "")
    if not match:
        raise MalformedGameError("chess.com game without url id")
    game_id = f"cc_{match.group(1)}"

    end_time = parse_int(raw.get("end_time"))
    if end_time is None:
        raise MalformedGameError(f"game {game_id} without end_time")

    white, black = raw.get("white") or {}, raw.get("black") or {}
    pgn = raw.get("pgn") or ""
    headers = pgn_headers(pgn)
    moves = pgn_moves(pgn)

    winner = None
    if white.get("result") == "win":
        winner = "white"
    elif black.get("result") == "win":
        winner = "black"

    time_class = raw.get("time_class") or ""
    return SourceItem(
        game_id=game_id,
        created_at=datetime.fromtimestamp(end_time, tz=timezone.utc),
        ply_count=count_plies(moves),
        white=white.get("username") or "",
        black=black.get("username") or "",
        white_rating=parse_int(white.get("rating")),
        black_rating=parse_int(black.get("rating")),
        speed="classical" if time_class == "daily" else time_class,
        rated=bool(raw.get("rated", True)),
        variant="standard" if raw.get("rules", "chess") == "chess" else raw["rules"],
        status=_chesscom_status(white, black),
        winner=winner,
        opening_eco=headers.get("ECO", ""),
        opening_name=headers.get("Opening") or _opening_from_url(headers.get("ECOUrl", "")),
        moves=moves,
        last_fen=raw.get("fen") or "",
        fetched_for=fetched_for,
        site=Site.CHESSCOM,
    )
