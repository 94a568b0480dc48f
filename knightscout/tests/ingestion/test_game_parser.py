# ==============================================================================
# test_game_parser.py  –  Lichess NDJSON / Chess.com archive game → SourceItem
# ==============================================================================

from datetime import datetime, timezone

import pytest

from knightscout.ingestion.game_parser import (
    MalformedGameError,
    count_plies,
    parse_chesscom_game,
    parse_game,
    parse_int,
    pgn_headers,
    pgn_moves,
)
from knightscout.ingestion.models import Site


@pytest.mark.parametrize(
    "value, expected",
    [(1500, 1500), ("2400", 2400), ("", None), ("?", None), (None, None), (True, None)],
)
def test_parse_int(value, expected):
    assert parse_int(value) == expected


def test_count_plies():
    assert count_plies("e4 e5 Nf3") == 3
    assert count_plies("") == 0
    assert count_plies(None) == 0


def test_parse_full_game(make_game):
    raw = make_game("abcd1234", plies=24, analysed=True)

    item = parse_game(raw, fetched_for="Alice")

    assert item.game_id == "abcd1234"
    assert item.ply_count == 24
    assert item.created_at == datetime(2026, 10, 10, 12, 0, tzinfo=timezone.utc)
    assert item.white == "Alice"
    assert item.black == "Bob"
    assert item.white_rating == 2800
    assert item.opening_eco == "C84"
    assert item.result == "1-0"
    assert item.fetched_for == "Alice"
    assert item.enrichment_mode is None


def test_last_analysed_ply_becomes_evaluation(make_game):
    raw = make_game("abcd1234", analysed=True)
    raw["analysis"].append({})  # trailing ply without eval

    item = parse_game(raw)

    assert item.evaluation.cp == 31
    assert item.evaluation.source == "lichess-analysis"
    assert item.evaluation.depth is None


def test_mate_evaluation(make_game):
    raw = make_game("abcd1234", analysis=[{"eval": 50}, {"mate": -3}])

    evaluation = parse_game(raw).evaluation

    assert evaluation.mate == -3
    assert evaluation.cp is None


def test_game_without_analysis_has_no_evaluation(make_game):
    assert parse_game(make_game("abcd1234")).evaluation is None


def test_anonymous_player_and_draw(make_game):
    raw = make_game("abcd1234", winner=None)
    raw["players"]["black"] = {"aiLevel": 8}

    item = parse_game(raw)

    assert item.black == ""
    assert item.black_rating is None
    assert item.result == "1/2-1/2"


@pytest.mark.parametrize(
    "mutate",
    [
        lambda g: g.pop("id"),
        lambda g: g.update(id=123),
        lambda g: g.pop("createdAt"),
        lambda g: g.update(createdAt="soon"),
    ],
)
def test_missing_required_fields(make_game, mutate):
    raw = make_game("abcd1234")
    mutate(raw)

    with pytest.raises(MalformedGameError):
        parse_game(raw)


def test_non_object_is_malformed():
    with pytest.raises(MalformedGameError):
        parse_game(["not", "a", "game"])


def test_to_record_is_flat(make_game):
    record = parse_game(make_game("abcd1234", analysed=True)).to_record()

    assert record["id_game"] == "abcd1234"
    assert record["n_plies"] == 30
    assert record["val_eval_cp"] == 31
    assert record["val_result"] == "1-0"
    assert record["tm_created"].startswith("2026-10-10T12:00:00")
    assert record["val_site"] == "lichess"


# ------------------------------------------------------------------------------
# Chess.com archive games
# ------------------------------------------------------------------------------
def test_pgn_moves_strip_headers_numbers_clocks_and_result():
    pgn = (
        '[Event "Live Chess"]\n[Result "0-1"]\n\n'
        "1. e4 {[%clk 0:02:59.9]} 1... e5 {[%clk 0:02:58]} 2.Nf3 $1 Nc6 0-1"
    )

    assert pgn_moves(pgn) == "e4 e5 Nf3 Nc6"
    assert pgn_headers(pgn) == {"Event": "Live Chess", "Result": "0-1"}
    assert pgn_moves("") == ""


def test_parse_chesscom_game(make_chesscom_game):
    item = parse_chesscom_game(make_chesscom_game(123456789), "Hikaru")

    assert item.game_id == "cc_123456789"
    assert item.site is Site.CHESSCOM
    assert item.created_at == datetime(2026, 10, 10, 12, 0, tzinfo=timezone.utc)
    assert item.ply_count == 30
    assert item.moves.split()[:4] == ["e4", "e5", "Nf3", "Nc6"]
    assert item.white == "Hikaru"
    assert item.black_rating == 3300
    assert item.winner == "white"
    assert item.result == "1-0"
    assert item.status == "resign"
    assert item.opening_eco == "C84"
    assert item.opening_name == "Ruy Lopez Opening Closed"
    assert item.speed == "blitz"
    assert item.variant == "standard"
    assert item.evaluation is None
    assert item.fetched_for == "Hikaru"
    assert item.to_record()["val_site"] == "chesscom"


@pytest.mark.parametrize(
    "white_result, black_result, winner, status",
    [
        ("checkmated", "win", "black", "mate"),
        ("timeout", "win", "black", "outoftime"),
        ("agreed", "agreed", None, "draw"),
        ("stalemate", "stalemate", None, "stalemate"),
    ],
)
def test_chesscom_results(make_chesscom_game, white_result, black_result, winner, status):
    raw = make_chesscom_game(
        1,
        white={"username": "A", "rating": 3000, "result": white_result},
        black={"username": "B", "rating": 3000, "result": black_result},
    )

    item = parse_chesscom_game(raw)

    assert item.winner == winner
    assert item.status == status


def test_daily_games_count_as_classical(make_chesscom_game):
    item = parse_chesscom_game(make_chesscom_game(1, time_class="daily"))

    assert item.speed == "classical"


@pytest.mark.parametrize(
    "mutate",
    [
        lambda g: g.pop("url"),
        lambda g: g.update(url="https://www.chess.com/game/live/"),
        lambda g: g.pop("end_time"),
    ],
)
def test_chesscom_missing_required_fields(make_chesscom_game, mutate):
    raw = make_chesscom_game(42)
    mutate(raw)

    with pytest.raises(MalformedGameError):
        parse_chesscom_game(raw)
