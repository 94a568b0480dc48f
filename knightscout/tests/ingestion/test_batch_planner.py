# ==============================================================================
# test_batch_planner.py  –  Time windows and player rotation per batch
# ==============================================================================

from datetime import date, datetime, timedelta, timezone
from math import gcd

import pytest

from knightscout.ingestion.batch_planner import BatchPlanner
from knightscout.ingestion.models import PlayerEntry
from knightscout.utils.config import ConfigError, IngestionConfig

TODAY = date(2026, 10, 17)


def _pool(size):
    return [PlayerEntry(f"player{n:02d}", 3000 - n, "blitz") for n in range(size)]


# ------------------------------------------------------------------------------
# Windows
# ------------------------------------------------------------------------------
def test_first_window_ends_today():
    planner = BatchPlanner()

    window, clamped = planner.window_for(1, TODAY)

    assert window.start == TODAY - timedelta(days=14)
    assert window.end == TODAY
    assert not clamped


def test_first_window_includes_games_played_today():
    window, _ = BatchPlanner().window_for(1, TODAY)
    this_evening = datetime(2026, 10, 17, 21, 30, tzinfo=timezone.utc)
    tomorrow = datetime(2026, 10, 18, tzinfo=timezone.utc)

    assert window.until_ms == int(tomorrow.timestamp() * 1000)
    assert window.since_ms <= this_evening.timestamp() * 1000 < window.until_ms


def test_adjacent_windows_leave_no_shared_day():
    planner = BatchPlanner(window_step_days=15, window_span_days=14)
    newer, _ = planner.window_for(1, TODAY)
    older, _ = planner.window_for(2, TODAY)

    assert older.end < newer.start
    assert older.until_ms <= newer.since_ms


def test_second_window_moves_back_one_step():
    planner = BatchPlanner()

    window, _ = planner.window_for(2, TODAY)

    assert window.start == TODAY - timedelta(days=35)
    assert window.end == TODAY - timedelta(days=21)


def test_base_offset_shifts_every_window():
    planner = BatchPlanner(base_window_days=7)

    window, _ = planner.window_for(1, TODAY)

    assert window.end == TODAY - timedelta(days=7)


def test_windows_of_distinct_batches_never_overlap():
    planner = BatchPlanner()
    windows = [planner.window_for(i, TODAY)[0] for i in range(1, 40)]

    for i, first in enumerate(windows):
        for second in windows[i + 1 :]:
            assert not first.overlaps(second)


def test_windows_reach_further_back():
    planner = BatchPlanner()
    ends = [planner.window_for(i, TODAY)[0].end for i in range(1, 10)]

    assert ends == sorted(ends, reverse=True)


def test_window_clamped_at_floor():
    floor = date(2026, 9, 1)
    planner = BatchPlanner(window_floor=floor)

    window, clamped = planner.window_for(3, TODAY)

    assert clamped
    assert window.start == floor
    assert window.end == floor + timedelta(days=14)


def test_batch_index_starts_at_one():
    with pytest.raises(ValueError):
        BatchPlanner().window_for(0, TODAY)


def test_step_must_exceed_span():
    with pytest.raises(ConfigError):
        BatchPlanner(window_step_days=14, window_span_days=14)


# ------------------------------------------------------------------------------
# Rotation
# ------------------------------------------------------------------------------
@pytest.mark.parametrize("batch, expected", [(1, 13), (2, 26), (5, 5)])
def test_rotation_offsets_for_pool_of_sixty(batch, expected):
    assert BatchPlanner(rotation_prime=13).offset_for(batch, 60) == expected


def test_plan_takes_consecutive_players_with_wraparound():
    pool = _pool(10)
    planner = BatchPlanner(rotation_prime=13, players_per_batch=4)

    plan = planner.plan(1, pool, TODAY)  # offset 3

    assert plan.offset == 3
    assert [p.handle for p in plan.players] == [
        "player03",
        "player04",
        "player05",
        "player06",
    ]

    plan = planner.plan(3, pool, TODAY)  # offset 39 % 10 = 9
    assert [p.handle for p in plan.players] == [
        "player09",
        "player00",
        "player01",
        "player02",
    ]


def test_plan_never_exceeds_pool_size():
    planner = BatchPlanner(players_per_batch=8)

    plan = planner.plan(1, _pool(3), TODAY)

    assert len(plan.players) == 3
    assert len(set(plan.players)) == 3


def test_rotation_covers_every_offset_when_coprime():
    size, prime = 60, 13
    assert gcd(size, prime) == 1
    planner = BatchPlanner(rotation_prime=prime)

    offsets = {planner.offset_for(i, size) for i in range(1, size + 1)}

    assert offsets == set(range(size))


def test_empty_pool_is_rejected():
    with pytest.raises(ConfigError):
        BatchPlanner().plan(1, [], TODAY)


def test_plan_carries_cap_and_window():
    planner = BatchPlanner(per_player_cap=25)

    plan = planner.plan(2, _pool(60), TODAY)

    assert plan.batch_index == 2
    assert plan.per_player_cap == 25
    assert plan.window.end == TODAY - timedelta(days=21)
    assert not plan.clamped


def test_from_config_uses_injected_today():
    config = IngestionConfig(window_step_days=30, window_span_days=10)
    planner = BatchPlanner.from_config(config, today=lambda: TODAY)

    window, _ = planner.window_for(2)

    assert window.end == TODAY - timedelta(days=30)
    assert window.start == TODAY - timedelta(days=40)
