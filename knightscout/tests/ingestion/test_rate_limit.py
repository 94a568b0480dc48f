# ==============================================================================
# test_rate_limit.py  –  Cooldown and backoff bookkeeping
# ==============================================================================

from knightscout.ingestion.rate_limit import (
    RateLimitCoordinator,
    get_coordinator,
    reset_coordinator,
)
from knightscout.ingestion.models import Site
from knightscout.utils.config import IngestionConfig


# ------------------------------------------------------------------------------
# Cooldown
# ------------------------------------------------------------------------------
def test_not_limited_initially():
    coordinator = RateLimitCoordinator()

    assert not coordinator.is_limited(1000.0)
    assert coordinator.remaining_ms(1000.0) == 0
    assert coordinator.next_delay_ms() == 4_000


def test_record_limited_sets_cooldown_with_margin():
    coordinator = RateLimitCoordinator(safety_margin_ms=2_000)

    until = coordinator.record_limited(1000.0, reset_hint_ms=60_000)

    assert until == 1062.0
    assert coordinator.is_limited(1061.9)
    assert not coordinator.is_limited(1062.0)
    assert coordinator.remaining_ms(1032.0) == 30_000


def test_later_cooldown_is_kept():
    coordinator = RateLimitCoordinator()
    coordinator.record_limited(1000.0, reset_hint_ms=60_000)

    until = coordinator.record_limited(1001.0, reset_hint_ms=1_000)

    assert until == 1062.0
    assert coordinator.snapshot().consecutive_limit_hits == 2


def test_success_does_not_clear_cooldown():
    coordinator = RateLimitCoordinator()
    coordinator.record_limited(1000.0, reset_hint_ms=10_000)

    coordinator.record_success()

    assert coordinator.is_limited(1005.0)
    assert coordinator.snapshot().consecutive_limit_hits == 0


def test_negative_reset_hint_only_applies_margin():
    coordinator = RateLimitCoordinator(safety_margin_ms=2_000)

    assert coordinator.record_limited(50.0, reset_hint_ms=-500) == 52.0


# ------------------------------------------------------------------------------
# Backoff
# ------------------------------------------------------------------------------
def test_limit_hit_raises_backoff_to_recovery_level():
    coordinator = RateLimitCoordinator(initial_backoff_ms=4_000)

    coordinator.record_limited(0.0, 1_000)

    assert coordinator.next_delay_ms() == 10_000


def test_backoff_never_exceeds_ceiling():
    coordinator = RateLimitCoordinator(max_backoff_ms=30_000)

    for hit in range(50):
        coordinator.record_limited(float(hit), 1_000)

    assert coordinator.next_delay_ms() == 30_000


def test_backoff_decays_to_floor_on_success():
    coordinator = RateLimitCoordinator(min_backoff_ms=2_000)
    coordinator.record_limited(0.0, 1_000)

    for _ in range(100):
        coordinator.record_success()

    assert coordinator.next_delay_ms() == 2_000


def test_single_success_decays_by_factor():
    coordinator = RateLimitCoordinator(initial_backoff_ms=10_000, decay=0.9)

    coordinator.record_success()

    assert coordinator.next_delay_ms() == 9_000


def test_initial_backoff_is_bounded():
    coordinator = RateLimitCoordinator(
        initial_backoff_ms=100, min_backoff_ms=2_000, max_backoff_ms=30_000
    )

    assert coordinator.next_delay_ms() == 2_000


def test_snapshot_is_a_copy():
    coordinator = RateLimitCoordinator()
    snap = coordinator.snapshot()
    snap.current_backoff_ms = 1

    assert coordinator.next_delay_ms() == 4_000


# ------------------------------------------------------------------------------
# Process-wide instance
# ------------------------------------------------------------------------------
def test_get_coordinator_is_shared():
    config = IngestionConfig(initial_backoff_ms=6_000)

    first = get_coordinator(config)
    second = get_coordinator()

    assert first is second
    assert first.next_delay_ms() == 6_000


def test_reset_coordinator_creates_new_instance():
    first = get_coordinator()
    reset_coordinator()

    assert get_coordinator() is not first


def test_each_site_has_its_own_coordinator(fake_clock):
    lichess = get_coordinator()
    chesscom = get_coordinator(site=Site.CHESSCOM)

    chesscom.record_limited(fake_clock(), 30_000)

    assert chesscom is not lichess
    assert get_coordinator(site=Site.CHESSCOM) is chesscom
    assert not lichess.is_limited(fake_clock())
    reset_coordinator()
    assert get_coordinator(site=Site.CHESSCOM) is not chesscom
