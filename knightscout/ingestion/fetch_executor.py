# ==============================================================================
# fetch_executor.py  –  One player's game-history call, paced and limit-aware
# ------------------------------------------------------------------------------
# Per call:
#   1. Pick the player's site lane (client + coordinator + parser)
#   2. Wait out any live cooldown on that lane (reported through `on_wait`)
#   3. Call the site for player / window / cap
#   4. 429 → record on the lane's coordinator, wait, retry the SAME player
#      (at most `max_limit_retries` retries, then give up on this player)
#   5. Success → record, parse, drop ids already known
#   6. Pause `next_delay_ms()` before handing control back
#   7. Other failures → log, zero games, never raise
#
# Waits are sliced into `poll_interval` steps when a `should_stop` callback is
# given, so a cancellation is honoured within one slice.
# ==============================================================================

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Container, Dict, Iterator, List, Mapping, Optional

from knightscout.ingestion.game_parser import MalformedGameError, parse_game
from knightscout.ingestion.lichess_client import (
    PERF_TYPES,
    LichessClient,
    RateLimitedError,
    UpstreamError,
)
from knightscout.ingestion.models import PlayerEntry, Site, SourceItem, TimeWindow
from knightscout.ingestion.rate_limit import RateLimitCoordinator
from knightscout.utils.logging_utils import setup_logger
from knightscout.utils.telemetry import (
    COOLDOWN_WAITS,
    FETCH_DURATION,
    RATE_LIMIT_HITS,
    UPSTREAM_ERRORS,
)

LOGGER = setup_logger("fetch_executor")

# on_wait(remaining_ms) is invoked right before each cooldown sleep
WaitHook = Callable[[int], None]
StopCheck = Callable[[], bool]
ParseFn = Callable[[Dict[str, Any], str], SourceItem]


class FetchStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"  # transient upstream error, zero games
    GAVE_UP = "gave_up"  # still rate limited after the retry budget
    CANCELLED = "cancelled"  # stop requested while waiting


@dataclass
class PlayerFetch:
    player: PlayerEntry
    status: FetchStatus
    items: List[SourceItem] = field(default_factory=list)
    attempts: int = 0
    raw_count: int = 0
    known_skipped: int = 0
    malformed: int = 0


@dataclass
class GameSource:
    """Everything needed to fetch from one site."""

    client: Any  # anything with fetch_user_games(handle, window, cap, perf_types)
    coordinator: RateLimitCoordinator
    parse: ParseFn = parse_game


class FetchExecutor:
    def __init__(
        self,
        client: LichessClient,
        coordinator: RateLimitCoordinator,
        max_limit_retries: int = 5,
        perf_types=PERF_TYPES,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        sources: Optional[Mapping[Site, GameSource]] = None,
        poll_interval: float = 1.0,
    ) -> None:
        self.client = client
        self.coordinator = coordinator
        self.max_limit_retries = max_limit_retries
        self.perf_types = tuple(perf_types)
        self.clock = clock
        self.sleep = sleep
        self.poll_interval = poll_interval

        self.sources: Dict[Site, GameSource] = {}
        if client is not None:
            self.sources[Site.LICHESS] = GameSource(client, coordinator, parse_game)
        if sources is not None:
            self.sources.update(sources)

    # ------------------------------------------------------------------ public

    def coordinator_for(self, player: PlayerEntry) -> RateLimitCoordinator:
        source = self.sources.get(player.site)
        return source.coordinator if source is not None else self.coordinator

    def wait_for_cooldown(
        self,
        on_wait: Optional[WaitHook] = None,
        coordinator: Optional[RateLimitCoordinator] = None,
        should_stop: Optional[StopCheck] = None,
    ) -> int:
        """Block until no cooldown is active; return the milliseconds waited."""
        if coordinator is None:
            coordinator = self.coordinator
        waited = 0
        while coordinator.is_limited(self.clock()):
            if should_stop is not None and should_stop():
                break
            remaining = (
                coordinator.remaining_ms(self.clock()) + coordinator.safety_margin_ms
            )
            COOLDOWN_WAITS.inc()
            if on_wait is not None:
                on_wait(remaining)
            LOGGER.warning("Cooldown active – sleeping %.1f s", remaining / 1000)
            waited += self._sleep_ms(remaining, should_stop)
        return waited

    def fetch_for_player(
        self,
        player: PlayerEntry,
        window: TimeWindow,
        cap: int,
        known_ids: Container[str],
        on_wait: Optional[WaitHook] = None,
    ) -> Iterator[SourceItem]:
        """Single-pass sequence of this player's not-yet-known games."""
        return iter(self.fetch(player, window, cap, known_ids, on_wait).items)

    def fetch(
        self,
        player: PlayerEntry,
        window: TimeWindow,
        cap: int,
        known_ids: Container[str],
        on_wait: Optional[WaitHook] = None,
        should_stop: Optional[StopCheck] = None,
    ) -> PlayerFetch:
        result = PlayerFetch(player=player, status=FetchStatus.FAILED)
        source = self.sources.get(player.site)
        if source is None:
            LOGGER.warning(
                "No source configured for %s – skipping '%s'",
                player.site.value,
                player.handle,
            )
            return result
        coordinator = source.coordinator

        while True:
            self.wait_for_cooldown(on_wait, coordinator, should_stop)
            if should_stop is not None and should_stop():
                result.status = FetchStatus.CANCELLED
                return result

            result.attempts += 1
            started = self.clock()
            try:
                raw_games = source.client.fetch_user_games(
                    player.handle, window, cap, self.perf_types
                )
            except RateLimitedError as exc:
                FETCH_DURATION.observe(max(self.clock() - started, 0))
                RATE_LIMIT_HITS.labels(
                    endpoint=exc.endpoint or f"{player.site.value}-games"
                ).inc()
                coordinator.record_limited(self.clock(), exc.reset_ms)
                state = coordinator.snapshot()
                LOGGER.warning(
                    "Rate limited on %s '%s' (attempt %d/%d, reset hint %d ms, "
                    "%d consecutive hits, pacing now %d ms)",
                    player.site.value,
                    player.handle,
                    result.attempts,
                    self.max_limit_retries + 1,
                    exc.reset_ms,
                    state.consecutive_limit_hits,
                    state.current_backoff_ms,
                )
                if result.attempts > self.max_limit_retries:
                    LOGGER.error(
                        "Giving up on '%s' after %d rate-limited attempts",
                        player.handle,
                        result.attempts,
                    )
                    result.status = FetchStatus.GAVE_UP
                    return result
                continue
            except UpstreamError as exc:
                FETCH_DURATION.observe(max(self.clock() - started, 0))
                UPSTREAM_ERRORS.inc()
                LOGGER.warning("No games for '%s' this batch: %s", player.handle, exc)
                result.status = FetchStatus.FAILED
                self._pace(coordinator, should_stop)
                return result

            FETCH_DURATION.observe(max(self.clock() - started, 0))
            coordinator.record_success()
            self._collect(result, raw_games, known_ids, source.parse)
            result.status = FetchStatus.OK
            self._pace(coordinator, should_stop)
            return result

    # ---------------------------------------------------------------- helpers

    def _collect(
        self,
        result: PlayerFetch,
        raw_games: list,
        known_ids: Container[str],
        parse: ParseFn,
    ) -> None:
        seen = set()
        result.raw_count = len(raw_games)
        for raw in raw_games:
            try:
                item = parse(raw, result.player.handle)
            except MalformedGameError as exc:
                result.malformed += 1
                LOGGER.debug("Malformed game for '%s': %s", result.player.handle, exc)
                continue
            if item.game_id in known_ids or item.game_id in seen:
                result.known_skipped += 1
                continue
            seen.add(item.game_id)
            result.items.append(item)

    def _pace(
        self, coordinator: RateLimitCoordinator, should_stop: Optional[StopCheck]
    ) -> None:
        delay_ms = coordinator.next_delay_ms()
        LOGGER.debug("Pacing %d ms before next call", delay_ms)
        self._sleep_ms(delay_ms, should_stop)

    def _sleep_ms(self, total_ms: int, should_stop: Optional[StopCheck]) -> int:
        if should_stop is None:
            self.sleep(total_ms / 1000)
            return total_ms

        slice_ms = max(int(self.poll_interval * 1000), 1)
        slept = 0
        while slept < total_ms and not should_stop():
            step = min(slice_ms, total_ms - slept)
            self.sleep(step / 1000)
            slept += step
        return slept
