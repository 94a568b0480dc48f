# ==============================================================================
# orchestrator.py  –  Batch loop of the game-acquisition pipeline
# ------------------------------------------------------------------------------
# States: RUNNING → (WAITING_ON_RATE_LIMIT → RUNNING)* → STOPPED
#
# Per batch:
#   1. Pool provider → players, planner → BatchPlan
#   2. For each planned player, in order:
#        • cooldown live on the player's site → WAITING_ON_RATE_LIMIT, sleep,
#          resume SAME player
#        • fetch executor → games not yet known
#        • (optional) cloud-eval enrichment, eligibility filter
#        • every game → ledger; accepted games → yielded downstream
#        • ledger ids flushed to the durable store
#   3. No accepted game → consecutive empty batches + 1, else reset to 0
#   4. Stop at the empty-batch ceiling, `max_batches`, or `cancel()`
# ==============================================================================

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from knightscout.db.known_id_store import KnownIdStore
from knightscout.enrichment.cloud_eval import CloudEvalEnricher
from knightscout.ingestion.batch_planner import BatchPlanner
from knightscout.ingestion.eligibility import EligibilityFilter
from knightscout.ingestion.fetch_executor import FetchExecutor, FetchStatus
from knightscout.ingestion.known_ids import KnownIdLedger
from knightscout.ingestion.models import BatchPlan, PlayerEntry, SourceItem
from knightscout.ingestion.player_pool import PlayerPoolProvider
from knightscout.ingestion.rate_limit import RateLimitCoordinator
from knightscout.utils.config import ConfigError
from knightscout.utils.logging_utils import setup_logger
from knightscout.utils.telemetry import EMPTY_BATCHES, GAMES

LOGGER = setup_logger("orchestrator")


class OrchestratorState(str, Enum):
    RUNNING = "running"
    WAITING_ON_RATE_LIMIT = "waiting_on_rate_limit"
    STOPPED = "stopped"


@dataclass
class YieldCounters:
    batches_attempted: int = 0
    consecutive_empty_batches: int = 0
    total_accepted: int = 0
    total_rejected: int = 0
    total_duplicates: int = 0
    cooldown_waits: int = 0
    players_given_up: int = 0


class BatchOrchestrator:
    def __init__(
        self,
        planner: BatchPlanner,
        pool_provider: PlayerPoolProvider,
        executor: FetchExecutor,
        eligibility: EligibilityFilter,
        ledger: KnownIdLedger,
        store: Optional[KnownIdStore] = None,
        enricher: Optional[CloudEvalEnricher] = None,
        empty_batch_ceiling: int = 6,
        max_batches: int = 0,
        shuffle_pool: bool = False,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if empty_batch_ceiling <= 0:
            raise ConfigError("empty_batch_ceiling must be positive")
        self.planner = planner
        self.pool_provider = pool_provider
        self.executor = executor
        self.eligibility = eligibility
        self.ledger = ledger
        self.store = store
        self.enricher = enricher
        self.empty_batch_ceiling = empty_batch_ceiling
        self.max_batches = max_batches
        self.shuffle_pool = shuffle_pool
        if clock is None:
            clock = executor.clock if executor.clock is not None else time.time
        self.clock = clock

        self.counters = YieldCounters()
        self.current_plan: Optional[BatchPlan] = None
        self.batch_index = 1
        self.player_index = 0
        self._state = OrchestratorState.RUNNING
        self._cancelled = False
        self._started = False

    # ------------------------------------------------------------------ public

    @property
    def state(self) -> OrchestratorState:
        return self._state

    def cancel(self) -> None:
        """Stop before the next player; a cooldown wait in progress is cut short."""
        LOGGER.info("Cancellation requested")
        self._cancelled = True

    def run(self) -> Iterator[SourceItem]:
        """Lazy, finite, single-pass sequence of accepted games."""
        if self._started:
            raise RuntimeError("an orchestrator run can only be iterated once")
        self._started = True

        pool = self._load_pool()
        LOGGER.info(
            "Ingestion started – %d players, %d known ids",
            len(pool),
            len(self.ledger),
        )

        try:
            while self._state is not OrchestratorState.STOPPED:
                if self._should_stop_before_batch():
                    break
                if self.batch_index > 1:
                    pool = self._load_pool()

                plan = self.planner.plan(self.batch_index, pool)
                self.current_plan = plan
                self.counters.batches_attempted += 1
                LOGGER.info(
                    "Batch %d – window %s → %s%s, offset %d, players: %s",
                    plan.batch_index,
                    plan.window.start,
                    plan.window.end,
                    " (floor)" if plan.clamped else "",
                    plan.offset,
                    ", ".join(p.handle for p in plan.players),
                )

                accepted = yield from self._run_batch(plan)
                if self._cancelled:
                    break
                self._finish_batch(plan, accepted)
                self.batch_index += 1
        finally:
            self._flush()
            self._state = OrchestratorState.STOPPED
            LOGGER.info(
                "Ingestion stopped – %d batches, %d accepted, %d rejected, "
                "%d duplicates, %d new ids (%d seeded)",
                self.counters.batches_attempted,
                self.counters.total_accepted,
                self.counters.total_rejected,
                self.counters.total_duplicates,
                self.ledger.added_this_run,
                self.ledger.seed_size,
            )

    # ---------------------------------------------------------------- helpers

    def _load_pool(self) -> List[PlayerEntry]:
        pool = self.pool_provider.get_pool(sorted_order=not self.shuffle_pool)
        if not pool:
            raise ConfigError("player pool is empty – nothing to sample from")
        return pool

    def _should_stop_before_batch(self) -> bool:
        if self._cancelled:
            return True
        if self.max_batches and self.batch_index > self.max_batches:
            LOGGER.info("Reached max_batches=%d – stopping", self.max_batches)
            return True
        return False

    def _run_batch(self, plan: BatchPlan):
        accepted = 0
        self.player_index = 0

        while self.player_index < len(plan.players):
            if self._cancelled:
                break

            player = plan.players[self.player_index]
            coordinator = self.executor.coordinator_for(player)
            if coordinator.is_limited(self.clock()):
                self._wait_on_rate_limit(coordinator)
                continue  # re-check, same player

            fetch = self.executor.fetch(
                player,
                plan.window,
                plan.per_player_cap,
                self.ledger,
                on_wait=self._on_wait,
                should_stop=self._stop_requested,
            )
            self._state = OrchestratorState.RUNNING
            if fetch.status is FetchStatus.CANCELLED:
                break
            if fetch.status is FetchStatus.GAVE_UP:
                self.counters.players_given_up += 1
            if fetch.known_skipped:
                self.counters.total_duplicates += fetch.known_skipped
                GAMES.labels(outcome="duplicate").inc(fetch.known_skipped)

            player_accepted = 0
            for item in fetch.items:
                if item.game_id in self.ledger:
                    self.counters.total_duplicates += 1
                    GAMES.labels(outcome="duplicate").inc()
                    continue
                if self.enricher is not None:
                    item = self.enricher.enrich(item)

                verdict = self.eligibility.evaluate(item)
                self.ledger.add(item.game_id, accepted=verdict.accepted)
                if not verdict.accepted:
                    self.counters.total_rejected += 1
                    GAMES.labels(outcome="rejected").inc()
                    LOGGER.debug("Rejected %s: %s", item.game_id, verdict.reason)
                    continue

                accepted += 1
                player_accepted += 1
                self.counters.total_accepted += 1
                GAMES.labels(outcome="accepted").inc()
                yield verdict.item

            LOGGER.info(
                "Batch %d player %d/%d '%s' – %s, +%d accepted (%d raw, %d known)",
                plan.batch_index,
                self.player_index + 1,
                len(plan.players),
                player.handle,
                fetch.status.value,
                player_accepted,
                fetch.raw_count,
                fetch.known_skipped,
            )
            self._flush()
            self.player_index += 1

        return accepted

    def _stop_requested(self) -> bool:
        return self._cancelled

    def _wait_on_rate_limit(self, coordinator: RateLimitCoordinator) -> None:
        self._state = OrchestratorState.WAITING_ON_RATE_LIMIT
        self.executor.wait_for_cooldown(
            on_wait=self._on_wait,
            coordinator=coordinator,
            should_stop=self._stop_requested,
        )
        self._state = OrchestratorState.RUNNING

    def _on_wait(self, remaining_ms: int) -> None:
        self._state = OrchestratorState.WAITING_ON_RATE_LIMIT
        self.counters.cooldown_waits += 1
        LOGGER.warning(
            "Waiting %.1f s on rate limit – will resume batch %d at player %d",
            remaining_ms / 1000,
            self.batch_index,
            self.player_index + 1,
        )

    def _finish_batch(self, plan: BatchPlan, accepted: int) -> None:
        if accepted == 0:
            self.counters.consecutive_empty_batches += 1
            EMPTY_BATCHES.inc()
            LOGGER.info(
                "Batch %d empty (%d/%d consecutive)",
                plan.batch_index,
                self.counters.consecutive_empty_batches,
                self.empty_batch_ceiling,
            )
        else:
            self.counters.consecutive_empty_batches = 0
            LOGGER.info("Batch %d done – %d accepted", plan.batch_index, accepted)

        if self.counters.consecutive_empty_batches >= self.empty_batch_ceiling:
            LOGGER.info(
                "%d consecutive empty batches – stopping",
                self.counters.consecutive_empty_batches,
            )
            self._state = OrchestratorState.STOPPED

    def _flush(self) -> None:
        if self.store is None:
            self.ledger.drain_pending()
            return
        pending = self.ledger.drain_pending()
        if not pending:
            return
        try:
            self.store.append(pending)
        except SQLAlchemyError:
            LOGGER.error("Keeping %d ids pending after store failure", len(pending))
            self.ledger.requeue(pending)
