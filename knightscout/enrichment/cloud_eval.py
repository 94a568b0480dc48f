# ==============================================================================
# cloud_eval.py  –  Optional evaluation backfill from the Lichess cloud cache
# ------------------------------------------------------------------------------
# For a game that came without server analysis, look up the cloud evaluation of
# its final position. Never waits: while a cooldown is active, or when the
# previous lookup was less than `min_interval` seconds ago, the game is passed
# through untouched and the eligibility filter will mark it neutral.
# ==============================================================================

from __future__ import annotations

import time
from dataclasses import replace
from typing import Callable, Optional

from knightscout.ingestion.game_parser import parse_int
from knightscout.ingestion.lichess_client import (
    LichessClient,
    RateLimitedError,
    UpstreamError,
)
from knightscout.ingestion.models import Evaluation, SourceItem
from knightscout.ingestion.rate_limit import RateLimitCoordinator
from knightscout.utils.logging_utils import setup_logger
from knightscout.utils.telemetry import RATE_LIMIT_HITS

LOGGER = setup_logger("cloud_eval")

CLOUD_EVAL_INTERVAL = 5.0  # seconds, ~12 lookups per minute


class CloudEvalEnricher:
    def __init__(
        self,
        client: LichessClient,
        coordinator: RateLimitCoordinator,
        min_interval: float = CLOUD_EVAL_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.coordinator = coordinator
        self.min_interval = min_interval
        self.clock = clock
        self._last_call: Optional[float] = None

    def enrich(self, item: SourceItem) -> SourceItem:
        if item.evaluation is not None or not item.last_fen:
            return item

        now = self.clock()
        if self.coordinator.is_limited(now):
            return item
        if self._last_call is not None and now - self._last_call < self.min_interval:
            return item
        self._last_call = now

        try:
            data = self.client.fetch_cloud_eval(item.last_fen)
        except RateLimitedError as exc:
            RATE_LIMIT_HITS.labels(endpoint="cloud-eval").inc()
            self.coordinator.record_limited(self.clock(), exc.reset_ms)
            LOGGER.warning("Cloud eval rate limited – continuing without it")
            return item
        except UpstreamError as exc:
            LOGGER.debug("Cloud eval unavailable for %s: %s", item.game_id, exc)
            return item

        evaluation = _to_evaluation(data)
        if evaluation is None:
            return item
        LOGGER.debug(
            "Cloud eval for %s: cp=%s depth=%s",
            item.game_id,
            evaluation.cp,
            evaluation.depth,
        )
        return replace(item, evaluation=evaluation)


def _to_evaluation(data: Optional[dict]) -> Optional[Evaluation]:
    if not isinstance(data, dict):
        return None
    pvs = data.get("pvs")
    if not isinstance(pvs, list) or not pvs or not isinstance(pvs[0], dict):
        return None
    main_line = pvs[0]
    cp, mate = parse_int(main_line.get("cp")), parse_int(main_line.get("mate"))
    if cp is None and mate is None:
        return None
    return Evaluation(
        cp=cp, mate=mate, depth=parse_int(data.get("depth")), source="lichess-cloud"
    )
