#!/usr/bin/env python3
# ==============================================================================
# run_ingestion.py  –  Entry point for game acquisition
# ------------------------------------------------------------------------------
# Execution flow:
#   1. Load + validate config (fails before any network call)
#   2. Open the known-id store (DATABASE_URL or Secrets Manager creds)
#   3. Wire clients → pool → planner → executor → filter → orchestrator, one
#      client + coordinator lane per enabled site (SOURCES)
#   4. Drain the orchestrator, writing accepted games as NDJSON to OUTPUT_PATH
#      (or logging them) until it stops; Ctrl+C cancels, also mid-cooldown
# ==============================================================================

from __future__ import annotations

import json
import os
import signal
import sys
import threading
import time
from contextlib import nullcontext
from pathlib import Path
from typing import Callable, Optional, Union

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from knightscout.db.known_id_store import KnownIdStore
from knightscout.enrichment.cloud_eval import CloudEvalEnricher
from knightscout.ingestion.batch_planner import BatchPlanner
from knightscout.ingestion.eligibility import EligibilityFilter
from knightscout.ingestion.chesscom_client import ChessComClient
from knightscout.ingestion.fetch_executor import FetchExecutor, GameSource
from knightscout.ingestion.game_parser import parse_chesscom_game
from knightscout.ingestion.known_ids import KnownIdLedger
from knightscout.ingestion.lichess_client import LichessClient
from knightscout.ingestion.models import Site
from knightscout.ingestion.player_pool import PlayerPoolProvider, static_player_list
from knightscout.ingestion.rate_limit import get_coordinator
from knightscout.pipeline.orchestrator import BatchOrchestrator, YieldCounters
from knightscout.utils.config import IngestionConfig
from knightscout.utils.db_utils import get_database_url
from knightscout.utils.logging_utils import setup_logger
from knightscout.utils.telemetry import start_metrics_server

LOGGER = setup_logger("run_ingestion")


def build_orchestrator(
    config: IngestionConfig,
    store: Optional[KnownIdStore] = None,
    client: Optional[LichessClient] = None,
    chesscom_client: Optional[ChessComClient] = None,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchOrchestrator:
    """Assemble a ready-to-run orchestrator from `config`."""
    config.validate()
    sites = [Site(source) for source in config.sources]
    coordinator = get_coordinator(config)
    if client is None:
        client = LichessClient(
            timeout=config.request_timeout,
            default_reset_ms=config.default_reset_ms,
        )
    lichess_client = client if Site.LICHESS in sites else None

    sources = {}
    if Site.CHESSCOM in sites:
        if chesscom_client is None:
            chesscom_client = ChessComClient(
                timeout=config.request_timeout,
                default_reset_ms=config.default_reset_ms,
            )
        sources[Site.CHESSCOM] = GameSource(
            chesscom_client,
            get_coordinator(config, Site.CHESSCOM),
            parse_chesscom_game,
        )
    LOGGER.info("Game sites: %s", ", ".join(site.value for site in sites))
    ledger = KnownIdLedger(store.load_ids() if store is not None else ())

    return BatchOrchestrator(
        planner=BatchPlanner.from_config(config),
        pool_provider=PlayerPoolProvider(
            lichess_client,
            fallback=static_player_list(sites),
            categories=config.pool_categories,
            top_n=config.pool_top_n,
            cache_seconds=config.pool_cache_seconds,
            coordinator=coordinator,
            clock=clock,
        ),
        executor=FetchExecutor(
            lichess_client,
            coordinator,
            max_limit_retries=config.max_limit_retries,
            clock=clock,
            sleep=sleep,
            sources=sources,
        ),
        eligibility=EligibilityFilter(config.min_plies, config.min_eval_depth),
        ledger=ledger,
        store=store,
        enricher=(
            CloudEvalEnricher(client, coordinator, clock=clock)
            if config.cloud_eval
            else None
        ),
        empty_batch_ceiling=config.empty_batch_ceiling,
        max_batches=config.max_batches,
        shuffle_pool=config.pool_shuffle,
        clock=clock,
    )


def run_ingestion(
    config: Optional[IngestionConfig] = None,
    output_path: Union[str, Path, None] = None,
    store: Optional[KnownIdStore] = None,
) -> YieldCounters:
    """Run until the orchestrator stops; return its counters."""
    if config is None:
        config = IngestionConfig.from_env()
    output_path = output_path or os.getenv("OUTPUT_PATH") or None

    metrics_port = os.getenv("METRICS_PORT")
    if metrics_port:
        start_metrics_server(int(metrics_port))

    if store is None:
        store = KnownIdStore.from_url(get_database_url())
    orchestrator = build_orchestrator(config, store)

    previous_handler = None
    if threading.current_thread() is threading.main_thread():
        previous_handler = signal.signal(
            signal.SIGINT, lambda *_: orchestrator.cancel()
        )

    out_ctx = (
        open(output_path, "a", encoding="utf-8") if output_path else nullcontext()
    )
    try:
        with out_ctx as out:
            for item in orchestrator.run():
                if out is not None:
                    out.write(json.dumps(item.to_record()) + "\n")
                    out.flush()
                else:
                    LOGGER.info(
                        "Accepted %s – %s vs %s, %d plies, %s",
                        item.game_id,
                        item.white,
                        item.black,
                        item.ply_count,
                        item.enrichment_mode.value,
                    )
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    return orchestrator.counters


if __name__ == "__main__":
    run_ingestion()
