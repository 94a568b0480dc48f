# ==============================================================================
# telemetry.py  –  Prometheus metrics for the game-acquisition pipeline
#
# Counters are module-level singletons on the default registry; the runner
# exposes them with `start_metrics_server` when METRICS_PORT is set.
# ==============================================================================

from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

from knightscout.utils.logging_utils import setup_logger

LOGGER = setup_logger("telemetry")

RATE_LIMIT_HITS = Counter(
    "knightscout_rate_limit_hits_total",
    "Number of 429 responses received, by endpoint (lichess and chess.com)",
    ["endpoint"],
)

COOLDOWN_WAITS = Counter(
    "knightscout_cooldown_waits_total",
    "Number of times ingestion suspended for an active cooldown",
)

EMPTY_BATCHES = Counter(
    "knightscout_empty_batches_total",
    "Batches that produced no accepted games",
)

POOL_FALLBACKS = Counter(
    "knightscout_pool_fallbacks_total",
    "Leaderboard fetches that fell back to the static player list",
)

GAMES = Counter(
    "knightscout_games_total",
    "Games seen by the pipeline, by outcome",
    ["outcome"],  # accepted | rejected | duplicate
)

UPSTREAM_ERRORS = Counter(
    "knightscout_upstream_errors_total",
    "Transient upstream failures treated as empty results",
)

FETCH_DURATION = Histogram(
    "knightscout_player_fetch_seconds",
    "Duration of a single player game-history call",
)


def start_metrics_server(port: int) -> None:
    """Expose metrics over HTTP; failures are logged, never fatal."""
    try:
        start_http_server(port)
        LOGGER.info("Metrics server listening on port %d", port)
    except OSError as exc:
        LOGGER.error("Failed to start metrics server on %d: %s", port, exc)
