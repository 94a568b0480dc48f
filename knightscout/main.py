#!/usr/bin/env python3
# ==============================================================================
#  KnightScout - main.py
#  Purpose: one-shot runner for the game-acquisition pipeline
# ==============================================================================

import sys
from pathlib import Path

# ------------------------------------------------------------------------------
# Paths & Imports
# ------------------------------------------------------------------------------

SRC_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SRC_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from knightscout.pipeline.run_ingestion import run_ingestion
from knightscout.utils.config import ConfigError, IngestionConfig
from knightscout.utils.logging_utils import setup_logger

logger = setup_logger("main")

# ------------------------------------------------------------------------------
# Stage Wrapper
# ------------------------------------------------------------------------------


def _stage(title, fn):
    """
    Run a pipeline stage with start → finish logging and full stacktrace on error.
    A ConfigError is passed through untouched; `main` reports it on one line.
    """
    logger.info("%s – started", title)
    try:
        result = fn()
        logger.info("%s – finished", title)
        return result
    except ConfigError:
        raise
    except Exception:
        logger.exception("%s – failed", title)
        raise


def main() -> int:
    try:
        config = IngestionConfig.from_env()
        counters = _stage("Game Acquisition", lambda: run_ingestion(config))
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    logger.info(
        "Accepted %d games over %d batches",
        counters.total_accepted,
        counters.batches_attempted,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
