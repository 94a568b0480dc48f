# ==============================================================================
# logging_utils.py  –  Consistent dual-destination logging
#
# Features:
#   ✔ Console + timestamped file output
#   ✔ Log directory from KNIGHTSCOUT_LOG_DIR, else <repo>/logs
#   ✔ File output can be switched off (KNIGHTSCOUT_LOG_TO_FILE=false)
#   ✔ Idempotent: clears handlers before re-adding
# ==============================================================================

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

# ------------------------------------------------------------------------------
# Constants
# ------------------------------------------------------------------------------

_FMT = "%(asctime)s | %(levelname)-8s | %(message)s"
_DEFAULT_LEVEL = logging.INFO
_NAMESPACE = "knightscout"


# ------------------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------------------


def _detect_logs_dir() -> Path:
    """
    Detect where logs should be stored.

    • KNIGHTSCOUT_LOG_DIR set → that directory
    • Local dev               → <repo>/logs
    """
    override = os.getenv("KNIGHTSCOUT_LOG_DIR")
    if override:
        return Path(override)

    return Path(__file__).resolve().parents[2] / "logs"


def _file_logging_enabled() -> bool:
    return os.getenv("KNIGHTSCOUT_LOG_TO_FILE", "true").strip().lower() in {
        "1",
        "true",
        "yes",
    }


def _init_file_handler(
    logs_dir: Path, logger_name: str, fmt: logging.Formatter
) -> Optional[logging.Handler]:
    """
    Create a timestamped FileHandler if directory is writable.
    Falls back to console logging if not.
    """
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        file_path = logs_dir / f"{logger_name}_{timestamp}.log"

        fh = logging.FileHandler(file_path, encoding="utf-8")
        fh.setFormatter(fmt)
        return fh
    except OSError:
        logging.getLogger().warning("Cannot write logs to %s", logs_dir)
        return None


# ------------------------------------------------------------------------------
# Public factory
# ------------------------------------------------------------------------------


def setup_logger(
    name: str,
    level: int = _DEFAULT_LEVEL,
    logs_dir: Union[str, Path, None] = None,
) -> logging.Logger:
    """
    Return a configured `logging.Logger` under the ``knightscout`` namespace.

    Parameters
    ----------
    name : str
        Short component name (used in the logger name and file naming).
    level : int
        Logging level (INFO by default).
    logs_dir : str | Path | None
        Override log directory (default: auto-detect).
    """
    logger = logging.getLogger(f"{_NAMESPACE}.{name}")
    logger.setLevel(level)

    # Clear existing handlers for idempotency
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(_FMT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if _file_logging_enabled():
        target_dir = Path(logs_dir) if logs_dir else _detect_logs_dir()
        file_handler = _init_file_handler(target_dir, name, formatter)
        if file_handler:
            logger.addHandler(file_handler)

    return logger
