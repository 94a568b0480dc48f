# ==============================================================================
# known_id_store.py  –  Durable, append-only record of ingested game ids
# ------------------------------------------------------------------------------
# Responsibilities:
#   • Create `ingested_game_ids` if missing
#   • Load every stored id to seed the in-run ledger
#   • Append new ids idempotently (insert only those not present)
# ==============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Set, Tuple

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from knightscout.utils.logging_utils import setup_logger

LOGGER = setup_logger("known_id_store")

METADATA = MetaData()
INGESTED_IDS_TBL = Table(
    "ingested_game_ids",
    METADATA,
    Column("id_game", String(32), primary_key=True),
    Column("ind_accepted", Boolean, nullable=False, default=True),
    Column("tm_ingested", DateTime),
)

_CHUNK = 500


class KnownIdStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.Session = sessionmaker(bind=engine)
        METADATA.create_all(engine, tables=[INGESTED_IDS_TBL])

    @classmethod
    def from_url(cls, url: str) -> "KnownIdStore":
        return cls(create_engine(url))

    def load_ids(self) -> Set[str]:
        """Every id ever recorded, accepted or not."""
        with self.Session() as session:
            rows = session.execute(select(INGESTED_IDS_TBL.c.id_game)).scalars()
            ids = set(rows)
        LOGGER.info("Loaded %d known game ids", len(ids))
        return ids

    def append(self, entries: Iterable[Tuple[str, bool]]) -> int:
        """
        Insert (id, accepted) pairs that are not stored yet.

        Returns
        -------
        int
            Number of rows inserted. Raises `SQLAlchemyError` after rolling
            back, so the caller can keep the ids pending.
        """
        entries = list(entries)
        if not entries:
            return 0

        inserted = 0
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        try:
            with self.Session.begin() as session:
                for chunk in _chunks(entries, _CHUNK):
                    ids = [game_id for game_id, _ in chunk]
                    existing = set(
                        session.execute(
                            select(INGESTED_IDS_TBL.c.id_game).where(
                                INGESTED_IDS_TBL.c.id_game.in_(ids)
                            )
                        ).scalars()
                    )
                    fresh = {
                        game_id: accepted
                        for game_id, accepted in chunk
                        if game_id not in existing
                    }
                    rows = [
                        {"id_game": game_id, "ind_accepted": accepted, "tm_ingested": now}
                        for game_id, accepted in fresh.items()
                    ]
                    if rows:
                        session.execute(INGESTED_IDS_TBL.insert(), rows)
                        inserted += len(rows)
        except SQLAlchemyError as exc:
            LOGGER.error("Error appending %d game ids – %s", len(entries), exc)
            raise

        LOGGER.debug("Stored %d new game ids", inserted)
        return inserted


def _chunks(items: List[Tuple[str, bool]], size: int):
    for start in range(0, len(items), size):
        yield items[start : start + size]
