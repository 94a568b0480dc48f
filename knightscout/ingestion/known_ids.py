# ==============================================================================
# known_ids.py  –  In-memory ledger of game ids already ingested
# ------------------------------------------------------------------------------
# Seeded from the durable store at startup, grows monotonically during a run.
# Ids added during the run are also queued in `pending` until the orchestrator
# flushes them to the durable store.
# ==============================================================================

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Tuple


class KnownIdLedger:
    """Set of known game ids; never shrinks."""

    def __init__(self, seed: Iterable[str] = ()) -> None:
        self._ids = set(seed)
        self._seed_size = len(self._ids)
        self._pending: Dict[str, bool] = {}

    def __contains__(self, game_id: object) -> bool:
        return game_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    @property
    def seed_size(self) -> int:
        return self._seed_size

    @property
    def added_this_run(self) -> int:
        return len(self._ids) - self._seed_size

    def add(self, game_id: str, accepted: bool = True) -> bool:
        """Record `game_id`; return False if it was already known."""
        if game_id in self._ids:
            return False
        self._ids.add(game_id)
        self._pending[game_id] = accepted
        return True

    def drain_pending(self) -> List[Tuple[str, bool]]:
        """Return and clear the (id, accepted) pairs not yet persisted."""
        pending = list(self._pending.items())
        self._pending.clear()
        return pending

    def requeue(self, pending: Iterable[Tuple[str, bool]]) -> None:
        """Put back pairs whose persistence failed."""
        for game_id, accepted in pending:
            self._pending.setdefault(game_id, accepted)
