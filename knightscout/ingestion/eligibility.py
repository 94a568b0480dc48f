# ==============================================================================
# eligibility.py  –  Is a fetched game usable downstream?
# ------------------------------------------------------------------------------
# Rules, in order:
#   1. Fewer than `min_plies` half-moves → rejected
#   2. No usable evaluation → forwarded in NEUTRAL enrichment mode
#   3. Otherwise → forwarded in EXTERNAL enrichment mode
# ==============================================================================

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from knightscout.ingestion.models import EnrichmentMode, SourceItem


@dataclass(frozen=True)
class Verdict:
    accepted: bool
    item: SourceItem
    reason: str = ""


class EligibilityFilter:
    def __init__(self, min_plies: int = 20, min_eval_depth: int = 0) -> None:
        self.min_plies = min_plies
        self.min_eval_depth = min_eval_depth

    def accept(self, item: SourceItem) -> bool:
        return self.evaluate(item).accepted

    def evaluate(self, item: SourceItem) -> Verdict:
        """Decide on `item`; accepted items come back tagged with their mode."""
        if item.ply_count < self.min_plies:
            return Verdict(
                False, item, f"too short ({item.ply_count} < {self.min_plies} plies)"
            )

        mode = self.enrichment_mode(item)
        return Verdict(True, replace(item, enrichment_mode=mode))

    def enrichment_mode(self, item: SourceItem) -> EnrichmentMode:
        evaluation = item.evaluation
        if evaluation is None or (evaluation.cp is None and evaluation.mate is None):
            return EnrichmentMode.NEUTRAL
        if self._too_shallow(evaluation.depth):
            return EnrichmentMode.NEUTRAL
        return EnrichmentMode.EXTERNAL

    def _too_shallow(self, depth: Optional[int]) -> bool:
        # Server analysis reports no depth; only reported depths are checked.
        return depth is not None and depth < self.min_eval_depth
