"""
CARTOPS - Bottle Pairing Engine
Proposes and applies merges of two partially-consumed bottles of one type.

RULES:
- Proposing pairs and applying a merge are separate, user-triggered steps
- A bottle sits in at most one pending pair
- Merged bottles are disposed units and never pair again
- Inputs are never mutated; callers receive new lists
"""

import logging
from typing import Iterable, Optional

from cartops.core.exceptions import PairNotFoundError
from cartops.models.bottles import BottlePair, MatchedBottle
from cartops.services.fulfillment.disposition import DispositionClassifier, disposition_classifier

logger = logging.getLogger(__name__)


MERGE_CONFIDENCE_BOOST = 10
MERGED_LABEL_SUFFIX = " [combined]"


def make_pair_id(bottle1: MatchedBottle, bottle2: MatchedBottle) -> str:
    return f"{bottle1.bottle_id}:{bottle2.bottle_id}"


class PairingEngine:
    """Finds completion-band pairs in a working set and merges them."""

    def __init__(self, classifier: Optional[DispositionClassifier] = None) -> None:
        self.classifier = classifier or disposition_classifier

    def _eligible(self, bottle: MatchedBottle) -> bool:
        return (
            not bottle.merged
            and bottle.catalog_type_id is not None
            and bottle.has_level
            and self.classifier.in_completion_band(bottle.percentage)
        )

    def find_pairs(
        self,
        working_set: list[MatchedBottle],
        pending: Iterable[BottlePair] = (),
    ) -> list[BottlePair]:
        """
        One pass over the working set.

        Each unconsumed bottle pairs with the first later bottle of the same
        catalog type that it can be completed with. Returns the pending pairs
        still valid against the working set followed by the new ones.

        Observations carry no cross-frame identity, so one bottle seen in two
        frames can be proposed as a pair with itself. Pairs are proposals only;
        the operator confirms each one before it is merged.
        """
        present = {bottle.bottle_id for bottle in working_set}

        pairs: list[BottlePair] = []
        seen: set[str] = set()
        consumed: set[str] = set()

        for pair in pending:
            # Drop pairs whose bottles left the working set
            if pair.bottle1.bottle_id not in present or pair.bottle2.bottle_id not in present:
                continue
            if pair.pair_id in seen:
                continue
            pairs.append(pair)
            seen.add(pair.pair_id)
            consumed.update((pair.bottle1.bottle_id, pair.bottle2.bottle_id))

        new_count = 0
        for i, first in enumerate(working_set):
            if first.bottle_id in consumed or not self._eligible(first):
                continue

            for second in working_set[i + 1:]:
                if second.bottle_id in consumed or not self._eligible(second):
                    continue
                if second.catalog_type_id != first.catalog_type_id:
                    continue
                if not self.classifier.can_complete_together(first.percentage, second.percentage):
                    continue

                pair = BottlePair(
                    pair_id=make_pair_id(first, second),
                    catalog_type_id=first.catalog_type_id,
                    bottle1=first,
                    bottle2=second,
                    combined_percentage=first.percentage + second.percentage,
                    combined_ml=first.remaining_ml + second.remaining_ml,
                )
                if pair.pair_id not in seen:
                    pairs.append(pair)
                    seen.add(pair.pair_id)
                    new_count += 1
                consumed.update((first.bottle_id, second.bottle_id))
                break

        if new_count:
            logger.info(f"Proposed {new_count} new bottle pair(s), {len(pairs)} pending")
        return pairs

    def apply_merge(
        self,
        pair_id: str,
        working_set: list[MatchedBottle],
        pending: list[BottlePair],
    ) -> tuple[list[MatchedBottle], list[BottlePair], MatchedBottle]:
        """
        Apply a confirmed pair.

        bottle1 takes the combined level, a "[combined]" label, +10 confidence
        (max 100) and merged=True, keeping its position. bottle2 leaves the
        working set. Pending pairs touching either bottle are dropped.

        Returns:
            (new working set, new pending list, merged bottle)

        Raises:
            PairNotFoundError: pair_id is not pending or its bottles are gone
        """
        pair = next((p for p in pending if p.pair_id == pair_id), None)
        if pair is None:
            raise PairNotFoundError(f"Pair {pair_id} is not pending")

        keep_id = pair.bottle1.bottle_id
        drop_id = pair.bottle2.bottle_id

        current = next((b for b in working_set if b.bottle_id == keep_id), None)
        if current is None or not any(b.bottle_id == drop_id for b in working_set):
            raise PairNotFoundError(f"Pair {pair_id} refers to bottles no longer in the working set")

        label = current.label
        if not label.endswith(MERGED_LABEL_SUFFIX):
            label = f"{label}{MERGED_LABEL_SUFFIX}"

        merged = current.model_copy(update={
            "percentage": min(pair.combined_percentage, 100),
            "remaining_ml": pair.combined_ml,
            "label": label,
            "confidence": min(current.confidence + MERGE_CONFIDENCE_BOOST, 100),
            "merged": True,
        })

        new_working_set = []
        for bottle in working_set:
            if bottle.bottle_id == drop_id:
                continue
            new_working_set.append(merged if bottle.bottle_id == keep_id else bottle)

        touched = {keep_id, drop_id}
        new_pending = [
            p for p in pending
            if p.bottle1.bottle_id not in touched and p.bottle2.bottle_id not in touched
        ]

        logger.info(
            f"Merged bottles {keep_id} + {drop_id} ({pair.catalog_type_id}) -> "
            f"{merged.percentage}% / {merged.remaining_ml} ml"
        )
        return new_working_set, new_pending, merged


# Singleton instance
pairing_engine = PairingEngine()
