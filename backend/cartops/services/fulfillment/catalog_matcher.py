"""
CARTOPS - Catalog Matcher
Fuzzy-scores a vision detection against the bottle catalog.

LOGIC:
1. Normalize every string (lowercase, trim)
2. Score each candidate additively using MatchRules
3. Highest score wins, first-seen on ties
4. Below min_score -> null match with score 0

An unmatched detection is safer than a wrong match: matches drive ledger
and inventory corrections downstream.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence

from cartops.models.bottles import CatalogBottleType, CatalogMatch, DetectedBottleObservation

logger = logging.getLogger(__name__)


STOP_WORDS = frozenset({"botella", "bottle", "de", "the", "of", "and", "y"})


@dataclass(frozen=True)
class MatchRules:
    """Score table. Zero disables a rule."""
    brand_exact: int = 150
    brand_partial: int = 100
    brand_word: int = 40
    name_partial: int = 80
    name_word: int = 30
    type_partial: int = 50
    label_in_name: int = 60
    label_in_brand: int = 60
    keyword_name: int = 15
    keyword_brand: int = 20
    keyword_type: int = 10
    min_score: int = 50


# General detection: word and keyword overlap bonuses on.
DETECTION_RULES = MatchRules()

# Live camera scanning: whole-field containment only.
STRICT_RULES = replace(
    DETECTION_RULES,
    brand_word=0,
    name_word=0,
    keyword_name=0,
    keyword_brand=0,
    keyword_type=0,
)


def _normalize(value: Optional[str]) -> str:
    return (value or "").lower().strip()


def _contains_either(a: str, b: str) -> bool:
    """Substring in either direction. Empty strings never match."""
    if not a or not b:
        return False
    return a in b or b in a


def _words(text: str) -> list[str]:
    return [word for word in text.split(" ") if len(word) > 2]


def extract_keywords(*fields: str) -> list[str]:
    """Tokens longer than 2 chars, stop-words removed."""
    text = " ".join(fields)
    return [word for word in _words(text) if word not in STOP_WORDS]


class CatalogMatcher:
    """Matches detected bottle descriptions to catalog bottle types."""

    def __init__(self, rules: MatchRules = DETECTION_RULES, strict_rules: MatchRules = STRICT_RULES) -> None:
        self.rules = rules
        self.strict_rules = strict_rules

    def score(
        self,
        candidate: CatalogBottleType,
        label: str,
        brand: str = "",
        product_name: str = "",
        liquor_type: str = "",
        rules: MatchRules = DETECTION_RULES,
        keywords: Optional[list[str]] = None,
    ) -> int:
        """Additive score of one candidate. Inputs must already be normalized."""
        score = 0

        candidate_name = _normalize(candidate.name)
        candidate_brand = _normalize(candidate.brand)
        candidate_type = _normalize(candidate.liquor_type)

        # Brand (highest weight)
        if brand and candidate_brand:
            if candidate_brand == brand:
                score += rules.brand_exact
            elif _contains_either(candidate_brand, brand):
                score += rules.brand_partial
            if rules.brand_word:
                score += sum(rules.brand_word for word in _words(brand) if word in candidate_brand)

        # Product name
        if product_name and candidate_name:
            if _contains_either(candidate_name, product_name):
                score += rules.name_partial
            if rules.name_word:
                score += sum(rules.name_word for word in _words(product_name) if word in candidate_name)

        # Liquor type
        if _contains_either(candidate_type, liquor_type):
            score += rules.type_partial

        # Full label
        if _contains_either(candidate_name, label):
            score += rules.label_in_name
        if _contains_either(candidate_brand, label):
            score += rules.label_in_brand

        # Free-form keyword overlap
        for keyword in keywords or []:
            if keyword in candidate_name:
                score += rules.keyword_name
            if keyword in candidate_brand:
                score += rules.keyword_brand
            if keyword in candidate_type:
                score += rules.keyword_type

        return score

    def match(
        self,
        label: str,
        brand: Optional[str] = None,
        product_name: Optional[str] = None,
        liquor_type: Optional[str] = None,
        catalog: Sequence[CatalogBottleType] = (),
        strict: bool = False,
    ) -> CatalogMatch:
        """
        Best catalog entry for a detection.

        Args:
            label: Free-text label read by the vision service
            brand / product_name / liquor_type: Optional structured fields
            catalog: Reference bottle types
            strict: Live-scanning variant (no word/keyword bonuses)

        Returns:
            CatalogMatch with bottle=None and score=0 below the acceptance score
        """
        if not catalog:
            return CatalogMatch()

        rules = self.strict_rules if strict else self.rules

        normalized_label = _normalize(label)
        normalized_brand = _normalize(brand)
        normalized_name = _normalize(product_name)
        normalized_type = _normalize(liquor_type)

        keywords: list[str] = []
        if rules.keyword_name or rules.keyword_brand or rules.keyword_type:
            keywords = extract_keywords(normalized_label, normalized_brand, normalized_name, normalized_type)

        best: Optional[CatalogBottleType] = None
        best_score = 0
        for candidate in catalog:
            candidate_score = self.score(
                candidate,
                normalized_label,
                normalized_brand,
                normalized_name,
                normalized_type,
                rules=rules,
                keywords=keywords,
            )
            if candidate_score > best_score:
                best = candidate
                best_score = candidate_score

        if best is None or best_score < rules.min_score:
            logger.info(f"No catalog match for '{label}' (best score {best_score})")
            return CatalogMatch()

        logger.info(f"Matched '{label}' -> {best.name} ({best.brand}) score={best_score}")
        return CatalogMatch(bottle=best, score=best_score)

    def match_observation(
        self,
        observation: DetectedBottleObservation,
        catalog: Sequence[CatalogBottleType],
        strict: bool = False,
    ) -> CatalogMatch:
        return self.match(
            observation.label,
            observation.brand,
            observation.product_name,
            observation.liquor_type,
            catalog=catalog,
            strict=strict,
        )


# Singleton instance
catalog_matcher = CatalogMatcher()
