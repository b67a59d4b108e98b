"""
CARTOPS - Liquid-Level Calculator
Scale weight -> percentage remaining / ml remaining.

RULES:
- Pure functions, no side effects
- Missing inputs -> 0 for the raw formulas (clamp, never raise)
- ``measure`` is the gate used by the pipeline: no catalog weights or no
  scale reading -> (None, None), i.e. unknown, never a fake 0
"""

import logging
from decimal import Decimal
from typing import Optional

from cartops.core.types import round_half_up
from cartops.models.bottles import CatalogBottleType

logger = logging.getLogger(__name__)


DEFAULT_DENSITY = Decimal("0.94")  # ~40% ABV spirits

# First matching rule wins (substring, case-insensitive). Densities at 20°C.
DENSITY_RULES: list[tuple[tuple[str, ...], Decimal]] = [
    (("vodka",), Decimal("0.94")),
    (("whiskey", "whisky", "spirits"), Decimal("0.95")),
    (("rum", "ron"), Decimal("0.94")),
    (("tequila",), Decimal("0.95")),
    (("gin", "ginebra"), Decimal("0.94")),
    (("brandy", "cognac"), Decimal("0.96")),
    (("liqueur", "licor"), Decimal("1.05")),  # sugar
    (("wine", "vino"), Decimal("0.99")),
    (("champagne", "sparkling"), Decimal("0.99")),
    (("beer", "cerveza"), Decimal("1.01")),
]

# (max volume ml, empty glass weight g). Larger bottles fall through to the last band.
EMPTY_WEIGHT_BANDS: list[tuple[int, Decimal]] = [
    (100, Decimal("50")),    # miniatures
    (375, Decimal("250")),   # half bottle
    (750, Decimal("475")),   # standard 750 ml
    (1000, Decimal("550")),  # liter
]
LARGE_BOTTLE_EMPTY_WEIGHT = Decimal("700")


class LiquidLevelCalculator:
    """Converts a bottle's scale weight into remaining liquid."""

    def percentage(
        self,
        weight_now: Optional[Decimal],
        empty_weight: Optional[Decimal],
        full_weight: Optional[Decimal],
    ) -> int:
        """
        Percentage of liquid remaining, 0-100.

        Below-empty readings are measurement error and clamp to 0.
        """
        if not weight_now or not empty_weight or not full_weight:
            return 0

        liquid_now = weight_now - empty_weight
        if liquid_now < 0:
            return 0

        liquid_full = full_weight - empty_weight
        if liquid_full <= 0:
            return 0

        result = round_half_up(liquid_now / liquid_full * 100)
        return max(0, min(100, result))

    def remaining_ml(
        self,
        weight_now: Optional[Decimal],
        empty_weight: Optional[Decimal],
        density: Optional[Decimal] = None,
    ) -> int:
        """Millilitres remaining: (weight_now - empty_weight) / density."""
        if not weight_now or not empty_weight:
            return 0

        liquid_now = weight_now - empty_weight
        if liquid_now <= 0:
            return 0

        volume = liquid_now / (density or DEFAULT_DENSITY)
        return max(0, round_half_up(volume))

    def density_for_type(self, liquor_type: Optional[str]) -> Decimal:
        """Typical density for a liquor category; 0.94 when nothing matches."""
        type_lower = (liquor_type or "").lower()
        for keywords, density in DENSITY_RULES:
            if any(keyword in type_lower for keyword in keywords):
                return density
        return DEFAULT_DENSITY

    def standard_weights(self, volume_ml: int, liquor_type: Optional[str]) -> tuple[int, int, Decimal]:
        """
        Reference (empty_g, full_g, density) for a catalog entry lacking weights.

        Empty weight comes from standard glass per volume band; full weight adds
        volume x density for the liquor type.
        """
        density = self.density_for_type(liquor_type)

        empty = LARGE_BOTTLE_EMPTY_WEIGHT
        for max_volume, band_weight in EMPTY_WEIGHT_BANDS:
            if volume_ml <= max_volume:
                empty = band_weight
                break

        full = empty + Decimal(volume_ml) * density
        return round_half_up(empty), round_half_up(full), density

    def measure(
        self,
        bottle: Optional[CatalogBottleType],
        scale_weight: Optional[Decimal],
    ) -> tuple[Optional[int], Optional[int]]:
        """
        Percentage and ml for a matched bottle, or (None, None) when unknown.

        Requires a catalog match carrying both reference weights and a scale
        reading. Density falls back to 0.94 g/ml when the catalog has none.
        """
        if bottle is None or not bottle.has_reference_weights or not scale_weight:
            missing = []
            if bottle is None:
                missing.append("no catalog match")
            elif not bottle.has_reference_weights:
                missing.append(f"reference weights for {bottle.name or bottle.id}")
            if not scale_weight:
                missing.append("scale weight")
            logger.warning(f"Liquid level unknown: missing {', '.join(missing)}")
            return None, None

        percentage = self.percentage(scale_weight, bottle.empty_weight_g, bottle.full_weight_g)
        remaining = self.remaining_ml(scale_weight, bottle.empty_weight_g, bottle.density_g_ml)
        return percentage, remaining


# Singleton instance
liquid_level_calculator = LiquidLevelCalculator()
