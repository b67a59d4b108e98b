"""
CARTOPS - Bottle Reclamation Models
Contracts for the bottle-control pipeline.

RULES:
- Vision produces observations, never dispositions
- No catalog match or no scale weight -> percentage/ml stay None (unknown)
- 0 is a measured value ("confirmed empty"), None is "insufficient data"
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cartops.core.types import Density, Grams, Percentage, Price


# =============================================================================
# ENUMS
# =============================================================================

class Disposition(str, Enum):
    """What happens to a returned bottle."""
    REUSE = "reuse"        # > 50%: back into service unchanged
    COMPLETE = "complete"  # 25-50%: pair with another of the same type
    DISCARD = "discard"    # < 25%: replace, feeds the missing ledger


class ConfidenceBand(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def get_confidence_band(confidence: int) -> ConfidenceBand:
    """Bucket a 0-100 recognition confidence for display."""
    if confidence >= 70:
        return ConfidenceBand.HIGH
    if confidence >= 50:
        return ConfidenceBand.MEDIUM
    return ConfidenceBand.LOW


# =============================================================================
# CATALOG
# =============================================================================

class CatalogBottleType(BaseModel):
    """Reference entry for one purchasable bottle SKU. Read-only here."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str = ""
    brand: str = ""
    liquor_type: str = ""
    volume_ml: int = Field(0, ge=0)
    empty_weight_g: Optional[Grams] = None
    full_weight_g: Optional[Grams] = None
    density_g_ml: Optional[Density] = None
    unit_price: Price = Decimal("0")
    alcohol_percentage: Decimal = Decimal("0")

    @model_validator(mode="after")
    def _empty_lighter_than_full(self) -> "CatalogBottleType":
        if (
            self.empty_weight_g is not None
            and self.full_weight_g is not None
            and self.empty_weight_g >= self.full_weight_g
        ):
            raise ValueError(
                f"empty_weight_g ({self.empty_weight_g}) must be lower than "
                f"full_weight_g ({self.full_weight_g})"
            )
        return self

    @property
    def has_reference_weights(self) -> bool:
        return bool(self.empty_weight_g) and bool(self.full_weight_g)


class CatalogMatch(BaseModel):
    """Best catalog candidate for one observation."""
    bottle: Optional[CatalogBottleType] = None
    score: int = 0


# =============================================================================
# DETECTION
# =============================================================================

class BoundingBox(BaseModel):
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0


class DetectedBottleObservation(BaseModel):
    """One bottle recognized in one camera frame."""
    label: str = ""
    brand: Optional[str] = None
    product_name: Optional[str] = None
    liquor_type: Optional[str] = None
    volume: Optional[str] = None
    confidence: Percentage = 0
    box: Optional[BoundingBox] = None
    scale_weight_g: Optional[Grams] = None


class DetectionFrame(BaseModel):
    """Vision output for one frame. One scale reading applies to every bottle."""
    observations: list[DetectedBottleObservation] = Field(default_factory=list)
    scale_weight_g: Optional[Grams] = None
    mock: bool = False


class MatchedBottle(DetectedBottleObservation):
    """An observation enriched with catalog match and liquid level."""
    bottle_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    catalog_bottle: Optional[CatalogBottleType] = None
    match_score: int = 0
    percentage: Optional[Percentage] = None
    remaining_ml: Optional[int] = Field(None, ge=0)
    disposition: Optional[Disposition] = None
    merged: bool = False
    detected_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def catalog_type_id(self) -> Optional[str]:
        return self.catalog_bottle.id if self.catalog_bottle else None

    @property
    def has_level(self) -> bool:
        return self.percentage is not None and self.remaining_ml is not None

    @property
    def confidence_band(self) -> ConfidenceBand:
        return get_confidence_band(self.confidence)


class BottlePair(BaseModel):
    """Two completion-band bottles of one type whose sum clears reuse."""
    pair_id: str
    catalog_type_id: str
    bottle1: MatchedBottle
    bottle2: MatchedBottle
    combined_percentage: int
    combined_ml: int


# =============================================================================
# SESSION
# =============================================================================

class SessionStats(BaseModel):
    processed: int = 0
    reused: int = 0
    completed: int = 0
    discarded: int = 0
    merged: int = 0


class SessionSnapshot(BaseModel):
    """State of a bottle-control session after one poll."""
    cart_id: str
    tick: int
    skipped: bool = False
    detected: list[MatchedBottle] = Field(default_factory=list)
    working_set: list[MatchedBottle] = Field(default_factory=list)
    pending_pairs: list[BottlePair] = Field(default_factory=list)
    stats: SessionStats = Field(default_factory=SessionStats)
    notice: Optional[str] = None
    cooldown_remaining_seconds: Optional[float] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
