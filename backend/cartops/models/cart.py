"""
CARTOPS - Cart & Missing-Items Ledger Models

A cart is one prepared catering trolley. Its ledger lists the products whose
expected quantity was not confirmed present. Carts are generated elsewhere;
this package only mutates the ledger and the lifecycle status.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from cartops.core.types import Price


# =============================================================================
# ENUMS
# =============================================================================

class CartStatus(str, Enum):
    """Persisted lifecycle status."""
    CLEANING = "Cleaning"
    WEIGHING = "Weighing"
    PICK_AND_PACK = "PickAndPack"
    AIRBORNE = "Airborne"  # Set outside this package only


class ProcessPhase(str, Enum):
    """Fulfillment phase. Derived from status + cart contents, never stored."""
    CLEANING = "cleaning"
    BOTTLE_CONTROL = "bottle-control"
    FINISHED = "finished"


# =============================================================================
# CART CONTENTS
# =============================================================================

class CartLineItem(BaseModel):
    """One expected product on the cart."""
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    product_name: str = ""
    brand: str = ""
    presentation: str = ""
    expected_quantity: int = Field(..., ge=0)
    unit_price: Price = Decimal("0")
    tag: Optional[str] = None  # e.g. "botella_alcohol"
    catalog_bottle_id: Optional[str] = None


class LedgerEntry(BaseModel):
    """A product whose expected quantity was not confirmed present."""
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    product_name: str = ""
    brand: str = ""
    presentation: str = ""
    missing: int = Field(..., ge=0)
    found: int = Field(0, ge=0)


class Cart(BaseModel):
    """A catering trolley under fulfillment."""
    cart_id: str
    name: str = ""
    line_items: list[CartLineItem] = Field(default_factory=list)
    ledger: list[LedgerEntry] = Field(default_factory=list)
    status: CartStatus = CartStatus.CLEANING
    updated_at: Optional[datetime] = None

    def line_item(self, product_id: str) -> Optional[CartLineItem]:
        for item in self.line_items:
            if item.product_id == product_id:
                return item
        return None

    @property
    def expected_total(self) -> Decimal:
        """Sum of unit_price x expected_quantity."""
        return sum(
            (item.unit_price * item.expected_quantity for item in self.line_items),
            Decimal("0"),
        )

    @property
    def missing_total(self) -> Decimal:
        """Value of everything currently on the ledger."""
        total = Decimal("0")
        for entry in self.ledger:
            item = self.line_item(entry.product_id)
            if item:
                total += item.unit_price * entry.missing
        return total

    @property
    def ledger_is_clear(self) -> bool:
        return len(self.ledger) == 0


# =============================================================================
# VOICE INTERPRETATION
# =============================================================================

class ReportedQuantity(BaseModel):
    """One product the operator mentioned while cleaning."""
    product_id: str
    quantity_mentioned: int = Field(..., ge=0)


class VoiceReport(BaseModel):
    """Interpreted cleaning transcript."""
    products: list[ReportedQuantity] = Field(default_factory=list)
    unknown: list[str] = Field(default_factory=list)


# =============================================================================
# PHASE MACHINE
# =============================================================================

class PhaseTransition(BaseModel):
    """Phase transition record."""
    previous_phase: ProcessPhase
    current_phase: ProcessPhase
    status: CartStatus
    trigger_event: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class PhaseResult(BaseModel):
    """Outcome of completePhase."""
    cart_id: str
    phase: ProcessPhase
    status: CartStatus
    changed: bool
    message: str


class ReconciliationResult(BaseModel):
    """Outcome of a cleaning reconciliation."""
    cart_id: str
    ledger: list[LedgerEntry]
    unknown: list[str] = Field(default_factory=list)
