"""
CARTOPS - Cart Fulfillment & Bottle Reclamation Engine

Leaves first:
    liquid_level     scale weight -> % / ml remaining
    catalog_matcher  detection -> catalog bottle type
    disposition      % -> reuse / complete / discard
    pairing_engine   completion-band pairs and merges
    reconciler       missing-items ledger
    phase_fsm        cleaning -> bottle-control -> finished
"""

from cartops.services.fulfillment.bottle_session import BottleControlSession
from cartops.services.fulfillment.catalog_matcher import (
    DETECTION_RULES,
    STRICT_RULES,
    CatalogMatcher,
    MatchRules,
    catalog_matcher,
)
from cartops.services.fulfillment.disposition import DispositionClassifier, disposition_classifier
from cartops.services.fulfillment.engine import FulfillmentEngine, fulfillment_engine
from cartops.services.fulfillment.liquid_level import LiquidLevelCalculator, liquid_level_calculator
from cartops.services.fulfillment.pairing_engine import PairingEngine, pairing_engine
from cartops.services.fulfillment.phase_fsm import (
    CartPhaseMachine,
    cart_has_alcohol,
    derive_phase,
    is_alcohol_item,
)
from cartops.services.fulfillment.reconciler import MissingItemReconciler, missing_item_reconciler

__all__ = [
    "BottleControlSession",
    "CatalogMatcher",
    "MatchRules",
    "DETECTION_RULES",
    "STRICT_RULES",
    "catalog_matcher",
    "DispositionClassifier",
    "disposition_classifier",
    "FulfillmentEngine",
    "fulfillment_engine",
    "LiquidLevelCalculator",
    "liquid_level_calculator",
    "PairingEngine",
    "pairing_engine",
    "CartPhaseMachine",
    "cart_has_alcohol",
    "derive_phase",
    "is_alcohol_item",
    "MissingItemReconciler",
    "missing_item_reconciler",
]
