"""
CARTOPS - Missing-Item Reconciler
Maintains a cart's missing-quantity ledger.

Four ways the ledger changes:
    reconcile_from_report  voice report of what is present (clear-or-upsert)
    apply_correction       full replacement from a correction report
    apply_manual_entry     additive single-product entry
    clear / mark_collected operator actions

All methods are pure: they return a new ledger and never touch their inputs.
Unreported products are left as they are; silence is not evidence of absence.
"""

import logging
from typing import Iterable, Optional

from cartops.models.cart import CartLineItem, LedgerEntry, ReportedQuantity

logger = logging.getLogger(__name__)


def _index(items: Iterable[CartLineItem]) -> dict[str, CartLineItem]:
    return {item.product_id: item for item in items}


def _entry_for(item: CartLineItem, missing: int, found: int) -> LedgerEntry:
    return LedgerEntry(
        product_id=item.product_id,
        product_name=item.product_name,
        brand=item.brand,
        presentation=item.presentation,
        missing=missing,
        found=found,
    )


class MissingItemReconciler:
    """Builds new ledgers from reports, corrections and manual entries."""

    def reconcile_from_report(
        self,
        expected_items: list[CartLineItem],
        reported: list[ReportedQuantity],
        current_ledger: list[LedgerEntry],
    ) -> list[LedgerEntry]:
        """
        Apply a "what is actually here" report.

        Reported >= expected removes the product from the ledger. Otherwise
        the entry is upserted with missing = expected - reported. Reports for
        products the cart does not expect are ignored; repeated mentions of
        one product are summed.
        """
        expected = _index(expected_items)

        totals: dict[str, int] = {}
        for report in reported:
            if report.product_id not in expected:
                logger.warning(f"Ignoring report for unexpected product {report.product_id}")
                continue
            totals[report.product_id] = totals.get(report.product_id, 0) + report.quantity_mentioned

        ledger = [entry.model_copy() for entry in current_ledger]
        for product_id, mentioned in totals.items():
            item = expected[product_id]
            position = next((i for i, e in enumerate(ledger) if e.product_id == product_id), None)

            if mentioned >= item.expected_quantity:
                if position is not None:
                    ledger.pop(position)
                continue

            entry = _entry_for(item, item.expected_quantity - mentioned, mentioned)
            if position is None:
                ledger.append(entry)
            else:
                ledger[position] = entry

        logger.info(f"Reconciled {len(totals)} reported product(s); ledger has {len(ledger)} entries")
        return ledger

    def apply_correction(
        self,
        expected_items: list[CartLineItem],
        corrected: list[LedgerEntry],
    ) -> list[LedgerEntry]:
        """
        Normalize a full replacement ledger from a correction report.

        Applying the same correction twice yields the same ledger. Entries for
        products not on the cart, or with nothing missing, are dropped; missing
        is capped at the expected quantity; later duplicates win.
        """
        expected = _index(expected_items)

        by_product: dict[str, LedgerEntry] = {}
        for entry in corrected:
            item = expected.get(entry.product_id)
            if item is None:
                logger.warning(f"Dropping correction for unexpected product {entry.product_id}")
                by_product.pop(entry.product_id, None)
                continue
            missing = min(entry.missing, item.expected_quantity)
            if missing <= 0:
                by_product.pop(entry.product_id, None)
                continue
            by_product[entry.product_id] = _entry_for(item, missing, item.expected_quantity - missing)

        ledger = list(by_product.values())
        logger.info(f"Correction replaced ledger with {len(ledger)} entries")
        return ledger

    def apply_manual_entry(
        self,
        expected_items: list[CartLineItem],
        current_ledger: list[LedgerEntry],
        product_id: str,
        quantity: int,
    ) -> list[LedgerEntry]:
        """
        Add `quantity` to a product's missing count, inserting if absent.

        Raises:
            ValueError: unknown product or non-positive quantity
        """
        if quantity <= 0:
            raise ValueError(f"Quantity must be positive, got: {quantity}")

        item = _index(expected_items).get(product_id)
        if item is None:
            raise ValueError(f"Product {product_id} is not on this cart")

        ledger = [entry.model_copy() for entry in current_ledger]
        position = next((i for i, e in enumerate(ledger) if e.product_id == product_id), None)

        if position is None:
            missing = quantity
        else:
            missing = ledger[position].missing + quantity

        entry = _entry_for(item, missing, max(item.expected_quantity - missing, 0))
        if position is None:
            ledger.append(entry)
        else:
            ledger[position] = entry

        logger.info(f"Manual entry: {product_id} missing now {missing}")
        return ledger

    def clear(self) -> list[LedgerEntry]:
        return []

    def mark_collected(
        self,
        current_ledger: list[LedgerEntry],
        product_ids: Iterable[str],
    ) -> list[LedgerEntry]:
        """Remove products the operator has physically collected."""
        collected = set(product_ids)
        return [entry.model_copy() for entry in current_ledger if entry.product_id not in collected]

    def find_entry(self, ledger: list[LedgerEntry], product_id: str) -> Optional[LedgerEntry]:
        return next((e for e in ledger if e.product_id == product_id), None)


# Singleton instance
missing_item_reconciler = MissingItemReconciler()
