"""
CARTOPS - Firestore Cart Repository

Reads and writes the dashboard's existing Firestore documents.

Cart document (collection `carts`):
    nombre, status, updated_at
    productos: [{product_id, producto, marca, presentacion,
                 cantidad_default, precio_unitario, tipo}]
    missing:   [{product_id, producto, marca, presentacion,
                 cantidad_missing, stock_found}]

Bottle document (collection `alcohol_bottles`):
    nombre | type_id, marca, tipo, volumen_ml, precio_unitario,
    contenido_alcohol_porcentaje, peso_botella_vacia_gramos,
    peso_botella_llena_gramos, densidad_liquido_g_ml
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from google.api_core import exceptions as google_exceptions
from pydantic import ValidationError

from cartops.core.config import settings
from cartops.core.exceptions import CartNotFoundError, PersistenceError
from cartops.core.types import to_decimal
from cartops.models.bottles import CatalogBottleType
from cartops.models.cart import Cart, CartLineItem, CartStatus, LedgerEntry
from cartops.services.persistence.repository import CartRepository

logger = logging.getLogger(__name__)


ALCOHOL_TAG = "botella_alcohol"


# =============================================================================
# DOCUMENT MAPPING
# =============================================================================

def _int(value: Any) -> int:
    dec = to_decimal(value)
    return int(dec) if dec is not None and dec > 0 else 0


def _positive(value: Any) -> Optional[Decimal]:
    dec = to_decimal(value)
    return dec if dec is not None and dec > 0 else None


def line_item_from_doc(data: dict[str, Any]) -> CartLineItem:
    tag = data.get("tipo") or None
    return CartLineItem(
        product_id=str(data.get("product_id", "")),
        product_name=data.get("producto") or "",
        brand=data.get("marca") or "",
        presentation=data.get("presentacion") or "",
        expected_quantity=_int(data.get("cantidad_default")),
        unit_price=to_decimal(data.get("precio_unitario")) or Decimal("0"),
        tag=tag,
        # Bottle line items reuse the alcohol_bottles document id
        catalog_bottle_id=str(data["product_id"]) if tag == ALCOHOL_TAG and data.get("product_id") else None,
    )


def ledger_entry_from_doc(data: dict[str, Any]) -> Optional[LedgerEntry]:
    # Legacy carts store missing as a list of plain strings
    if not isinstance(data, dict):
        return None
    return LedgerEntry(
        product_id=str(data.get("product_id", "")),
        product_name=data.get("producto") or "",
        brand=data.get("marca") or "",
        presentation=data.get("presentacion") or "",
        missing=_int(data.get("cantidad_missing")),
        found=_int(data.get("stock_found")),
    )


def ledger_entry_to_doc(entry: LedgerEntry) -> dict[str, Any]:
    return {
        "product_id": entry.product_id,
        "producto": entry.product_name,
        "marca": entry.brand,
        "presentacion": entry.presentation,
        "cantidad_missing": entry.missing,
        "stock_found": entry.found,
    }


def cart_from_doc(cart_id: str, data: dict[str, Any]) -> Cart:
    ledger = [ledger_entry_from_doc(raw) for raw in data.get("missing") or []]
    status = data.get("status") or CartStatus.CLEANING.value
    try:
        cart_status = CartStatus(status)
    except ValueError:
        logger.warning(f"Cart {cart_id} has unknown status '{status}', treating as Cleaning")
        cart_status = CartStatus.CLEANING

    updated_at = data.get("updated_at")
    return Cart(
        cart_id=cart_id,
        name=data.get("nombre") or "",
        line_items=[line_item_from_doc(raw) for raw in data.get("productos") or []],
        ledger=[entry for entry in ledger if entry is not None],
        status=cart_status,
        updated_at=updated_at if isinstance(updated_at, datetime) else None,
    )


def catalog_bottle_from_doc(doc_id: str, data: dict[str, Any]) -> CatalogBottleType:
    return CatalogBottleType(
        id=doc_id,
        name=data.get("nombre") or data.get("type_id") or "",
        brand=data.get("marca") or "",
        liquor_type=data.get("tipo") or "",
        volume_ml=_int(data.get("volumen_ml")),
        empty_weight_g=_positive(data.get("peso_botella_vacia_gramos")),
        full_weight_g=_positive(data.get("peso_botella_llena_gramos")),
        density_g_ml=_positive(data.get("densidad_liquido_g_ml")),
        unit_price=to_decimal(data.get("precio_unitario")) or Decimal("0"),
        alcohol_percentage=to_decimal(data.get("contenido_alcohol_porcentaje")) or Decimal("0"),
    )


# =============================================================================
# REPOSITORY
# =============================================================================

class FirestoreCartRepository(CartRepository):
    """CartRepository over the firebase-admin async Firestore client."""

    def __init__(
        self,
        client=None,
        carts_collection: Optional[str] = None,
        catalog_collection: Optional[str] = None,
    ) -> None:
        if client is None:
            from cartops.core.firebase import get_firestore_client
            client = get_firestore_client()
        self.client = client
        self.carts_collection = carts_collection or settings.CARTS_COLLECTION
        self.catalog_collection = catalog_collection or settings.BOTTLE_CATALOG_COLLECTION

    def _cart_ref(self, cart_id: str):
        return self.client.collection(self.carts_collection).document(cart_id)

    async def get_cart(self, cart_id: str) -> Cart:
        try:
            snapshot = await self._cart_ref(cart_id).get()
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Firestore read failed for cart {cart_id}: {e}")
            raise PersistenceError(f"Could not read cart {cart_id}: {e}") from e

        if not snapshot.exists:
            raise CartNotFoundError(f"Cart {cart_id} not found")
        return cart_from_doc(cart_id, snapshot.to_dict() or {})

    async def _update(self, cart_id: str, fields: dict[str, Any]) -> None:
        fields["updated_at"] = datetime.utcnow()
        try:
            await self._cart_ref(cart_id).update(fields)
        except google_exceptions.NotFound as e:
            raise CartNotFoundError(f"Cart {cart_id} not found") from e
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Firestore write failed for cart {cart_id}: {e}")
            raise PersistenceError(f"Could not update cart {cart_id}: {e}") from e

    async def save_ledger(self, cart_id: str, ledger: list[LedgerEntry]) -> None:
        await self._update(cart_id, {"missing": [ledger_entry_to_doc(entry) for entry in ledger]})
        logger.info(f"Saved ledger for cart {cart_id} ({len(ledger)} entries)")

    async def save_status(self, cart_id: str, status: CartStatus) -> None:
        await self._update(cart_id, {"status": status.value})
        logger.info(f"Saved status {status.value} for cart {cart_id}")

    async def list_catalog(self) -> list[CatalogBottleType]:
        catalog: list[CatalogBottleType] = []
        try:
            async for snapshot in self.client.collection(self.catalog_collection).stream():
                try:
                    catalog.append(catalog_bottle_from_doc(snapshot.id, snapshot.to_dict() or {}))
                except ValidationError as e:
                    logger.warning(f"Skipping catalog bottle {snapshot.id}: {e}")
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Firestore catalog read failed: {e}")
            raise PersistenceError(f"Could not read bottle catalog: {e}") from e

        logger.info(f"Loaded {len(catalog)} catalog bottle types")
        return catalog
