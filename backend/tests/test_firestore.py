"""
CARTOPS - Firestore Repository Tests

Document mapping against the dashboard's field names, and the repository
over a small in-process stand-in for the async Firestore client.
"""

import asyncio
from decimal import Decimal

import pytest
from google.api_core import exceptions as google_exceptions

from cartops.core.exceptions import CartNotFoundError, PersistenceError
from cartops.models.cart import CartStatus, LedgerEntry
from cartops.services.persistence.firestore import (
    FirestoreCartRepository,
    cart_from_doc,
    catalog_bottle_from_doc,
    ledger_entry_to_doc,
)


CART_DOC = {
    "nombre": "Carrito 12",
    "status": "Weighing",
    "productos": [
        {
            "product_id": "coca-cola-normal-355-ml",
            "producto": "Coca-Cola Normal",
            "marca": "Coca-Cola",
            "presentacion": "355 ml",
            "cantidad_default": 10,
            "precio_unitario": 1.5,
        },
        {
            "product_id": "absolut-vodka-750",
            "producto": "Absolut Vodka",
            "marca": "Absolut",
            "cantidad_default": 2,
            "precio_unitario": 189,
            "tipo": "botella_alcohol",
        },
    ],
    "missing": [
        {"product_id": "coca-cola-normal-355-ml", "producto": "Coca-Cola Normal", "cantidad_missing": 3, "stock_found": 7},
        "coca-cola",
    ],
}


# =============================================================================
# FIRESTORE STAND-IN
# =============================================================================

class Snapshot:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data
        self.exists = data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class DocumentRef:
    def __init__(self, store, doc_id, error=None):
        self.store = store
        self.doc_id = doc_id
        self.error = error

    async def get(self):
        if self.error:
            raise self.error
        return Snapshot(self.doc_id, self.store.get(self.doc_id))

    async def update(self, fields):
        if self.error:
            raise self.error
        if self.doc_id not in self.store:
            raise google_exceptions.NotFound(f"No document to update: {self.doc_id}")
        self.store[self.doc_id].update(fields)


class Collection:
    def __init__(self, store, error=None):
        self.store = store
        self.error = error

    def document(self, doc_id):
        return DocumentRef(self.store, doc_id, self.error)

    async def stream(self):
        for doc_id, data in self.store.items():
            yield Snapshot(doc_id, data)


class FirestoreStub:
    def __init__(self, collections, error=None):
        self.collections = collections
        self.error = error

    def collection(self, name):
        return Collection(self.collections.setdefault(name, {}), self.error)


def make_repository(carts=None, bottles=None, error=None) -> tuple[FirestoreCartRepository, dict]:
    collections = {"carts": carts or {}, "alcohol_bottles": bottles or {}}
    repository = FirestoreCartRepository(
        client=FirestoreStub(collections, error),
        carts_collection="carts",
        catalog_collection="alcohol_bottles",
    )
    return repository, collections


# =============================================================================
# MAPPING
# =============================================================================

class TestDocumentMapping:

    def test_cart_from_doc(self):
        cart = cart_from_doc("cart-12", CART_DOC)

        assert cart.name == "Carrito 12"
        assert cart.status == CartStatus.WEIGHING
        assert cart.line_items[0].expected_quantity == 10
        assert cart.line_items[0].unit_price == Decimal("1.5")
        assert cart.line_items[0].catalog_bottle_id is None
        assert cart.line_items[1].catalog_bottle_id == "absolut-vodka-750"
        # Legacy string entries are skipped
        assert len(cart.ledger) == 1
        assert cart.ledger[0].missing == 3
        assert cart.ledger[0].found == 7

    def test_unknown_status_is_cleaning(self):
        assert cart_from_doc("c", {"status": "Lavado"}).status == CartStatus.CLEANING

    def test_ledger_entry_to_doc(self):
        doc = ledger_entry_to_doc(LedgerEntry(product_id="p", product_name="Agua", missing=2, found=3))
        assert doc["cantidad_missing"] == 2
        assert doc["stock_found"] == 3
        assert doc["producto"] == "Agua"

    def test_catalog_bottle_from_doc(self):
        bottle = catalog_bottle_from_doc("absolut-vodka-750", {
            "nombre": "Absolut Vodka",
            "marca": "Absolut",
            "tipo": "vodka",
            "volumen_ml": 750,
            "peso_botella_vacia_gramos": 475,
            "peso_botella_llena_gramos": 1180.5,
            "densidad_liquido_g_ml": 0,
        })

        assert bottle.empty_weight_g == Decimal("475")
        assert bottle.full_weight_g == Decimal("1180.5")
        # Zero density means "not set"
        assert bottle.density_g_ml is None


# =============================================================================
# REPOSITORY
# =============================================================================

class TestRepository:

    def test_get_cart(self):
        repository, _ = make_repository(carts={"cart-12": dict(CART_DOC)})
        cart = asyncio.run(repository.get_cart("cart-12"))
        assert cart.cart_id == "cart-12"

    def test_missing_cart(self):
        repository, _ = make_repository()
        with pytest.raises(CartNotFoundError):
            asyncio.run(repository.get_cart("nope"))

    def test_save_ledger_and_status(self):
        repository, collections = make_repository(carts={"cart-12": dict(CART_DOC)})

        async def run():
            await repository.save_ledger("cart-12", [])
            await repository.save_status("cart-12", CartStatus.PICK_AND_PACK)

        asyncio.run(run())

        stored = collections["carts"]["cart-12"]
        assert stored["missing"] == []
        assert stored["status"] == "PickAndPack"
        assert "updated_at" in stored

    def test_update_unknown_cart(self):
        repository, _ = make_repository()
        with pytest.raises(CartNotFoundError):
            asyncio.run(repository.save_status("nope", CartStatus.WEIGHING))

    def test_api_error_is_persistence_error(self):
        repository, _ = make_repository(
            carts={"cart-12": dict(CART_DOC)},
            error=google_exceptions.ServiceUnavailable("firestore down"),
        )
        with pytest.raises(PersistenceError):
            asyncio.run(repository.save_ledger("cart-12", []))

    def test_list_catalog_skips_invalid_documents(self):
        repository, _ = make_repository(bottles={
            "absolut-vodka-750": {"nombre": "Absolut Vodka", "marca": "Absolut", "tipo": "vodka", "volumen_ml": 750},
            "broken": {"nombre": "Broken", "peso_botella_vacia_gramos": 900, "peso_botella_llena_gramos": 500},
        })

        catalog = asyncio.run(repository.list_catalog())

        assert [bottle.id for bottle in catalog] == ["absolut-vodka-750"]
