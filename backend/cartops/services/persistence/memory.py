"""
CARTOPS - In-Memory Cart Repository

Used for tests and local runs without Firestore.
Write failures can be injected to exercise the no-advance-on-failure rules.
"""

import logging
from datetime import datetime
from typing import Optional

from cartops.core.exceptions import CartNotFoundError, PersistenceError
from cartops.models.bottles import CatalogBottleType
from cartops.models.cart import Cart, CartStatus, LedgerEntry
from cartops.services.persistence.repository import CartRepository

logger = logging.getLogger(__name__)


class InMemoryCartRepository(CartRepository):
    """
    Dict-backed repository.

    Stores copies so callers cannot mutate stored state by accident.
    """

    def __init__(
        self,
        carts: Optional[list[Cart]] = None,
        catalog: Optional[list[CatalogBottleType]] = None,
    ) -> None:
        self._carts: dict[str, Cart] = {}
        self._catalog: list[CatalogBottleType] = list(catalog or [])
        self._fail_writes: int = 0
        self.write_log: list[dict] = []
        for cart in carts or []:
            self.add_cart(cart)

    def add_cart(self, cart: Cart) -> None:
        self._carts[cart.cart_id] = cart.model_copy(deep=True)

    def set_catalog(self, catalog: list[CatalogBottleType]) -> None:
        self._catalog = list(catalog)

    def fail_next_writes(self, count: int = 1) -> None:
        """Make the next `count` writes raise PersistenceError."""
        self._fail_writes = count

    def _check_write(self, cart_id: str, operation: str) -> Cart:
        if self._fail_writes > 0:
            self._fail_writes -= 1
            logger.error(f"Injected write failure: {operation} on cart {cart_id}")
            raise PersistenceError(f"Write failed: {operation} on cart {cart_id}")
        cart = self._carts.get(cart_id)
        if cart is None:
            raise CartNotFoundError(f"Cart {cart_id} not found")
        return cart

    async def get_cart(self, cart_id: str) -> Cart:
        cart = self._carts.get(cart_id)
        if cart is None:
            raise CartNotFoundError(f"Cart {cart_id} not found")
        return cart.model_copy(deep=True)

    async def save_ledger(self, cart_id: str, ledger: list[LedgerEntry]) -> None:
        cart = self._check_write(cart_id, "save_ledger")
        self._carts[cart_id] = cart.model_copy(update={
            "ledger": [entry.model_copy() for entry in ledger],
            "updated_at": datetime.utcnow(),
        })
        self.write_log.append({"cart_id": cart_id, "ledger": len(ledger)})

    async def save_status(self, cart_id: str, status: CartStatus) -> None:
        cart = self._check_write(cart_id, "save_status")
        self._carts[cart_id] = cart.model_copy(update={
            "status": status,
            "updated_at": datetime.utcnow(),
        })
        self.write_log.append({"cart_id": cart_id, "status": status.value})

    async def list_catalog(self) -> list[CatalogBottleType]:
        return [bottle.model_copy() for bottle in self._catalog]
