"""
CARTOPS - Cart Repository Interface

Contract:
    - Reads: one cart, the bottle catalog
    - Writes: a cart's ledger, a cart's status
    - Every call is awaited; a failed write raises PersistenceError
    - A missing cart raises CartNotFoundError
"""

from abc import ABC, abstractmethod

from cartops.models.bottles import CatalogBottleType
from cartops.models.cart import Cart, CartStatus, LedgerEntry


class CartRepository(ABC):
    """Persistence collaborator for carts and the bottle catalog."""

    @abstractmethod
    async def get_cart(self, cart_id: str) -> Cart:
        """Load a cart with its line items, ledger and status."""
        pass

    @abstractmethod
    async def save_ledger(self, cart_id: str, ledger: list[LedgerEntry]) -> None:
        """Replace the cart's missing-items ledger."""
        pass

    @abstractmethod
    async def save_status(self, cart_id: str, status: CartStatus) -> None:
        """Persist the cart's lifecycle status."""
        pass

    @abstractmethod
    async def list_catalog(self) -> list[CatalogBottleType]:
        """All reference bottle types."""
        pass
