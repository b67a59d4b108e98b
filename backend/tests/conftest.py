"""
CARTOPS - shared test fixtures

Catalog, carts, repository and fake collaborators. Async code is
driven with asyncio.run from plain synchronous tests.
"""

from decimal import Decimal
from typing import Optional

import pytest

from cartops.models.bottles import CatalogBottleType, DetectedBottleObservation, DetectionFrame
from cartops.models.cart import Cart, CartLineItem
from cartops.services.frames import Frame
from cartops.services.persistence.memory import InMemoryCartRepository

from fakes import FakeClock, FakeVision, FakeVoice


# =============================================================================
# CATALOG
# =============================================================================

@pytest.fixture
def vodka() -> CatalogBottleType:
    """750 ml vodka: 475 g empty, 1180 g full (705 g of liquid)."""
    return CatalogBottleType(
        id="absolut-vodka-750",
        name="Absolut Vodka",
        brand="Absolut",
        liquor_type="vodka",
        volume_ml=750,
        empty_weight_g=Decimal("475"),
        full_weight_g=Decimal("1180"),
        density_g_ml=Decimal("0.94"),
        unit_price=Decimal("189.00"),
        alcohol_percentage=Decimal("40"),
    )


@pytest.fixture
def whiskey() -> CatalogBottleType:
    return CatalogBottleType(
        id="jack-daniels-750",
        name="Old No. 7",
        brand="Jack Daniel's",
        liquor_type="whiskey",
        volume_ml=750,
        empty_weight_g=Decimal("500"),
        full_weight_g=Decimal("1212"),
        density_g_ml=Decimal("0.95"),
        unit_price=Decimal("320.00"),
    )


@pytest.fixture
def catalog(vodka, whiskey) -> list[CatalogBottleType]:
    return [vodka, whiskey]


def vodka_observation(scale_weight: Optional[str] = None, **overrides) -> DetectedBottleObservation:
    fields = dict(
        label="Absolut Vodka 750ml",
        brand="Absolut",
        product_name="Vodka",
        liquor_type="vodka",
        volume="750ml",
        confidence=80,
        scale_weight_g=Decimal(scale_weight) if scale_weight else None,
    )
    fields.update(overrides)
    return DetectedBottleObservation(**fields)


@pytest.fixture
def vodka_frame():
    """Build a DetectionFrame of `count` vodka bottles on one scale reading."""
    def build(scale_weight: Optional[str], count: int = 1) -> DetectionFrame:
        weight = Decimal(scale_weight) if scale_weight else None
        return DetectionFrame(
            observations=[vodka_observation(scale_weight) for _ in range(count)],
            scale_weight_g=weight,
        )
    return build


# =============================================================================
# CARTS
# =============================================================================

@pytest.fixture
def coca_cola() -> CartLineItem:
    return CartLineItem(
        product_id="coca-cola-normal-355-ml",
        product_name="Coca-Cola Normal",
        brand="Coca-Cola",
        presentation="355 ml",
        expected_quantity=10,
        unit_price=Decimal("1.50"),
    )


@pytest.fixture
def water() -> CartLineItem:
    return CartLineItem(
        product_id="agua-natural-500-ml",
        product_name="Agua Natural",
        brand="Ciel",
        presentation="500 ml",
        expected_quantity=5,
        unit_price=Decimal("0.80"),
    )


@pytest.fixture
def vodka_item(vodka) -> CartLineItem:
    return CartLineItem(
        product_id=vodka.id,
        product_name=vodka.name,
        brand=vodka.brand,
        presentation="750 ml",
        expected_quantity=2,
        unit_price=vodka.unit_price,
        tag="botella_alcohol",
        catalog_bottle_id=vodka.id,
    )


@pytest.fixture
def soda_cart(coca_cola, water) -> Cart:
    """Cart without alcohol."""
    return Cart(cart_id="cart-soda", name="Soft drinks", line_items=[coca_cola, water])


@pytest.fixture
def bar_cart(coca_cola, vodka_item) -> Cart:
    """Cart with an alcohol bottle line item."""
    return Cart(cart_id="cart-bar", name="Bar", line_items=[coca_cola, vodka_item])


@pytest.fixture
def repository(soda_cart, bar_cart, catalog) -> InMemoryCartRepository:
    return InMemoryCartRepository(carts=[soda_cart, bar_cart], catalog=catalog)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_vision() -> FakeVision:
    return FakeVision()


@pytest.fixture
def fake_voice() -> FakeVoice:
    return FakeVoice()


@pytest.fixture
def frame() -> Frame:
    return Frame(data=b"\xff\xd8fake-jpeg")

