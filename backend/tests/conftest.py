"""
Shared fixtures for cart tests.

The engine is wired to the in-memory store and a fake product catalog so
that tests exercise real store, pricing and mutation code without network
access.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from cart_service.core.exceptions import GatewayUnavailable
from cart_service.models.product import ProductInfo, ProductVariant
from cart_service.services.availability_gateway import AvailabilityGateway
from cart_service.services.cart_engine import CartEngine
from cart_service.services.cart_mutations import MutationContext
from cart_service.services.coupon_validator import StaticCouponValidator
from cart_service.services.memory_store import MemoryCartStore
from cart_service.services.merge_engine import MergeEngine
from cart_service.services.pricing import PricingPolicy
from cart_service.utils.helpers import get_current_timestamp


def make_product(
    product_id: str,
    price: str,
    stock: Optional[int] = 100,
    name: Optional[str] = None,
    variants: Optional[List[ProductVariant]] = None
) -> ProductInfo:
    return ProductInfo(
        id=product_id,
        name=name or f"Product {product_id}",
        sku=f"SKU-{product_id}",
        price=Decimal(price),
        images=[f"https://example.com/{product_id}.jpg"],
        category="general",
        brand="Acme",
        in_stock=stock is None or stock > 0,
        available_quantity=stock,
        variants=variants or []
    )


class FakeGateway(AvailabilityGateway):
    """Product catalog held in memory."""

    def __init__(self, products: Optional[List[ProductInfo]] = None):
        self.products: Dict[str, ProductInfo] = {p.id: p for p in products or []}
        self.unavailable = False
        self.calls = 0

    def put(self, product: ProductInfo) -> None:
        self.products[product.id] = product

    def remove(self, product_id: str) -> None:
        self.products.pop(product_id, None)

    def _check(self):
        self.calls += 1
        if self.unavailable:
            raise GatewayUnavailable()

    async def get_product(self, product_id: str) -> Optional[ProductInfo]:
        self._check()
        return self.products.get(product_id)

    async def get_products(self, product_ids: List[str]) -> List[ProductInfo]:
        self._check()
        return [self.products[pid] for pid in product_ids if pid in self.products]

    async def check_stock(self, product_id: str, variant_id: Optional[str] = None, quantity: int = 1) -> bool:
        self._check()
        product = self.products.get(product_id)
        offer = product.offer_for(variant_id) if product else None
        return bool(offer and offer.can_supply(quantity))


class Clock:
    """Controllable clock."""

    def __init__(self):
        self.now = get_current_timestamp()

    def __call__(self):
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store():
    return MemoryCartStore(retry_backoff=0)


@pytest.fixture
def gateway():
    return FakeGateway([
        make_product("p1", "20.00"),
        make_product("p2", "50.00", stock=5),
        make_product("p3", "75.00", stock=3),
        make_product(
            "shirt",
            "25.00",
            variants=[
                ProductVariant(id="red-m", name="Red M", price=Decimal("25.00"), available_quantity=4),
                ProductVariant(id="blue-l", name="Blue L", price=Decimal("27.50"), in_stock=False, available_quantity=0),
            ]
        ),
    ])


@pytest.fixture
def engine(store, gateway, clock):
    return CartEngine(store, gateway, max_items=50, clock=clock)


@pytest.fixture
def merge_engine(engine):
    return MergeEngine(engine)


@pytest.fixture
def mutation_context():
    return MutationContext(
        now=get_current_timestamp(),
        coupons=StaticCouponValidator(),
        policy=PricingPolicy(),
        max_items=10
    )
