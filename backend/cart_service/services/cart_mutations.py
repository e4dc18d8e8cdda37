"""
Pure cart mutations.

Each command transforms a Cart snapshot into a new Cart and never performs
I/O: live stock data is fetched by the caller and carried inside the command.
This lets the engine re-apply the same command to a freshly reloaded snapshot
when a concurrent write wins the compare-and-swap.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional, Tuple

from cart_service.core.exceptions import (
    CartFull,
    EmptyCart,
    InsufficientStock,
    InvalidQuantity,
    NotFound,
    OutOfStock,
)
from cart_service.models.cart import Cart, CartItem
from cart_service.models.product import ProductInfo, StockOffer
from cart_service.services.coupon_validator import CouponValidator
from cart_service.services.pricing import PricingPolicy, price_items


@dataclass(frozen=True)
class MutationContext:
    """Everything a mutation needs besides the cart itself."""
    now: datetime
    coupons: CouponValidator
    policy: PricingPolicy
    max_items: int = 50
    guest_ttl: int = 1800
    user_ttl: int = 2592000

    def ttl_for(self, cart: Cart) -> int:
        return self.guest_ttl if cart.is_guest else self.user_ttl


def reprice(cart: Cart, ctx: MutationContext) -> Cart:
    """Recompute derived amounts and slide the cart's expiry forward."""
    rule = ctx.coupons.lookup(cart.coupon_code)
    breakdown = price_items(cart.items, rule, ctx.policy)

    return cart.model_copy(update={
        "item_count": breakdown.item_count,
        "subtotal": breakdown.subtotal,
        "discount_amount": breakdown.discount_amount,
        "shipping_amount": breakdown.shipping_amount,
        "tax_amount": breakdown.tax_amount,
        "total_amount": breakdown.total_amount,
        "updated_at": ctx.now,
        "last_activity": ctx.now,
        "expires_at": ctx.now + timedelta(seconds=ctx.ttl_for(cart)),
    })


def _refresh_from_offer(item: CartItem, offer: StockOffer, quantity: int, now: datetime) -> CartItem:
    update = {
        "quantity": quantity,
        "product_name": offer.name,
        "product_sku": offer.sku,
        "product_image": offer.image,
        "category": offer.category,
        "brand": offer.brand,
        "is_in_stock": offer.in_stock,
        "available_quantity": offer.available_quantity,
    }
    if not item.price_overridden:
        update["unit_price"] = offer.price
    if quantity != item.quantity or update.get("unit_price", item.unit_price) != item.unit_price:
        update["updated_at"] = now
    return item.model_copy(update=update)


def _replace_item(items: Tuple[CartItem, ...], new_item: CartItem) -> Tuple[CartItem, ...]:
    return tuple(new_item if item.key == new_item.key else item for item in items)


def _without_item(items: Tuple[CartItem, ...], key) -> Tuple[CartItem, ...]:
    return tuple(item for item in items if item.key != key)


class CartCommand:
    """A single requested change to a cart."""

    def apply(self, cart: Cart, ctx: MutationContext) -> Cart:
        raise NotImplementedError


@dataclass(frozen=True)
class AddItem(CartCommand):
    offer: StockOffer
    quantity: int
    unit_price_override: Optional[Decimal] = None

    def apply(self, cart: Cart, ctx: MutationContext) -> Cart:
        if self.quantity < 1:
            raise InvalidQuantity()

        offer = self.offer
        if not offer.in_stock or offer.available_quantity == 0:
            raise OutOfStock(f"Product {offer.product_id} is out of stock")

        existing = cart.find_item(offer.product_id, offer.variant_id)
        new_quantity = self.quantity + (existing.quantity if existing else 0)
        if not offer.can_supply(new_quantity):
            raise InsufficientStock(
                f"Insufficient stock. Available: {offer.available_quantity}"
                + (f", in cart: {existing.quantity}" if existing else "")
            )

        if cart.item_count + self.quantity > ctx.max_items:
            raise CartFull(f"Cart cannot hold more than {ctx.max_items} items")

        if existing is not None:
            item = _refresh_from_offer(existing, offer, new_quantity, ctx.now)
            if self.unit_price_override is not None:
                item = item.model_copy(update={
                    "unit_price": self.unit_price_override,
                    "price_overridden": True,
                })
            item = item.model_copy(update={"updated_at": ctx.now})
            items = _replace_item(cart.items, item)
        else:
            overridden = self.unit_price_override is not None
            item = CartItem(
                product_id=offer.product_id,
                variant_id=offer.variant_id,
                quantity=self.quantity,
                unit_price=self.unit_price_override if overridden else offer.price,
                price_overridden=overridden,
                product_name=offer.name,
                product_sku=offer.sku,
                product_image=offer.image,
                category=offer.category,
                brand=offer.brand,
                is_in_stock=offer.in_stock,
                available_quantity=offer.available_quantity,
                added_at=ctx.now,
                updated_at=ctx.now
            )
            items = cart.items + (item,)

        return cart.model_copy(update={"items": items})


@dataclass(frozen=True)
class UpdateItem(CartCommand):
    product_id: str
    variant_id: Optional[str]
    quantity: int
    offer: Optional[StockOffer] = None  # Not needed when quantity is 0

    def apply(self, cart: Cart, ctx: MutationContext) -> Cart:
        existing = cart.find_item(self.product_id, self.variant_id)
        if existing is None:
            raise NotFound("Item not found in cart")

        if self.quantity <= 0:
            return RemoveItem(self.product_id, self.variant_id).apply(cart, ctx)

        if self.offer is None or not self.offer.in_stock:
            raise OutOfStock(f"Product {self.product_id} is out of stock")
        if not self.offer.can_supply(self.quantity):
            raise InsufficientStock(f"Insufficient stock. Available: {self.offer.available_quantity}")

        if cart.item_count - existing.quantity + self.quantity > ctx.max_items:
            raise CartFull(f"Cart cannot hold more than {ctx.max_items} items")

        item = _refresh_from_offer(existing, self.offer, self.quantity, ctx.now)
        item = item.model_copy(update={"updated_at": ctx.now})
        return cart.model_copy(update={"items": _replace_item(cart.items, item)})


@dataclass(frozen=True)
class RemoveItem(CartCommand):
    product_id: str
    variant_id: Optional[str] = None

    def apply(self, cart: Cart, ctx: MutationContext) -> Cart:
        key = (self.product_id, self.variant_id)
        if cart.find_item(*key) is None:
            raise NotFound("Item not found in cart")
        return cart.model_copy(update={"items": _without_item(cart.items, key)})


@dataclass(frozen=True)
class ClearCart(CartCommand):

    def apply(self, cart: Cart, ctx: MutationContext) -> Cart:
        return cart.model_copy(update={"items": (), "coupon_code": None})


@dataclass(frozen=True)
class ApplyCoupon(CartCommand):
    code: str

    def apply(self, cart: Cart, ctx: MutationContext) -> Cart:
        if cart.is_empty:
            raise EmptyCart("Cannot apply a coupon to an empty cart")
        rule = ctx.coupons.validate(self.code, cart.subtotal)
        return cart.model_copy(update={"coupon_code": rule.code})


@dataclass(frozen=True)
class RemoveCoupon(CartCommand):

    def apply(self, cart: Cart, ctx: MutationContext) -> Cart:
        return cart.model_copy(update={"coupon_code": None})


@dataclass(frozen=True)
class RefreshItems(CartCommand):
    """
    Revalidate every line against live catalog data.

    Lines whose product or variant is gone, or which have no stock left, are
    dropped; quantities are clamped down to available stock. Lines for
    products outside ``checked`` (added after the lookup) are kept as-is.
    """
    products: Dict[str, ProductInfo] = field(default_factory=dict)
    checked: FrozenSet[str] = frozenset()

    def apply(self, cart: Cart, ctx: MutationContext) -> Cart:
        items: List[CartItem] = []
        for item in cart.items:
            if item.product_id not in self.checked:
                items.append(item)
                continue
            product = self.products.get(item.product_id)
            offer = product.offer_for(item.variant_id) if product else None
            if offer is None:
                continue
            quantity = offer.clamp(item.quantity)
            if quantity <= 0:
                continue
            items.append(_refresh_from_offer(item, offer, quantity, ctx.now))
        return cart.model_copy(update={"items": tuple(items)})


@dataclass(frozen=True)
class MergeItems(CartCommand):
    """
    Fold guest lines into a user cart.

    Matching lines sum their quantities; new lines are appended while the cart
    has room. Both are clamped to live stock and to the remaining item cap.
    Lines whose product is gone or unavailable are skipped.
    """
    guest_items: Tuple[CartItem, ...]
    products: Dict[str, ProductInfo]
    user_id: str

    def apply(self, cart: Cart, ctx: MutationContext) -> Cart:
        items = list(cart.items)
        for guest_item in self.guest_items:
            product = self.products.get(guest_item.product_id)
            offer = product.offer_for(guest_item.variant_id) if product else None
            if offer is None:
                continue

            item_count = sum(item.quantity for item in items)
            index = next(
                (i for i, item in enumerate(items) if item.key == guest_item.key),
                None
            )

            if index is not None:
                existing = items[index]
                room = ctx.max_items - (item_count - existing.quantity)
                quantity = min(offer.clamp(existing.quantity + guest_item.quantity), room)
                if quantity <= 0:
                    continue
                items[index] = _refresh_from_offer(existing, offer, quantity, ctx.now)
            else:
                room = ctx.max_items - item_count
                quantity = min(offer.clamp(guest_item.quantity), room)
                if quantity <= 0:
                    continue
                items.append(_refresh_from_offer(guest_item, offer, quantity, ctx.now))

        return cart.model_copy(update={
            "items": tuple(items),
            "user_id": self.user_id,
            "session_id": None,
        })


def apply_mutation(cart: Cart, command: CartCommand, ctx: MutationContext) -> Cart:
    """Apply one command to a cart snapshot and recompute its pricing."""
    return reprice(command.apply(cart, ctx), ctx)
