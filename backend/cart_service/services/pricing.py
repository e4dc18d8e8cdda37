"""
Cart pricing.

Pure and deterministic: no I/O, no clock. Amounts are computed in a fixed
order (subtotal, discount, shipping, tax, total) and quantized to cents.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from cart_service.core.config import settings
from cart_service.models.cart import CartItem
from cart_service.models.coupon import CouponRule, CouponType
from cart_service.utils.helpers import to_money


@dataclass(frozen=True)
class PricingBreakdown:
    """Derived amounts of a cart."""
    item_count: int
    subtotal: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class PricingPolicy:
    """Flat-rate pricing parameters."""
    tax_rate: Decimal = Decimal("0.08")
    free_shipping_threshold: Decimal = Decimal("100")
    flat_shipping_fee: Decimal = Decimal("10.00")

    @classmethod
    def from_settings(cls, config=settings) -> "PricingPolicy":
        return cls(
            tax_rate=Decimal(str(config.DEFAULT_TAX_RATE)),
            free_shipping_threshold=Decimal(str(config.FREE_SHIPPING_THRESHOLD)),
            flat_shipping_fee=Decimal(str(config.FLAT_SHIPPING_FEE))
        )


def calculate_discount(subtotal: Decimal, rule: Optional[CouponRule]) -> Decimal:
    if rule is None or not rule.is_eligible(subtotal):
        return Decimal("0.00")

    if rule.type == CouponType.PERCENTAGE:
        discount = subtotal * rule.value
    elif rule.type == CouponType.FIXED:
        discount = rule.value
    else:
        discount = Decimal("0")

    return min(to_money(discount), subtotal)


def calculate_shipping(
    subtotal: Decimal,
    item_count: int,
    rule: Optional[CouponRule],
    policy: PricingPolicy
) -> Decimal:
    if item_count == 0:
        return Decimal("0.00")
    if subtotal >= policy.free_shipping_threshold:
        return Decimal("0.00")
    if rule is not None and rule.type == CouponType.FREE_SHIPPING and rule.is_eligible(subtotal):
        return Decimal("0.00")
    return to_money(policy.flat_shipping_fee)


def price_items(
    items: Iterable[CartItem],
    rule: Optional[CouponRule] = None,
    policy: Optional[PricingPolicy] = None
) -> PricingBreakdown:
    """Compute the pricing breakdown for a list of line items."""
    policy = policy or PricingPolicy()
    items = list(items)

    item_count = sum(item.quantity for item in items)
    subtotal = to_money(sum((item.unit_price * item.quantity for item in items), Decimal("0")))
    discount = calculate_discount(subtotal, rule)
    shipping = calculate_shipping(subtotal, item_count, rule, policy)
    tax = to_money((subtotal - discount) * policy.tax_rate)
    total = to_money(subtotal - discount + shipping + tax)

    return PricingBreakdown(
        item_count=item_count,
        subtotal=subtotal,
        discount_amount=discount,
        shipping_amount=shipping,
        tax_amount=tax,
        total_amount=total
    )
