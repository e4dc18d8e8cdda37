from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class CouponType(str, Enum):
    """Coupon rule types."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FREE_SHIPPING = "free_shipping"


class CouponRule(BaseModel):
    """Discount rule attached to a coupon code."""
    code: str
    type: CouponType
    value: Decimal = Field(default=Decimal("0"), ge=0)  # Rate for percentage, amount for fixed
    min_subtotal: Optional[Decimal] = None

    class Config:
        frozen = True

    def is_eligible(self, subtotal: Decimal) -> bool:
        if self.min_subtotal is None:
            return True
        return subtotal >= self.min_subtotal
