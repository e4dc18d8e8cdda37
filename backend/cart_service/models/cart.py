from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple
from pydantic import BaseModel, Field, computed_field

from cart_service.utils.helpers import get_current_timestamp, to_money

ZERO = Decimal("0.00")

ItemKey = Tuple[str, Optional[str]]


class CartItem(BaseModel):
    """Line item in a shopping cart."""
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(ge=0)
    unit_price: Decimal = Field(ge=0)  # Snapshot from catalog, refreshed on load
    price_overridden: bool = False

    # Denormalized display fields
    product_name: str = ""
    product_sku: Optional[str] = None
    product_image: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None

    is_in_stock: bool = True
    available_quantity: Optional[int] = None

    added_at: datetime = Field(default_factory=get_current_timestamp)
    updated_at: datetime = Field(default_factory=get_current_timestamp)

    @computed_field
    @property
    def total_price(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)

    @property
    def key(self) -> ItemKey:
        return (self.product_id, self.variant_id)

    class Config:
        frozen = True


class Cart(BaseModel):
    """
    Shopping cart stored in the key/value store.

    Carts are immutable values: every mutation produces a new Cart whose
    derived amounts have been recomputed from its items and coupon.
    """
    id: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None  # Owner key for guest carts
    items: Tuple[CartItem, ...] = ()

    item_count: int = 0
    subtotal: Decimal = ZERO
    discount_amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    shipping_amount: Decimal = ZERO
    total_amount: Decimal = ZERO

    currency: str = "USD"
    coupon_code: Optional[str] = None
    merge_claim: Optional[str] = None  # Token of the login merge consuming this guest cart

    created_at: datetime = Field(default_factory=get_current_timestamp)
    updated_at: datetime = Field(default_factory=get_current_timestamp)
    last_activity: datetime = Field(default_factory=get_current_timestamp)
    expires_at: Optional[datetime] = None

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "0b9f6c1e-3c0d-4a55-9a51-6f1f8e0c2a71",
                "session_id": "sess_123",
                "items": [
                    {
                        "product_id": "p1",
                        "quantity": 1,
                        "unit_price": "20.00",
                        "product_name": "Canvas Tote"
                    }
                ],
                "item_count": 1,
                "subtotal": "20.00",
                "discount_amount": "0.00",
                "tax_amount": "1.60",
                "shipping_amount": "10.00",
                "total_amount": "31.60",
                "currency": "USD"
            }
        }

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @property
    def is_empty(self) -> bool:
        return len(self.items) == 0

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """A cart is expired once the current time passes expires_at."""
        if self.expires_at is None:
            return False
        return (now or get_current_timestamp()) > self.expires_at

    def find_item(self, product_id: str, variant_id: Optional[str] = None) -> Optional[CartItem]:
        for item in self.items:
            if item.key == (product_id, variant_id):
                return item
        return None


class SessionMapping(BaseModel):
    """Pointer from an anonymous session to its guest cart."""
    cart_id: str = Field(alias="cartId")

    class Config:
        populate_by_name = True
