from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field

from cart_service.models.cart import Cart


class AddToCartRequest(BaseModel):
    """Schema for adding a product to cart."""
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(ge=1, le=99)
    # Price override for internal callers; rejected unless ALLOW_PRICE_OVERRIDE is set
    unit_price: Optional[Decimal] = Field(default=None, ge=0)

    class Config:
        json_schema_extra = {
            "example": {
                "product_id": "p1",
                "quantity": 2
            }
        }


class UpdateCartItemRequest(BaseModel):
    """Schema for updating cart item quantity. A quantity of 0 removes the line."""
    variant_id: Optional[str] = None
    quantity: int = Field(ge=0, le=99)

    class Config:
        json_schema_extra = {
            "example": {
                "quantity": 3
            }
        }


class ApplyCouponRequest(BaseModel):
    """Schema for applying a coupon."""
    code: str = Field(min_length=3, max_length=20)

    class Config:
        json_schema_extra = {
            "example": {
                "code": "SAVE10"
            }
        }


class CartItemResponse(BaseModel):
    """Schema for cart item response."""
    product_id: str
    variant_id: Optional[str] = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    product_name: str
    product_sku: Optional[str] = None
    product_image: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    is_in_stock: bool
    available_quantity: Optional[int] = None
    added_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CartResponse(BaseModel):
    """Schema for cart response."""
    id: str
    items: List[CartItemResponse]
    item_count: int
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    total_amount: Decimal
    currency: str
    coupon_code: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    last_activity: datetime
    expires_at: Optional[datetime] = None
    is_expired: bool = False
    is_empty: bool = True

    class Config:
        from_attributes = True

    @classmethod
    def from_cart(cls, cart: Cart) -> "CartResponse":
        return cls(
            id=cart.id,
            items=[CartItemResponse.model_validate(item.model_dump()) for item in cart.items],
            item_count=cart.item_count,
            subtotal=cart.subtotal,
            discount_amount=cart.discount_amount,
            tax_amount=cart.tax_amount,
            shipping_amount=cart.shipping_amount,
            total_amount=cart.total_amount,
            currency=cart.currency,
            coupon_code=cart.coupon_code,
            created_at=cart.created_at,
            updated_at=cart.updated_at,
            last_activity=cart.last_activity,
            expires_at=cart.expires_at,
            is_expired=cart.is_expired(),
            is_empty=cart.is_empty
        )


class CartSummaryResponse(BaseModel):
    """Schema for the cart badge summary."""
    item_count: int
    total_amount: Decimal
    currency: str


class CheckoutLineResponse(BaseModel):
    """Schema for a validated order line."""
    product_id: str
    variant_id: Optional[str] = None
    quantity: int
    unit_price: Decimal
    product_name: str


class CheckoutValidationResponse(BaseModel):
    """Schema for checkout validation result."""
    valid: bool = True
    lines: List[CheckoutLineResponse]
