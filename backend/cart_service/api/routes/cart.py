from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from cart_service.api.deps import get_cart_engine, get_cart_owner, get_merge_engine
from cart_service.core.config import settings
from cart_service.core.exceptions import MissingIdentity, PriceOverrideForbidden
from cart_service.schemas.cart import (
    AddToCartRequest,
    UpdateCartItemRequest,
    ApplyCouponRequest,
    CartResponse,
    CartSummaryResponse,
    CheckoutValidationResponse
)
from cart_service.services.cart_engine import CartEngine, CartOwner
from cart_service.services.merge_engine import MergeEngine

router = APIRouter()


@router.get("", response_model=CartResponse)
async def get_cart(
    owner: CartOwner = Depends(get_cart_owner),
    engine: CartEngine = Depends(get_cart_engine)
):
    """
    Get the current cart, creating an empty one on first visit.

    Items are revalidated against the product service:
    - Prices, names and stock flags are refreshed
    - Items for deleted or sold-out products are dropped
    - Quantities are clamped to available stock
    """
    return CartResponse.from_cart(await engine.get_or_create(owner))


@router.get("/summary", response_model=CartSummaryResponse)
async def get_cart_summary(
    owner: CartOwner = Depends(get_cart_owner),
    engine: CartEngine = Depends(get_cart_engine)
):
    """Get item count and total for the cart badge."""
    return await engine.get_summary(owner)


@router.post("/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_to_cart(
    request: AddToCartRequest,
    owner: CartOwner = Depends(get_cart_owner),
    engine: CartEngine = Depends(get_cart_engine)
):
    """
    Add a product to the cart.

    Validates:
    - Product exists and is in stock
    - Sufficient stock available for the resulting quantity
    - Cart item limit

    If product already in cart, increases quantity.
    """
    if request.unit_price is not None and not settings.ALLOW_PRICE_OVERRIDE:
        raise PriceOverrideForbidden()

    cart = await engine.add_item(
        owner,
        product_id=request.product_id,
        quantity=request.quantity,
        variant_id=request.variant_id,
        unit_price_override=request.unit_price
    )
    return CartResponse.from_cart(cart)


@router.put("/items/{product_id}", response_model=CartResponse)
async def update_cart_item(
    product_id: str,
    request: UpdateCartItemRequest,
    owner: CartOwner = Depends(get_cart_owner),
    engine: CartEngine = Depends(get_cart_engine)
):
    """
    Update the quantity of an item in the cart.

    Validates stock availability before updating. A quantity of 0 removes the item.
    """
    cart = await engine.update_item(
        owner,
        product_id=product_id,
        quantity=request.quantity,
        variant_id=request.variant_id
    )
    return CartResponse.from_cart(cart)


@router.delete("/items/{product_id}", response_model=CartResponse)
async def remove_from_cart(
    product_id: str,
    variant_id: Optional[str] = Query(default=None),
    owner: CartOwner = Depends(get_cart_owner),
    engine: CartEngine = Depends(get_cart_engine)
):
    """
    Remove an item from the cart.
    """
    return CartResponse.from_cart(await engine.remove_item(owner, product_id, variant_id))


@router.delete("/items", response_model=CartResponse)
async def clear_cart(
    owner: CartOwner = Depends(get_cart_owner),
    engine: CartEngine = Depends(get_cart_engine)
):
    """
    Clear all items and the coupon from the cart.
    """
    return CartResponse.from_cart(await engine.clear(owner))


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_cart(
    owner: CartOwner = Depends(get_cart_owner),
    engine: CartEngine = Depends(get_cart_engine)
):
    """
    Delete the cart and its session or user mapping.
    """
    await engine.delete_cart(owner)


@router.post("/coupon", response_model=CartResponse)
async def apply_coupon(
    request: ApplyCouponRequest,
    owner: CartOwner = Depends(get_cart_owner),
    engine: CartEngine = Depends(get_cart_engine)
):
    """
    Apply a coupon code, replacing any coupon already applied.
    """
    return CartResponse.from_cart(await engine.apply_coupon(owner, request.code))


@router.delete("/coupon", response_model=CartResponse)
async def remove_coupon(
    owner: CartOwner = Depends(get_cart_owner),
    engine: CartEngine = Depends(get_cart_engine)
):
    """
    Remove the applied coupon.
    """
    return CartResponse.from_cart(await engine.remove_coupon(owner))


@router.post("/merge", response_model=CartResponse)
async def merge_guest_cart(
    owner: CartOwner = Depends(get_cart_owner),
    merge_engine: MergeEngine = Depends(get_merge_engine)
):
    """
    Merge the session's guest cart into the user's cart after login.

    Requires both the user id and the guest session id. The guest cart is
    deleted once merged.
    """
    if not owner.user_id:
        raise MissingIdentity("User ID is required for cart merge")

    return CartResponse.from_cart(await merge_engine.merge(owner.session_id, owner.user_id))


@router.post("/validate", response_model=CheckoutValidationResponse)
async def validate_cart(
    owner: CartOwner = Depends(get_cart_owner),
    engine: CartEngine = Depends(get_cart_engine)
):
    """
    Validate cart items are available for order.
    """
    lines = await engine.validate_for_checkout(owner)
    return CheckoutValidationResponse(lines=lines)
