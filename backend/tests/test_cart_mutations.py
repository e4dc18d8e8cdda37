"""
Tests for pure cart mutations.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from cart_service.core.exceptions import (
    CartFull,
    EmptyCart,
    InsufficientStock,
    InvalidCoupon,
    InvalidQuantity,
    NotFound,
    OutOfStock,
)
from cart_service.models.cart import Cart, CartItem
from cart_service.services.cart_mutations import (
    AddItem,
    ApplyCoupon,
    ClearCart,
    MergeItems,
    RefreshItems,
    RemoveCoupon,
    RemoveItem,
    UpdateItem,
    apply_mutation,
)
from conftest import make_product


def empty_cart(user_id=None) -> Cart:
    return Cart(id="cart-1", user_id=user_id, session_id=None if user_id else "sess-1")


def offer(product_id="p1", price="20.00", stock=10, variant_id=None):
    return make_product(product_id, price, stock=stock).offer_for(variant_id)


class TestAddItem:
    """Test adding lines."""

    def test_add_new_line(self, mutation_context):
        """Test adding creates a priced line and reprices the cart."""
        cart = apply_mutation(empty_cart(), AddItem(offer(), 1), mutation_context)

        assert len(cart.items) == 1
        assert cart.items[0].unit_price == Decimal("20.00")
        assert cart.items[0].product_name == "Product p1"
        assert cart.item_count == 1
        assert cart.total_amount == Decimal("31.60")

    def test_add_sums_existing_line(self, mutation_context):
        """Test adding the same product twice sums the quantity on one line."""
        cart = apply_mutation(empty_cart(), AddItem(offer(), 2), mutation_context)
        cart = apply_mutation(cart, AddItem(offer(), 3), mutation_context)

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 5

    def test_add_rejects_zero_quantity(self, mutation_context):
        """Test quantity must be positive."""
        with pytest.raises(InvalidQuantity):
            AddItem(offer(), 0).apply(empty_cart(), mutation_context)

    def test_add_out_of_stock(self, mutation_context):
        """Test product with no stock cannot be added."""
        with pytest.raises(OutOfStock):
            AddItem(offer(stock=0), 1).apply(empty_cart(), mutation_context)

    def test_add_counts_quantity_already_in_cart(self, mutation_context):
        """Test stock check covers the resulting line quantity."""
        cart = apply_mutation(empty_cart(), AddItem(offer(stock=5), 4), mutation_context)

        with pytest.raises(InsufficientStock) as exc_info:
            AddItem(offer(stock=5), 2).apply(cart, mutation_context)
        assert exc_info.value.detail == "Insufficient stock. Available: 5, in cart: 4"

    def test_add_respects_item_cap(self, mutation_context):
        """Test cart item cap counts units across lines."""
        cart = apply_mutation(empty_cart(), AddItem(offer("p1"), 6), mutation_context)
        cart = apply_mutation(cart, AddItem(offer("p2"), 4), mutation_context)

        with pytest.raises(CartFull):
            AddItem(offer("p3"), 1).apply(cart, mutation_context)

    def test_price_override(self, mutation_context):
        """Test an override price is kept and flagged."""
        cart = apply_mutation(empty_cart(), AddItem(offer(), 1, Decimal("15.00")), mutation_context)

        assert cart.items[0].unit_price == Decimal("15.00")
        assert cart.items[0].price_overridden is True

    def test_original_cart_untouched(self, mutation_context):
        """Test mutations return a new cart."""
        original = empty_cart()
        apply_mutation(original, AddItem(offer(), 1), mutation_context)

        assert original.is_empty


class TestUpdateAndRemove:
    """Test changing and removing lines."""

    def test_update_quantity(self, mutation_context):
        """Test setting a new quantity."""
        cart = apply_mutation(empty_cart(), AddItem(offer(), 1), mutation_context)
        cart = apply_mutation(cart, UpdateItem("p1", None, 3, offer()), mutation_context)

        assert cart.items[0].quantity == 3
        assert cart.subtotal == Decimal("60.00")

    def test_update_to_zero_removes(self, mutation_context):
        """Test quantity 0 removes the line."""
        cart = apply_mutation(empty_cart(), AddItem(offer(), 1), mutation_context)
        cart = apply_mutation(cart, UpdateItem("p1", None, 0), mutation_context)

        assert cart.is_empty
        assert cart.total_amount == Decimal("0.00")

    def test_update_missing_line(self, mutation_context):
        """Test updating an absent line raises NotFound."""
        with pytest.raises(NotFound):
            UpdateItem("p1", None, 2, offer()).apply(empty_cart(), mutation_context)

    def test_update_exceeding_stock(self, mutation_context):
        """Test quantity above stock is rejected."""
        cart = apply_mutation(empty_cart(), AddItem(offer(stock=3), 1), mutation_context)

        with pytest.raises(InsufficientStock):
            UpdateItem("p1", None, 4, offer(stock=3)).apply(cart, mutation_context)

    def test_remove_line(self, mutation_context):
        """Test removing a line."""
        cart = apply_mutation(empty_cart(), AddItem(offer("p1"), 1), mutation_context)
        cart = apply_mutation(cart, AddItem(offer("p2"), 1), mutation_context)
        cart = apply_mutation(cart, RemoveItem("p1"), mutation_context)

        assert [item.product_id for item in cart.items] == ["p2"]

    def test_remove_missing_line(self, mutation_context):
        """Test removing an absent line raises NotFound."""
        with pytest.raises(NotFound):
            RemoveItem("p1").apply(empty_cart(), mutation_context)

    def test_clear_drops_items_and_coupon(self, mutation_context):
        """Test clearing empties the cart and detaches the coupon."""
        cart = apply_mutation(empty_cart(), AddItem(offer(), 5), mutation_context)
        cart = apply_mutation(cart, ApplyCoupon("SAVE10"), mutation_context)
        cart = apply_mutation(cart, ClearCart(), mutation_context)

        assert cart.is_empty
        assert cart.coupon_code is None
        assert cart.total_amount == Decimal("0.00")


class TestCoupons:
    """Test coupon commands."""

    def test_apply_coupon(self, mutation_context):
        """Test applying SAVE10 to a $100 cart."""
        cart = apply_mutation(empty_cart(), AddItem(offer(), 5), mutation_context)
        cart = apply_mutation(cart, ApplyCoupon("save10"), mutation_context)

        assert cart.coupon_code == "SAVE10"
        assert cart.discount_amount == Decimal("10.00")
        assert cart.total_amount == Decimal("97.20")

    def test_apply_coupon_to_empty_cart(self, mutation_context):
        """Test coupons need items."""
        with pytest.raises(EmptyCart):
            ApplyCoupon("SAVE10").apply(empty_cart(), mutation_context)

    def test_apply_invalid_coupon(self, mutation_context):
        """Test unknown coupon is rejected."""
        cart = apply_mutation(empty_cart(), AddItem(offer(), 1), mutation_context)

        with pytest.raises(InvalidCoupon):
            ApplyCoupon("BOGUS").apply(cart, mutation_context)

    def test_coupon_stays_attached_below_minimum(self, mutation_context):
        """Test a coupon that stops qualifying contributes nothing but stays attached."""
        cart = apply_mutation(empty_cart(), AddItem(offer(), 3), mutation_context)
        cart = apply_mutation(cart, ApplyCoupon("FREESHIP"), mutation_context)
        assert cart.shipping_amount == Decimal("0.00")

        cart = apply_mutation(cart, UpdateItem("p1", None, 1, offer()), mutation_context)

        assert cart.coupon_code == "FREESHIP"
        assert cart.shipping_amount == Decimal("10.00")

    def test_remove_coupon(self, mutation_context):
        """Test removing the coupon restores full price."""
        cart = apply_mutation(empty_cart(), AddItem(offer(), 5), mutation_context)
        cart = apply_mutation(cart, ApplyCoupon("SAVE10"), mutation_context)
        cart = apply_mutation(cart, RemoveCoupon(), mutation_context)

        assert cart.coupon_code is None
        assert cart.discount_amount == Decimal("0.00")


class TestRefreshItems:
    """Test revalidation against live catalog data."""

    def test_refresh_updates_price_and_clamps(self, mutation_context):
        """Test prices follow the catalog and quantities are clamped to stock."""
        cart = apply_mutation(empty_cart(), AddItem(offer(stock=10), 6), mutation_context)
        products = {"p1": make_product("p1", "25.00", stock=4)}

        cart = apply_mutation(cart, RefreshItems(products, frozenset({"p1"})), mutation_context)

        assert cart.items[0].unit_price == Decimal("25.00")
        assert cart.items[0].quantity == 4
        assert cart.subtotal == Decimal("100.00")

    def test_refresh_drops_missing_and_sold_out(self, mutation_context):
        """Test deleted and sold-out products are removed."""
        cart = apply_mutation(empty_cart(), AddItem(offer("p1"), 1), mutation_context)
        cart = apply_mutation(cart, AddItem(offer("p2"), 1), mutation_context)
        products = {"p2": make_product("p2", "20.00", stock=0)}

        cart = apply_mutation(cart, RefreshItems(products, frozenset({"p1", "p2"})), mutation_context)

        assert cart.is_empty

    def test_refresh_keeps_unchecked_lines(self, mutation_context):
        """Test lines outside the checked set are left alone."""
        cart = apply_mutation(empty_cart(), AddItem(offer("p1"), 1), mutation_context)

        cart = apply_mutation(cart, RefreshItems({}, frozenset()), mutation_context)

        assert cart.items[0].product_id == "p1"

    def test_refresh_keeps_override_price(self, mutation_context):
        """Test overridden prices are not replaced by the catalog price."""
        cart = apply_mutation(empty_cart(), AddItem(offer(), 1, Decimal("5.00")), mutation_context)
        products = {"p1": make_product("p1", "30.00")}

        cart = apply_mutation(cart, RefreshItems(products, frozenset({"p1"})), mutation_context)

        assert cart.items[0].unit_price == Decimal("5.00")


class TestMergeItems:
    """Test folding guest lines into a user cart."""

    def test_merge_sums_and_appends(self, mutation_context):
        """Test matching lines sum and new lines append."""
        user_cart = apply_mutation(empty_cart("u1"), AddItem(offer("p1"), 3), mutation_context)
        user_cart = apply_mutation(user_cart, AddItem(offer("p2"), 1), mutation_context)
        guest_items = (
            CartItem(product_id="p1", quantity=2, unit_price=Decimal("20.00")),
            CartItem(product_id="p3", quantity=1, unit_price=Decimal("20.00")),
        )
        products = {pid: make_product(pid, "20.00") for pid in ("p1", "p2", "p3")}

        merged = apply_mutation(user_cart, MergeItems(guest_items, products, "u1"), mutation_context)

        quantities = {item.product_id: item.quantity for item in merged.items}
        assert quantities == {"p1": 5, "p2": 1, "p3": 1}
        assert merged.user_id == "u1"
        assert merged.session_id is None

    def test_merge_clamps_to_cap(self, mutation_context):
        """Test merged quantities never push the cart past its item cap."""
        user_cart = apply_mutation(empty_cart("u1"), AddItem(offer("p1"), 8), mutation_context)
        guest_items = (
            CartItem(product_id="p2", quantity=5, unit_price=Decimal("20.00")),
            CartItem(product_id="p3", quantity=1, unit_price=Decimal("20.00")),
        )
        products = {pid: make_product(pid, "20.00") for pid in ("p1", "p2", "p3")}

        merged = apply_mutation(user_cart, MergeItems(guest_items, products, "u1"), mutation_context)

        assert merged.item_count == 10
        assert merged.find_item("p2").quantity == 2
        assert merged.find_item("p3") is None

    def test_merge_skips_unknown_products(self, mutation_context):
        """Test guest lines for deleted products are skipped."""
        guest_items = (CartItem(product_id="gone", quantity=1, unit_price=Decimal("1.00")),)

        merged = apply_mutation(empty_cart("u1"), MergeItems(guest_items, {}, "u1"), mutation_context)

        assert merged.is_empty


class TestReprice:
    """Test expiry bookkeeping done on every mutation."""

    def test_guest_expiry_slides(self, mutation_context):
        """Test guest carts expire a session TTL after the last mutation."""
        cart = apply_mutation(empty_cart(), AddItem(offer(), 1), mutation_context)

        assert cart.expires_at == mutation_context.now + timedelta(seconds=1800)
        assert cart.last_activity == mutation_context.now

    def test_user_expiry(self, mutation_context):
        """Test user carts use the user TTL."""
        cart = apply_mutation(empty_cart("u1"), AddItem(offer(), 1), mutation_context)

        assert cart.expires_at == mutation_context.now + timedelta(seconds=2592000)
