import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from cart_service.core.config import settings
from cart_service.core.exceptions import (
    CartExpired,
    EmptyCart,
    GatewayUnavailable,
    InsufficientStock,
    InvalidQuantity,
    MissingIdentity,
    NotFound,
    OutOfStock,
)
from cart_service.models.cart import Cart
from cart_service.models.product import StockOffer
from cart_service.services.availability_gateway import AvailabilityGateway
from cart_service.services.cart_mutations import (
    AddItem,
    ApplyCoupon,
    CartCommand,
    ClearCart,
    MutationContext,
    RefreshItems,
    RemoveCoupon,
    RemoveItem,
    UpdateItem,
    apply_mutation,
)
from cart_service.services.coupon_validator import CouponValidator, StaticCouponValidator
from cart_service.services.identity_resolver import IdentityResolver
from cart_service.services.pricing import PricingPolicy
from cart_service.services.store import CartStore
from cart_service.utils.helpers import generate_cart_id, get_current_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartOwner:
    """Who a request acts for: an authenticated user, an anonymous session, or both."""
    user_id: Optional[str] = None
    session_id: Optional[str] = None

    def __post_init__(self):
        if not self.user_id and not self.session_id:
            raise MissingIdentity()


class CartEngine:
    """
    Cart operations.

    Every operation returns the complete updated Cart. Mutations are applied
    through the store's compare-and-swap so that concurrent requests against
    the same cart never silently overwrite each other.
    """

    def __init__(
        self,
        store: CartStore,
        gateway: AvailabilityGateway,
        coupons: Optional[CouponValidator] = None,
        policy: Optional[PricingPolicy] = None,
        max_items: int = 50,
        session_ttl: int = 1800,
        user_ttl: int = 2592000,
        session_mapping_ttl: Optional[int] = None,
        user_mapping_ttl: Optional[int] = None,
        currency: str = "USD",
        clock: Callable[[], datetime] = get_current_timestamp
    ):
        self.store = store
        self.gateway = gateway
        self.coupons = coupons or StaticCouponValidator()
        self.policy = policy or PricingPolicy()
        self.max_items = max_items
        self.session_ttl = session_ttl
        self.user_ttl = user_ttl
        self.currency = currency
        self.clock = clock
        self.resolver = IdentityResolver(
            store,
            session_ttl=session_mapping_ttl or session_ttl,
            user_ttl=user_mapping_ttl or user_ttl
        )

    @classmethod
    def from_settings(cls, store: CartStore, gateway: AvailabilityGateway, config=settings) -> "CartEngine":
        return cls(
            store,
            gateway,
            policy=PricingPolicy.from_settings(config),
            max_items=config.MAX_CART_ITEMS,
            session_ttl=config.CART_SESSION_TTL,
            user_ttl=config.CART_USER_TTL,
            session_mapping_ttl=config.SESSION_MAPPING_TTL,
            user_mapping_ttl=config.USER_MAPPING_TTL,
            currency=config.DEFAULT_CURRENCY
        )

    def _context(self) -> MutationContext:
        return MutationContext(
            now=self.clock(),
            coupons=self.coupons,
            policy=self.policy,
            max_items=self.max_items,
            guest_ttl=self.session_ttl,
            user_ttl=self.user_ttl
        )

    # Loading and lifecycle

    async def _create(self, owner: CartOwner) -> Cart:
        now = self.clock()
        ttl = self.user_ttl if owner.user_id else self.session_ttl
        cart = Cart(
            id=generate_cart_id(),
            user_id=owner.user_id,
            session_id=None if owner.user_id else owner.session_id,
            currency=self.currency,
            created_at=now,
            updated_at=now,
            last_activity=now,
            expires_at=now + timedelta(seconds=ttl)
        )
        await self.store.save_cart(cart)

        winner_id = await self.resolver.claim(cart)
        if winner_id != cart.id:
            winner = await self.store.get_cart(winner_id)
            if winner is not None and not winner.is_expired(now):
                # A concurrent request created the owner's cart first
                await self.store.delete_cart(cart.id)
                logger.info(f"Adopted concurrently created cart {winner_id}, discarding {cart.id}")
                return winner
            await self.resolver.register(cart)

        logger.info(f"Created {'user' if owner.user_id else 'guest'} cart {cart.id}")
        return cart

    async def _discard(self, cart: Cart) -> None:
        await self.store.delete_cart(cart.id)
        await self.resolver.forget(user_id=cart.user_id, session_id=cart.session_id)

    async def _load(self, owner: CartOwner) -> Cart:
        """
        Load the live cart of an owner.

        Raises:
            NotFound: If the owner has no cart
            CartExpired: If the cart was found past its expiry (it is deleted)
        """
        cart_id = await self.resolver.resolve(owner.user_id, owner.session_id)
        if not cart_id:
            raise NotFound("Cart not found")

        cart = await self.store.get_cart(cart_id)
        if cart is None:
            raise NotFound("Cart not found")

        if cart.is_expired(self.clock()):
            logger.info(f"Cart {cart.id} expired at {cart.expires_at.isoformat()}, deleting")
            await self._discard(cart)
            raise CartExpired()

        return cart

    async def ensure_cart(self, owner: CartOwner) -> Cart:
        """Load the owner's cart, creating a new one if it is missing or expired."""
        try:
            return await self._load(owner)
        except (NotFound, CartExpired):
            return await self._create(owner)

    async def mutate(self, cart_id: str, command: CartCommand) -> Cart:
        """Apply a command to a stored cart under compare-and-swap."""
        ctx = self._context()
        return await self.store.update_cart(
            cart_id,
            lambda current: apply_mutation(current, command, ctx)
        )

    async def _offer(self, product_id: str, variant_id: Optional[str]) -> StockOffer:
        product = await self.gateway.get_product(product_id)
        if product is None:
            raise OutOfStock(f"Product {product_id} not found")
        offer = product.offer_for(variant_id)
        if offer is None:
            raise OutOfStock(f"Variant {variant_id} of product {product_id} not found")
        return offer

    # Reads

    async def get_or_create(self, owner: CartOwner) -> Cart:
        """
        Get the owner's cart, revalidated against live catalog data.

        A missing or expired cart is replaced by a fresh empty one. When the
        product service is unreachable the stored cart is served as-is.
        """
        try:
            cart = await self._load(owner)
        except (NotFound, CartExpired):
            return await self._create(owner)

        checked = frozenset(item.product_id for item in cart.items)
        products = {}
        if checked:
            try:
                products = await self.gateway.get_products_by_id(list(checked))
            except GatewayUnavailable:
                logger.warning(f"Serving cart {cart.id} with stale stock, product service unavailable")
                return cart

        try:
            return await self.mutate(cart.id, RefreshItems(products=products, checked=checked))
        except NotFound:
            return await self._create(owner)

    async def get_cart(self, owner: CartOwner) -> Cart:
        return await self.get_or_create(owner)

    async def get_summary(self, owner: CartOwner) -> Dict:
        cart = await self.get_or_create(owner)
        return {
            "item_count": cart.item_count,
            "total_amount": cart.total_amount,
            "currency": cart.currency
        }

    # Mutations

    async def add_item(
        self,
        owner: CartOwner,
        product_id: str,
        quantity: int,
        variant_id: Optional[str] = None,
        unit_price_override: Optional[Decimal] = None
    ) -> Cart:
        """
        Add a product to the cart, summing quantities for an existing line.

        The cart is created on first add; an expired cart fails with CartExpired.
        """
        if quantity < 1:
            raise InvalidQuantity()

        try:
            cart = await self._load(owner)
        except NotFound:
            cart = await self._create(owner)

        offer = await self._offer(product_id, variant_id)
        override = Decimal(str(unit_price_override)) if unit_price_override is not None else None
        return await self.mutate(cart.id, AddItem(offer, quantity, override))

    async def update_item(
        self,
        owner: CartOwner,
        product_id: str,
        quantity: int,
        variant_id: Optional[str] = None
    ) -> Cart:
        """Set a line's quantity; 0 removes the line."""
        if quantity < 0:
            raise InvalidQuantity("Quantity cannot be negative")

        cart = await self._load(owner)
        if cart.find_item(product_id, variant_id) is None:
            raise NotFound("Item not found in cart")

        offer = None
        if quantity > 0:
            offer = await self._offer(product_id, variant_id)
        return await self.mutate(cart.id, UpdateItem(product_id, variant_id, quantity, offer))

    async def remove_item(self, owner: CartOwner, product_id: str, variant_id: Optional[str] = None) -> Cart:
        cart = await self._load(owner)
        return await self.mutate(cart.id, RemoveItem(product_id, variant_id))

    async def clear(self, owner: CartOwner) -> Cart:
        cart = await self._load(owner)
        return await self.mutate(cart.id, ClearCart())

    async def apply_coupon(self, owner: CartOwner, code: str) -> Cart:
        cart = await self._load(owner)
        return await self.mutate(cart.id, ApplyCoupon(code))

    async def remove_coupon(self, owner: CartOwner) -> Cart:
        cart = await self._load(owner)
        return await self.mutate(cart.id, RemoveCoupon())

    # Order-flow operations

    async def clear_cart(self, owner: CartOwner) -> None:
        """Empty the owner's cart after checkout; no-op when there is none."""
        try:
            await self.clear(owner)
        except (NotFound, CartExpired):
            logger.info("No cart to clear")

    async def delete_cart(self, owner: CartOwner) -> None:
        """Remove the owner's cart and its mappings."""
        cart_id = await self.resolver.resolve(owner.user_id, owner.session_id)
        if not cart_id:
            raise NotFound("Cart not found")

        cart = await self.store.get_cart(cart_id)
        if cart is not None:
            await self._discard(cart)
        else:
            await self.resolver.forget(user_id=owner.user_id, session_id=owner.session_id)
        logger.info(f"Deleted cart {cart_id}")

    async def validate_for_checkout(self, owner: CartOwner) -> List[Dict]:
        """
        Check every line is still purchasable at its quantity.

        Returns:
            Order lines with product id, variant id, quantity, unit price and name

        Raises:
            EmptyCart: If the cart has no items
            OutOfStock: If a product or variant is gone or unavailable
            InsufficientStock: If stock no longer covers a line's quantity
            GatewayUnavailable: If stock cannot be verified
        """
        cart = await self._load(owner)
        if cart.is_empty:
            raise EmptyCart()

        products = await self.gateway.get_products_by_id([item.product_id for item in cart.items])

        order_lines = []
        for item in cart.items:
            product = products.get(item.product_id)
            offer = product.offer_for(item.variant_id) if product else None
            if offer is None or not offer.in_stock:
                raise OutOfStock(f"{item.product_name or item.product_id} is no longer available")
            if not offer.can_supply(item.quantity):
                raise InsufficientStock(
                    f"Insufficient stock for {offer.name}. Available: {offer.available_quantity}"
                )
            order_lines.append({
                "product_id": item.product_id,
                "variant_id": item.variant_id,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "product_name": item.product_name
            })

        return order_lines
