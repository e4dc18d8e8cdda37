import logging
from typing import Optional

from cart_service.core.exceptions import MissingIdentity, NotFound
from cart_service.models.cart import Cart
from cart_service.services.cart_engine import CartEngine, CartOwner
from cart_service.services.cart_mutations import MergeItems
from cart_service.utils.helpers import generate_cart_id

logger = logging.getLogger(__name__)


def _take_claim(token: str):
    def mutate(cart: Cart) -> Cart:
        if cart.merge_claim is not None:
            return cart
        return cart.model_copy(update={"merge_claim": token})
    return mutate


def _release_claim(token: str):
    def mutate(cart: Cart) -> Cart:
        if cart.merge_claim != token:
            return cart
        return cart.model_copy(update={"merge_claim": None})
    return mutate


class MergeEngine:
    """Folds a guest cart into a user's cart at login."""

    def __init__(self, engine: CartEngine):
        self.engine = engine
        self.store = engine.store
        self.gateway = engine.gateway

    async def _claim_guest(self, guest_cart_id: str) -> Optional[Cart]:
        """
        Mark the guest cart as consumed by this merge.

        Returns:
            The claimed guest cart, or None if another merge holds it or it is gone
        """
        token = generate_cart_id()
        try:
            guest = await self.store.update_cart(guest_cart_id, _take_claim(token))
        except NotFound:
            return None
        return guest if guest.merge_claim == token else None

    async def merge(self, guest_session_id: Optional[str], user_id: str) -> Cart:
        """
        Merge the guest cart of a session into the user's cart.

        The guest cart is claimed before its lines are applied, so concurrent
        merges for the same session fold it in once; the losers return the
        user's cart unchanged. The guest cart and its session mapping are
        deleted afterwards. If the product service cannot be reached the claim
        is released, the guest cart is left intact and GatewayUnavailable
        propagates.
        """
        if not user_id:
            raise MissingIdentity("A user id is required for cart merge")

        target = await self.engine.ensure_cart(CartOwner(user_id=user_id))

        if not guest_session_id:
            return target

        guest_cart_id = await self.store.get_session_cart_id(guest_session_id)
        if guest_cart_id is None:
            return target

        if guest_cart_id == target.id:
            await self.store.delete_session(guest_session_id)
            return target

        guest = await self.store.get_cart(guest_cart_id)
        if guest is None or guest.is_expired(self.engine.clock()):
            logger.info(f"Guest cart for session {guest_session_id} is gone, nothing to merge")
            await self.store.delete_cart(guest_cart_id)
            await self.store.delete_session(guest_session_id)
            return target

        guest = await self._claim_guest(guest_cart_id)
        if guest is None:
            logger.info(f"Guest cart {guest_cart_id} is already being merged, skipping")
            return target

        try:
            products = await self.gateway.get_products_by_id([item.product_id for item in guest.items])
            merged = await self.engine.mutate(
                target.id,
                MergeItems(guest_items=guest.items, products=products, user_id=user_id)
            )
        except Exception:
            await self.store.update_cart(guest.id, _release_claim(guest.merge_claim))
            raise

        await self.engine.resolver.register(merged)
        await self.store.delete_cart(guest.id)
        await self.store.delete_session(guest_session_id)

        logger.info(
            f"Merged guest cart {guest.id} ({len(guest.items)} lines) into cart {merged.id} for user {user_id}"
        )
        return merged
