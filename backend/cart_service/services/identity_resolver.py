from typing import Optional
import logging

from cart_service.core.exceptions import MissingIdentity
from cart_service.models.cart import Cart
from cart_service.services.store import CartStore

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Maps a (user id, session id) pair to the cart it operates on."""

    def __init__(self, store: CartStore, session_ttl: int = 1800, user_ttl: int = 2592000):
        self.store = store
        self.session_ttl = session_ttl
        self.user_ttl = user_ttl

    async def resolve(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> Optional[str]:
        """
        Determine the cart id for a request.

        An authenticated user always resolves through the user mapping, even
        when a session id is also present: the guest cart only reaches the
        user through a merge.

        Returns:
            The cart id, or None if no cart has been created yet

        Raises:
            MissingIdentity: If neither a user id nor a session id is given
        """
        if user_id:
            return await self.store.get_user_cart_id(user_id)
        if session_id:
            return await self.store.get_session_cart_id(session_id)
        raise MissingIdentity()

    async def register(self, cart: Cart) -> None:
        """Point the cart's owner key at it."""
        if cart.user_id:
            await self.store.set_user_cart_id(cart.user_id, cart.id, self.user_ttl)
        elif cart.session_id:
            await self.store.set_session_cart_id(cart.session_id, cart.id, self.session_ttl)

    async def claim(self, cart: Cart) -> str:
        """
        Point the cart's owner key at it unless another cart got there first.

        Returns:
            The id of the cart the owner key maps to afterwards
        """
        if cart.user_id:
            return await self.store.claim_user_cart_id(cart.user_id, cart.id, self.user_ttl)
        return await self.store.claim_session_cart_id(cart.session_id, cart.id, self.session_ttl)

    async def forget(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> None:
        """Drop the mappings of an owner."""
        if user_id:
            await self.store.delete_user_cart_id(user_id)
        if session_id:
            await self.store.delete_session(session_id)
