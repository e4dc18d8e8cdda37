"""
Cart store interface.

A store is a TTL-aware key/value backend holding three kinds of records:
- ``cart:{cartId}``: the serialized Cart
- ``session:{sessionId}``: ``{"cartId": ...}`` for guest carts
- ``user:cart:{userId}``: the plain cart id of a user's cart

Stores know nothing about cart business rules. Mutations go through
``update_cart``, a compare-and-swap cycle that re-runs the caller's pure
mutation against a fresh snapshot whenever a concurrent writer wins.
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from cart_service.core.exceptions import ConcurrentUpdate, StoreUnavailable
from cart_service.models.cart import Cart
from cart_service.utils.helpers import get_current_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")

CartMutation = Callable[[Cart], Cart]


def cart_key(cart_id: str) -> str:
    return f"cart:{cart_id}"


def session_key(session_id: str) -> str:
    return f"session:{session_id}"


def user_cart_key(user_id: str) -> str:
    return f"user:cart:{user_id}"


def ttl_seconds(cart: Cart, now: Optional[datetime] = None) -> Optional[int]:
    """Remaining lifetime of a cart in whole seconds (at least 1)."""
    if cart.expires_at is None:
        return None
    remaining = (cart.expires_at - (now or get_current_timestamp())).total_seconds()
    return max(1, math.ceil(remaining))


class CartStore(ABC):
    """Base class for cart storage backends."""

    # Backend exceptions that indicate a connectivity problem worth retrying
    transient_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(
        self,
        max_retries: int = 3,
        retry_backoff: float = 0.1,
        cas_max_retries: int = 5
    ):
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.cas_max_retries = cas_max_retries

    async def _with_retries(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """
        Run a store call, retrying connectivity errors with exponential backoff.

        Raises:
            StoreUnavailable: If every attempt failed
        """
        attempt = 0
        while True:
            try:
                return await call()
            except self.transient_errors as e:
                attempt += 1
                if attempt > self.max_retries:
                    logger.error(f"Store operation {operation} failed after {attempt} attempts: {str(e)}")
                    raise StoreUnavailable()
                delay = self.retry_backoff * (2 ** (attempt - 1))
                logger.warning(f"Store operation {operation} failed ({str(e)}), retrying in {delay:.2f}s")
                await asyncio.sleep(delay)

    async def update_cart(self, cart_id: str, mutate: CartMutation) -> Cart:
        """
        Atomically replace a cart with ``mutate(current)``.

        The mutation must be pure: it may be called several times against
        successive snapshots. Errors it raises abort the update.

        Raises:
            NotFound: If the cart does not exist
            ConcurrentUpdate: If every attempt lost to a concurrent writer
        """
        for attempt in range(1, self.cas_max_retries + 1):
            updated = await self._with_retries(
                "update_cart",
                lambda: self._compare_and_set(cart_id, mutate)
            )
            if updated is not None:
                return updated
            logger.warning(
                f"Concurrent update on cart {cart_id}, retrying ({attempt}/{self.cas_max_retries})"
            )
        raise ConcurrentUpdate()

    @abstractmethod
    async def _compare_and_set(self, cart_id: str, mutate: CartMutation) -> Optional[Cart]:
        """One CAS attempt; returns None when a concurrent write was detected."""

    @abstractmethod
    async def get_cart(self, cart_id: str) -> Optional[Cart]:
        """Load a cart, or None if the key is absent."""

    @abstractmethod
    async def save_cart(self, cart: Cart) -> None:
        """Unconditionally write a cart; TTL follows the cart's expires_at."""

    @abstractmethod
    async def delete_cart(self, cart_id: str) -> None:
        """Remove a cart record."""

    @abstractmethod
    async def get_session_cart_id(self, session_id: str) -> Optional[str]:
        """Resolve a session to its guest cart id."""

    @abstractmethod
    async def set_session_cart_id(self, session_id: str, cart_id: str, ttl: int) -> None:
        """Point a session at a cart."""

    @abstractmethod
    async def claim_session_cart_id(self, session_id: str, cart_id: str, ttl: int) -> str:
        """
        Point a session at a cart only if it has no live mapping yet.

        Returns:
            The cart id the session maps to afterwards: ``cart_id`` if the
            claim won, otherwise the id registered by the earlier writer
        """

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Remove a session mapping."""

    @abstractmethod
    async def get_user_cart_id(self, user_id: str) -> Optional[str]:
        """Resolve a user to their cart id."""

    @abstractmethod
    async def set_user_cart_id(self, user_id: str, cart_id: str, ttl: int) -> None:
        """Point a user at a cart, overwriting any previous mapping."""

    @abstractmethod
    async def claim_user_cart_id(self, user_id: str, cart_id: str, ttl: int) -> str:
        """Point a user at a cart only if it has no live mapping yet; returns the winning cart id."""

    @abstractmethod
    async def delete_user_cart_id(self, user_id: str) -> None:
        """Remove a user mapping."""

    @abstractmethod
    async def ping(self) -> bool:
        """Check backend connectivity."""

    async def close(self) -> None:
        """Release backend connections."""
