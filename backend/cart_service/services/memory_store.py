import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from cart_service.core.exceptions import NotFound
from cart_service.models.cart import Cart
from cart_service.services.store import (
    CartMutation,
    CartStore,
    cart_key,
    session_key,
    ttl_seconds,
    user_cart_key,
)
from cart_service.utils.helpers import get_current_timestamp

logger = logging.getLogger(__name__)


class MemoryCartStore(CartStore):
    """In-process store for local development and tests when Redis is not available."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # key -> (value, version, expires_at)
        self._records: Dict[str, Tuple[Any, int, Optional[datetime]]] = {}

    def _get(self, key: str) -> Optional[Tuple[Any, int]]:
        record = self._records.get(key)
        if record is None:
            return None
        value, version, expires_at = record
        if expires_at is not None and expires_at <= get_current_timestamp():
            del self._records[key]
            return None
        return value, version

    def _set(self, key: str, value: Any, ttl: Optional[int]) -> None:
        current = self._records.get(key)
        version = current[1] + 1 if current else 1
        expires_at = get_current_timestamp() + timedelta(seconds=ttl) if ttl else None
        self._records[key] = (value, version, expires_at)

    def _claim(self, key: str, value: Any, ttl: Optional[int]) -> Any:
        record = self._get(key)
        if record is not None:
            return record[0]
        self._set(key, value, ttl)
        return value

    async def _compare_and_set(self, cart_id: str, mutate: CartMutation) -> Optional[Cart]:
        key = cart_key(cart_id)
        record = self._get(key)
        if record is None:
            raise NotFound("Cart not found")
        raw, version = record

        updated = mutate(Cart.model_validate_json(raw))

        current = self._records.get(key)
        if current is None or current[1] != version:
            return None
        self._set(key, updated.model_dump_json(), ttl_seconds(updated))
        logger.debug(f"Cart {cart_id} updated in memory, version {version + 1}")
        return updated

    async def get_cart(self, cart_id: str) -> Optional[Cart]:
        record = self._get(cart_key(cart_id))
        return Cart.model_validate_json(record[0]) if record else None

    async def save_cart(self, cart: Cart) -> None:
        self._set(cart_key(cart.id), cart.model_dump_json(), ttl_seconds(cart))

    async def delete_cart(self, cart_id: str) -> None:
        self._records.pop(cart_key(cart_id), None)

    async def get_session_cart_id(self, session_id: str) -> Optional[str]:
        record = self._get(session_key(session_id))
        return record[0]["cartId"] if record else None

    async def set_session_cart_id(self, session_id: str, cart_id: str, ttl: int) -> None:
        self._set(session_key(session_id), {"cartId": cart_id}, ttl)

    async def claim_session_cart_id(self, session_id: str, cart_id: str, ttl: int) -> str:
        return self._claim(session_key(session_id), {"cartId": cart_id}, ttl)["cartId"]

    async def delete_session(self, session_id: str) -> None:
        self._records.pop(session_key(session_id), None)

    async def get_user_cart_id(self, user_id: str) -> Optional[str]:
        record = self._get(user_cart_key(user_id))
        return record[0] if record else None

    async def set_user_cart_id(self, user_id: str, cart_id: str, ttl: int) -> None:
        self._set(user_cart_key(user_id), cart_id, ttl)

    async def claim_user_cart_id(self, user_id: str, cart_id: str, ttl: int) -> str:
        return self._claim(user_cart_key(user_id), cart_id, ttl)

    async def delete_user_cart_id(self, user_id: str) -> None:
        self._records.pop(user_cart_key(user_id), None)

    async def ping(self) -> bool:
        return True
