import json
import logging
from typing import Optional

from redis import asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from cart_service.core.exceptions import ConcurrentUpdate, NotFound
from cart_service.models.cart import Cart, SessionMapping
from cart_service.services.store import (
    CartMutation,
    CartStore,
    cart_key,
    session_key,
    ttl_seconds,
    user_cart_key,
)

logger = logging.getLogger(__name__)


class RedisCartStore(CartStore):
    """Cart store backed by Redis, using WATCH/MULTI for compare-and-swap."""

    transient_errors = (RedisConnectionError, RedisTimeoutError)

    def __init__(self, client: aioredis.Redis, **kwargs):
        super().__init__(**kwargs)
        self._redis = client

    @classmethod
    def from_url(
        cls,
        url: str,
        socket_timeout: float = 5.0,
        connect_timeout: float = 10.0,
        **kwargs
    ) -> "RedisCartStore":
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=connect_timeout
        )
        return cls(client, **kwargs)

    async def _compare_and_set(self, cart_id: str, mutate: CartMutation) -> Optional[Cart]:
        key = cart_key(cart_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    raise NotFound("Cart not found")

                updated = mutate(Cart.model_validate_json(raw))

                pipe.multi()
                pipe.set(key, updated.model_dump_json(), ex=ttl_seconds(updated))
                await pipe.execute()
                return updated
            except WatchError:
                return None

    async def _claim(self, key: str, payload: str, ttl: int, read_existing, cart_id: str) -> str:
        """SET NX the mapping; if another writer holds it, return their cart id."""
        for _ in range(self.cas_max_retries):
            created = await self._with_retries(
                "claim_mapping",
                lambda: self._redis.set(key, payload, ex=ttl, nx=True)
            )
            if created:
                return cart_id
            existing = await read_existing()
            if existing:
                return existing
            # Holder expired between SET NX and GET
        raise ConcurrentUpdate()

    async def get_cart(self, cart_id: str) -> Optional[Cart]:
        raw = await self._with_retries("get_cart", lambda: self._redis.get(cart_key(cart_id)))
        return Cart.model_validate_json(raw) if raw else None

    async def save_cart(self, cart: Cart) -> None:
        await self._with_retries(
            "save_cart",
            lambda: self._redis.set(cart_key(cart.id), cart.model_dump_json(), ex=ttl_seconds(cart))
        )

    async def delete_cart(self, cart_id: str) -> None:
        await self._with_retries("delete_cart", lambda: self._redis.delete(cart_key(cart_id)))

    async def get_session_cart_id(self, session_id: str) -> Optional[str]:
        raw = await self._with_retries("get_session", lambda: self._redis.get(session_key(session_id)))
        if not raw:
            return None
        return SessionMapping.model_validate_json(raw).cart_id

    async def set_session_cart_id(self, session_id: str, cart_id: str, ttl: int) -> None:
        payload = json.dumps({"cartId": cart_id})
        await self._with_retries(
            "set_session",
            lambda: self._redis.set(session_key(session_id), payload, ex=ttl)
        )

    async def claim_session_cart_id(self, session_id: str, cart_id: str, ttl: int) -> str:
        payload = json.dumps({"cartId": cart_id})
        return await self._claim(
            session_key(session_id),
            payload,
            ttl,
            lambda: self.get_session_cart_id(session_id),
            cart_id
        )

    async def delete_session(self, session_id: str) -> None:
        await self._with_retries("delete_session", lambda: self._redis.delete(session_key(session_id)))

    async def get_user_cart_id(self, user_id: str) -> Optional[str]:
        return await self._with_retries("get_user_cart", lambda: self._redis.get(user_cart_key(user_id)))

    async def set_user_cart_id(self, user_id: str, cart_id: str, ttl: int) -> None:
        await self._with_retries(
            "set_user_cart",
            lambda: self._redis.set(user_cart_key(user_id), cart_id, ex=ttl)
        )

    async def claim_user_cart_id(self, user_id: str, cart_id: str, ttl: int) -> str:
        return await self._claim(
            user_cart_key(user_id),
            cart_id,
            ttl,
            lambda: self.get_user_cart_id(user_id),
            cart_id
        )

    async def delete_user_cart_id(self, user_id: str) -> None:
        await self._with_retries("delete_user_cart", lambda: self._redis.delete(user_cart_key(user_id)))

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except self.transient_errors as e:
            logger.error(f"Redis ping failed: {str(e)}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()
        logger.info("Closed Redis connection")
