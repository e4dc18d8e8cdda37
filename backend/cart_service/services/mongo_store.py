import logging
from datetime import timedelta
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, DuplicateKeyError

from cart_service.core.exceptions import ConcurrentUpdate, NotFound
from cart_service.models.cart import Cart
from cart_service.services.store import (
    CartMutation,
    CartStore,
    cart_key,
    session_key,
    user_cart_key,
)
from cart_service.utils.helpers import get_current_timestamp

logger = logging.getLogger(__name__)


class MongoCartStore(CartStore):
    """
    Cart store backed by MongoDB.

    Every record lives in a single ``cart_store`` collection keyed by the
    store key, with an ``expires_at`` TTL index for passive expiry. Records
    carry a ``version`` counter used for compare-and-swap updates. MongoDB
    removes expired documents lazily, so reads also check ``expires_at``.
    """

    transient_errors = (ConnectionFailure,)

    def __init__(self, database: AsyncIOMotorDatabase, client: AsyncIOMotorClient = None, **kwargs):
        super().__init__(**kwargs)
        self._db = database
        self._client = client
        self._records = database.cart_store

    @classmethod
    def from_uri(cls, uri: str, db_name: str, timeout_ms: int = 5000, **kwargs) -> "MongoCartStore":
        client = AsyncIOMotorClient(
            uri,
            tz_aware=True,
            serverSelectionTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms
        )
        return cls(client[db_name], client=client, **kwargs)

    async def ensure_indexes(self) -> None:
        """Create the TTL index used for passive expiry."""
        await self._with_retries(
            "ensure_indexes",
            lambda: self._records.create_index("expires_at", expireAfterSeconds=0)
        )

    @staticmethod
    def _is_live(doc: Optional[dict]) -> bool:
        if doc is None:
            return False
        expires_at = doc.get("expires_at")
        return expires_at is None or expires_at > get_current_timestamp()

    async def _find_live(self, key: str) -> Optional[dict]:
        doc = await self._with_retries("find", lambda: self._records.find_one({"_id": key}))
        return doc if self._is_live(doc) else None

    async def _put(self, key: str, value, ttl: Optional[int]) -> None:
        expires_at = get_current_timestamp() + timedelta(seconds=ttl) if ttl else None
        await self._with_retries(
            "put",
            lambda: self._records.update_one(
                {"_id": key},
                {"$set": {"value": value, "expires_at": expires_at}, "$inc": {"version": 1}},
                upsert=True
            )
        )

    async def _claim(self, key: str, value, ttl: int):
        """
        Insert a record only if no live one exists.

        Returns the value held under the key afterwards. An expired record
        the TTL monitor has not reaped yet is removed and the insert retried.
        """
        for _ in range(self.cas_max_retries):
            expires_at = get_current_timestamp() + timedelta(seconds=ttl)
            try:
                await self._with_retries(
                    "claim",
                    lambda: self._records.insert_one(
                        {"_id": key, "value": value, "version": 1, "expires_at": expires_at}
                    )
                )
                return value
            except DuplicateKeyError:
                doc = await self._with_retries("find", lambda: self._records.find_one({"_id": key}))
                if self._is_live(doc):
                    return doc["value"]
                if doc is not None:
                    await self._with_retries(
                        "delete",
                        lambda: self._records.delete_one({"_id": key, "version": doc.get("version", 0)})
                    )
        raise ConcurrentUpdate()

    async def _delete(self, key: str) -> None:
        await self._with_retries("delete", lambda: self._records.delete_one({"_id": key}))

    async def _compare_and_set(self, cart_id: str, mutate: CartMutation) -> Optional[Cart]:
        key = cart_key(cart_id)
        doc = await self._records.find_one({"_id": key})
        if not self._is_live(doc):
            raise NotFound("Cart not found")

        updated = mutate(Cart.model_validate(doc["value"]))

        result = await self._records.update_one(
            {"_id": key, "version": doc.get("version", 0)},
            {
                "$set": {
                    "value": updated.model_dump(mode="json"),
                    "expires_at": updated.expires_at
                },
                "$inc": {"version": 1}
            }
        )
        if result.matched_count == 0:
            return None
        return updated

    async def get_cart(self, cart_id: str) -> Optional[Cart]:
        doc = await self._find_live(cart_key(cart_id))
        return Cart.model_validate(doc["value"]) if doc else None

    async def save_cart(self, cart: Cart) -> None:
        await self._with_retries(
            "save_cart",
            lambda: self._records.update_one(
                {"_id": cart_key(cart.id)},
                {
                    "$set": {"value": cart.model_dump(mode="json"), "expires_at": cart.expires_at},
                    "$inc": {"version": 1}
                },
                upsert=True
            )
        )

    async def delete_cart(self, cart_id: str) -> None:
        await self._delete(cart_key(cart_id))

    async def get_session_cart_id(self, session_id: str) -> Optional[str]:
        doc = await self._find_live(session_key(session_id))
        return doc["value"]["cartId"] if doc else None

    async def set_session_cart_id(self, session_id: str, cart_id: str, ttl: int) -> None:
        await self._put(session_key(session_id), {"cartId": cart_id}, ttl)

    async def claim_session_cart_id(self, session_id: str, cart_id: str, ttl: int) -> str:
        mapping = await self._claim(session_key(session_id), {"cartId": cart_id}, ttl)
        return mapping["cartId"]

    async def delete_session(self, session_id: str) -> None:
        await self._delete(session_key(session_id))

    async def get_user_cart_id(self, user_id: str) -> Optional[str]:
        doc = await self._find_live(user_cart_key(user_id))
        return doc["value"] if doc else None

    async def set_user_cart_id(self, user_id: str, cart_id: str, ttl: int) -> None:
        await self._put(user_cart_key(user_id), cart_id, ttl)

    async def claim_user_cart_id(self, user_id: str, cart_id: str, ttl: int) -> str:
        return await self._claim(user_cart_key(user_id), cart_id, ttl)

    async def delete_user_cart_id(self, user_id: str) -> None:
        await self._delete(user_cart_key(user_id))

    async def ping(self) -> bool:
        try:
            await self._db.command("ping")
            return True
        except self.transient_errors as e:
            logger.error(f"MongoDB ping failed: {str(e)}")
            return False

    async def close(self) -> None:
        if self._client:
            self._client.close()
            logger.info("Closed MongoDB connection")
