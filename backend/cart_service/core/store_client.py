import logging

from cart_service.core.config import Settings
from cart_service.services.store import CartStore

logger = logging.getLogger(__name__)


async def open_store(config: Settings) -> CartStore:
    """Build and connect the store backend selected by STORE_BACKEND."""
    retry_options = {
        "max_retries": config.STORE_MAX_RETRIES,
        "retry_backoff": config.STORE_RETRY_BACKOFF_SECONDS,
        "cas_max_retries": config.CART_CAS_MAX_RETRIES,
    }
    backend = config.STORE_BACKEND.lower()

    if backend == "redis":
        from cart_service.services.redis_store import RedisCartStore

        store = RedisCartStore.from_url(
            config.REDIS_URL,
            socket_timeout=config.REDIS_SOCKET_TIMEOUT,
            connect_timeout=config.REDIS_CONNECT_TIMEOUT,
            **retry_options
        )
    elif backend == "mongo":
        from cart_service.services.mongo_store import MongoCartStore

        store = MongoCartStore.from_uri(
            config.MONGODB_URI,
            config.MONGODB_DB_NAME,
            timeout_ms=config.MONGODB_TIMEOUT_MS,
            **retry_options
        )
        await store.ensure_indexes()
    elif backend == "memory":
        from cart_service.services.memory_store import MemoryCartStore

        logger.warning("Using in-memory cart store, carts are lost on restart")
        store = MemoryCartStore(**retry_options)
    else:
        raise ValueError(f"Unknown STORE_BACKEND: {config.STORE_BACKEND}")

    if await store.ping():
        logger.info(f"Connected to {backend} cart store")
    else:
        logger.error(f"Cart store {backend} is not reachable, requests will retry")
    return store


async def close_store(store: CartStore) -> None:
    """Close the store connection."""
    await store.close()
