from decimal import Decimal
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Store Configuration
    STORE_BACKEND: str = "redis"  # redis | mongo | memory
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT: float = 5.0
    REDIS_CONNECT_TIMEOUT: float = 10.0
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB_NAME: str = "cart_db"
    MONGODB_TIMEOUT_MS: int = 5000
    STORE_MAX_RETRIES: int = 3
    STORE_RETRY_BACKOFF_SECONDS: float = 0.1
    CART_CAS_MAX_RETRIES: int = 5

    # Cart lifetimes (seconds)
    CART_SESSION_TTL: int = 1800  # 30 minutes
    CART_USER_TTL: int = 2592000  # 30 days
    SESSION_MAPPING_TTL: int = 1800
    USER_MAPPING_TTL: int = 2592000

    # Cart rules
    MAX_CART_ITEMS: int = 50
    DEFAULT_CURRENCY: str = "USD"
    DEFAULT_TAX_RATE: Decimal = Decimal("0.08")
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("100")
    FLAT_SHIPPING_FEE: Decimal = Decimal("10.00")
    ALLOW_PRICE_OVERRIDE: bool = False  # Only for trusted internal callers of the cart API

    # Product service
    PRODUCT_SERVICE_URL: str = "http://localhost:3002"
    GATEWAY_TIMEOUT_SECONDS: float = 3.0

    # Application Settings
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Cart Service"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
