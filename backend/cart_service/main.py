from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from cart_service.core.config import settings
from cart_service.core.store_client import open_store, close_store
from cart_service.api.routes import cart
from cart_service.services.availability_gateway import HttpAvailabilityGateway
from cart_service.services.cart_engine import CartEngine

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Acquire the store and product service client on startup, release them on shutdown."""
    logger.info("Starting up cart service...")
    store = await open_store(settings)
    gateway = HttpAvailabilityGateway(
        settings.PRODUCT_SERVICE_URL,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS
    )
    app.state.cart_store = store
    app.state.cart_engine = CartEngine.from_settings(store, gateway, settings)
    logger.info("Cart service started successfully")

    yield

    logger.info("Shutting down cart service...")
    gateway.close()
    await close_store(store)
    logger.info("Cart service shut down successfully")


# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Cart service - guest and user carts with pricing, coupons and login merge",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    store_up = await app.state.cart_store.ping()
    return {
        "status": "healthy" if store_up else "unhealthy",
        "service": "cart-service",
        "version": "1.0.0",
        "services": {
            "store": "up" if store_up else "down"
        }
    }


# Include routers
app.include_router(cart.router, prefix=f"{settings.API_V1_PREFIX}/cart", tags=["Cart"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
