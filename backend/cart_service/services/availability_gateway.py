"""
Availability gateway: live price and stock from the product service.

The cart core only sees the ``AvailabilityGateway`` capability. Its contract:
- a product that does not exist is reported as ``None`` (or left out of a
  batch), never as an error
- a call that times out or fails for any other reason raises
  ``GatewayUnavailable``; callers decide whether to degrade or reject
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests

from cart_service.core.exceptions import GatewayUnavailable
from cart_service.models.product import ProductInfo, ProductVariant

logger = logging.getLogger(__name__)


class AvailabilityGateway(ABC):
    """Capability interface for catalog price and stock lookups."""

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[ProductInfo]:
        """Fetch one product, or None if it does not exist."""

    @abstractmethod
    async def get_products(self, product_ids: List[str]) -> List[ProductInfo]:
        """Fetch several products at once; unknown ids are omitted."""

    @abstractmethod
    async def check_stock(self, product_id: str, variant_id: Optional[str] = None, quantity: int = 1) -> bool:
        """Whether the product service can supply ``quantity`` units."""

    async def get_variant(self, product_id: str, variant_id: str) -> Optional[ProductVariant]:
        product = await self.get_product(product_id)
        if product is None:
            return None
        return next((v for v in product.variants if v.id == variant_id), None)

    async def get_products_by_id(self, product_ids: List[str]) -> Dict[str, ProductInfo]:
        unique_ids = list(dict.fromkeys(product_ids))
        if not unique_ids:
            return {}
        return {product.id: product for product in await self.get_products(unique_ids)}


def _to_variant(data: Dict[str, Any]) -> ProductVariant:
    stock = data.get("stock")
    return ProductVariant(
        id=str(data.get("_id") or data.get("id")),
        name=data.get("name") or "",
        sku=data.get("sku"),
        price=Decimal(str(data.get("price", 0))),
        in_stock=bool(data.get("inStock", True)) and (stock is None or stock > 0),
        available_quantity=stock,
        attributes=data.get("attributes") or {}
    )


def _to_product(data: Dict[str, Any]) -> ProductInfo:
    stock = data.get("stock")
    return ProductInfo(
        id=str(data.get("_id") or data.get("id")),
        name=data.get("name") or "",
        sku=data.get("sku"),
        price=Decimal(str(data.get("price", 0))),
        images=data.get("images") or [],
        category=data.get("category"),
        brand=data.get("brand"),
        in_stock=bool(data.get("inStock", True)) and (stock is None or stock > 0),
        available_quantity=stock,
        variants=[_to_variant(v) for v in data.get("variants") or []]
    )


class HttpAvailabilityGateway(AvailabilityGateway):
    """Availability gateway talking to the product service over HTTP."""

    def __init__(self, base_url: str, timeout: float = 3.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> Optional[Any]:
        """
        Perform a request and unwrap the ``data`` envelope.

        Returns:
            The response data, or None on 404

        Raises:
            GatewayUnavailable: On timeout, connection error or non-404 failure
        """
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json().get("data")
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Product service call {method} {path} failed: {str(e)}")
            raise GatewayUnavailable()

    async def _call(self, method: str, path: str, **kwargs) -> Optional[Any]:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    async def get_product(self, product_id: str) -> Optional[ProductInfo]:
        data = await self._call("GET", f"/api/v1/products/{product_id}")
        return _to_product(data) if data else None

    async def get_products(self, product_ids: List[str]) -> List[ProductInfo]:
        if not product_ids:
            return []
        data = await self._call("POST", "/api/v1/products/batch", json={"productIds": product_ids})
        return [_to_product(item) for item in data or []]

    async def check_stock(self, product_id: str, variant_id: Optional[str] = None, quantity: int = 1) -> bool:
        data = await self._call(
            "POST",
            f"/api/v1/products/{product_id}/check-stock",
            json={"variantId": variant_id, "quantity": quantity}
        )
        return bool(data and data.get("available"))

    async def get_variant(self, product_id: str, variant_id: str) -> Optional[ProductVariant]:
        data = await self._call("GET", f"/api/v1/products/{product_id}/variants/{variant_id}")
        return _to_variant(data) if data else None

    def close(self) -> None:
        self._session.close()
