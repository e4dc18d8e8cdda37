from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ProductVariant(BaseModel):
    """Variant of a catalog product as reported by the product service."""
    id: str
    name: str = ""
    sku: Optional[str] = None
    price: Decimal = Field(ge=0)
    in_stock: bool = True
    available_quantity: Optional[int] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)


class StockOffer(BaseModel):
    """Live price and stock for one (product, variant) pair."""
    product_id: str
    variant_id: Optional[str] = None
    name: str
    sku: Optional[str] = None
    image: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    price: Decimal
    in_stock: bool
    available_quantity: Optional[int] = None

    def can_supply(self, quantity: int) -> bool:
        if not self.in_stock:
            return False
        if self.available_quantity is None:
            return True
        return quantity <= self.available_quantity

    def clamp(self, quantity: int) -> int:
        """Largest quantity up to ``quantity`` that stock can supply."""
        if not self.in_stock:
            return 0
        if self.available_quantity is None:
            return quantity
        return max(0, min(quantity, self.available_quantity))


class ProductInfo(BaseModel):
    """Catalog product as reported by the product service."""
    id: str
    name: str
    sku: Optional[str] = None
    price: Decimal = Field(ge=0)
    images: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    brand: Optional[str] = None
    in_stock: bool = True
    available_quantity: Optional[int] = None
    variants: List[ProductVariant] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "id": "p1",
                "name": "Canvas Tote",
                "sku": "TOTE-001",
                "price": "20.00",
                "images": ["https://example.com/tote.jpg"],
                "category": "bags",
                "brand": "Acme",
                "in_stock": True,
                "available_quantity": 12
            }
        }

    def offer_for(self, variant_id: Optional[str] = None) -> Optional[StockOffer]:
        """
        Resolve the purchasable offer for a variant of this product.

        Returns None when the requested variant does not exist.
        """
        base = {
            "product_id": self.id,
            "variant_id": variant_id,
            "name": self.name,
            "image": self.images[0] if self.images else None,
            "category": self.category,
            "brand": self.brand,
        }
        if variant_id is None:
            return StockOffer(
                sku=self.sku,
                price=self.price,
                in_stock=self.in_stock,
                available_quantity=self.available_quantity,
                **base
            )

        for variant in self.variants:
            if variant.id == variant_id:
                return StockOffer(
                    sku=variant.sku or self.sku,
                    price=variant.price,
                    in_stock=variant.in_stock,
                    available_quantity=variant.available_quantity,
                    **base
                )
        return None
