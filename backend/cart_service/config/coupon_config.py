"""
Coupon rule configuration.

The static rule table backs the default coupon validator. Each entry maps an
upper-case code to its rule type, value and optional minimum subtotal:
- percentage: ``value`` is a rate between 0 and 1
- fixed: ``value`` is an amount in the cart currency
- free_shipping: ``value`` is unused, shipping is waived
"""

import os
from decimal import Decimal
from typing import Dict, Any


COUPON_CONFIG: Dict[str, Dict[str, Any]] = {
    "SAVE10": {
        "type": "percentage",
        "value": Decimal("0.10")
    },
    "SAVE20": {
        "type": "percentage",
        "value": Decimal("0.20")
    },
    "FLAT50": {
        "type": "fixed",
        "value": Decimal("50")
    },
    "FLAT100": {
        "type": "fixed",
        "value": Decimal("100")
    },
    "FREESHIP": {
        "type": "free_shipping",
        "value": Decimal("0"),
        "min_subtotal": Decimal(os.getenv("FREESHIP_MIN_SUBTOTAL", "50"))
    }
}


def normalize_code(code: str) -> str:
    """Coupon codes are case-insensitive and ignore surrounding spaces."""
    return (code or "").strip().upper()
