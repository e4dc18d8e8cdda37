import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

CENTS = Decimal("0.01")


def get_current_timestamp() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def generate_cart_id() -> str:
    """Generate a new opaque cart identifier."""
    return str(uuid.uuid4())


def to_money(value) -> Decimal:
    """Quantize a value to cents, never below zero."""
    amount = Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)
    if amount < 0:
        return Decimal("0.00")
    return amount
