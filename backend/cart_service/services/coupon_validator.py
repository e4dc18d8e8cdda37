from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Optional
import logging

from cart_service.config.coupon_config import COUPON_CONFIG, normalize_code
from cart_service.core.exceptions import InvalidCoupon
from cart_service.models.coupon import CouponRule

logger = logging.getLogger(__name__)


class CouponValidator(ABC):
    """Resolves coupon codes to discount rules."""

    @abstractmethod
    def lookup(self, code: Optional[str]) -> Optional[CouponRule]:
        """Return the rule for a code, or None if the code is unknown."""

    def validate(self, code: str, subtotal: Decimal) -> CouponRule:
        """
        Validate a coupon against the cart's current subtotal.

        Raises:
            InvalidCoupon: If the code is unknown or its minimum subtotal is not met
        """
        rule = self.lookup(code)
        if rule is None:
            logger.info(f"Rejected unknown coupon code {normalize_code(code)!r}")
            raise InvalidCoupon("Invalid coupon code")

        if not rule.is_eligible(subtotal):
            raise InvalidCoupon(
                f"Coupon {rule.code} requires a minimum subtotal of {rule.min_subtotal:.2f}"
            )

        return rule


class StaticCouponValidator(CouponValidator):
    """Coupon validator backed by an in-process rule table."""

    def __init__(self, rules: Optional[Dict[str, Dict[str, Any]]] = None):
        table = COUPON_CONFIG if rules is None else rules
        self._rules = {
            normalize_code(code): CouponRule(code=normalize_code(code), **config)
            for code, config in table.items()
        }

    def lookup(self, code: Optional[str]) -> Optional[CouponRule]:
        if not code:
            return None
        return self._rules.get(normalize_code(code))
