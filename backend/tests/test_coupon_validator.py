"""
Tests for coupon lookup and validation.
"""
from decimal import Decimal

import pytest

from cart_service.config.coupon_config import COUPON_CONFIG, normalize_code
from cart_service.core.exceptions import InvalidCoupon
from cart_service.models.coupon import CouponType
from cart_service.services.coupon_validator import StaticCouponValidator


class TestStaticCouponValidator:
    """Test the built-in coupon table."""

    def test_known_codes(self):
        """Test every configured code resolves to a rule."""
        validator = StaticCouponValidator()

        assert validator.lookup("SAVE10").type == CouponType.PERCENTAGE
        assert validator.lookup("SAVE20").value == Decimal("0.20")
        assert validator.lookup("FLAT50").type == CouponType.FIXED
        assert validator.lookup("FLAT100").value == Decimal("100")
        assert validator.lookup("FREESHIP").type == CouponType.FREE_SHIPPING

    def test_lookup_is_case_insensitive(self):
        """Test codes are normalized before lookup."""
        validator = StaticCouponValidator()

        rule = validator.lookup("  save10 ")
        assert rule is not None
        assert rule.code == "SAVE10"

    def test_unknown_code_lookup(self):
        """Test unknown and empty codes resolve to None."""
        validator = StaticCouponValidator()

        assert validator.lookup("BOGUS") is None
        assert validator.lookup("") is None
        assert validator.lookup(None) is None

    def test_validate_unknown_code(self):
        """Test validating an unknown code raises InvalidCoupon."""
        validator = StaticCouponValidator()

        with pytest.raises(InvalidCoupon) as exc_info:
            validator.validate("BOGUS", Decimal("100.00"))
        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == "Invalid coupon code"

    def test_validate_minimum_not_met(self):
        """Test a coupon below its minimum subtotal is rejected."""
        validator = StaticCouponValidator()

        with pytest.raises(InvalidCoupon) as exc_info:
            validator.validate("FREESHIP", Decimal("49.99"))
        assert "minimum subtotal of 50.00" in exc_info.value.detail

    def test_validate_minimum_met(self):
        """Test a coupon at exactly its minimum is accepted."""
        validator = StaticCouponValidator()

        rule = validator.validate("freeship", Decimal("50.00"))
        assert rule.code == "FREESHIP"

    def test_custom_rule_table(self):
        """Test a validator built from a custom table."""
        validator = StaticCouponValidator(rules={
            "welcome5": {"type": "fixed", "value": Decimal("5"), "min_subtotal": Decimal("25")}
        })

        rule = validator.validate("WELCOME5", Decimal("30.00"))
        assert rule.code == "WELCOME5"
        assert rule.type == CouponType.FIXED
        assert validator.lookup("SAVE10") is None


class TestCouponConfig:
    """Test coupon configuration helpers."""

    def test_normalize_code(self):
        """Test normalization strips and upper-cases."""
        assert normalize_code(" flat50 ") == "FLAT50"
        assert normalize_code(None) == ""

    def test_config_codes_are_upper_case(self):
        """Test the rule table keys are already normalized."""
        assert all(code == normalize_code(code) for code in COUPON_CONFIG)
