"""
Unit tests for identity number validators.
"""

import pytest

from utils.abha_validators import (
    clean_digits,
    validate_aadhaar,
    validate_mobile,
    validate_mobile_optional,
    validate_otp,
)


class TestCleanDigits:
    def test_separators_removed(self):
        assert clean_digits("1234 5678-9012") == "123456789012"
        assert clean_digits("(987) 654-3210") == "9876543210"


class TestValidateAadhaar:
    """Test Aadhaar number validation."""

    @pytest.mark.parametrize("value", ["123412341234", "1234 1234 1234", "1234-1234-1234"])
    def test_valid(self, value):
        assert validate_aadhaar(value) == "123412341234"

    @pytest.mark.parametrize("value", ["12341234123", "1234123412345", "12341234123a"])
    def test_invalid(self, value):
        with pytest.raises(ValueError, match="Aadhaar number must be exactly 12 digits"):
            validate_aadhaar(value)

    def test_empty(self):
        with pytest.raises(ValueError, match="Aadhaar number is required"):
            validate_aadhaar("  ")


class TestValidateMobile:
    """Test mobile number validation."""

    @pytest.mark.parametrize("value", ["9876543210", "+919876543210", "+91 98765 43210", "98765-43210"])
    def test_valid(self, value):
        assert validate_mobile(value) == "9876543210"

    @pytest.mark.parametrize("value", ["987654321", "09876543210", "98765abcde"])
    def test_invalid(self, value):
        with pytest.raises(ValueError, match="Mobile number must be exactly 10 digits"):
            validate_mobile(value)

    def test_optional_allows_blank(self):
        assert validate_mobile_optional(None) is None
        assert validate_mobile_optional("") is None
        assert validate_mobile_optional("+919876543210") == "9876543210"

    def test_optional_still_validates(self):
        with pytest.raises(ValueError):
            validate_mobile_optional("123")


class TestValidateOtp:
    def test_valid(self):
        assert validate_otp(" 123456 ") == "123456"

    @pytest.mark.parametrize("value", ["", "12345", "1234567", "12345a"])
    def test_invalid(self, value):
        with pytest.raises(ValueError, match="OTP must be exactly 6 digits"):
            validate_otp(value)
