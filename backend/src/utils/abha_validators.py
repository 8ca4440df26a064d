"""
Identity number validation utilities.

Provides centralized cleaning and validation for the identifiers patients
type into ABHA flows (Aadhaar, mobile, OTP) so every request model applies
the same rules.
"""

import re
from typing import Optional


def clean_digits(value: str) -> str:
    """
    Remove common separators (spaces, dashes, parentheses).

    Args:
        value: Identifier as typed by the user

    Returns:
        The identifier without separators
    """
    return re.sub(r'[-\s()]', '', value)


def _validate_digits(value: str, length: int, label: str) -> str:
    if not value or not value.strip():
        raise ValueError(f'{label} is required')

    cleaned = clean_digits(value)
    if not cleaned.isdigit() or len(cleaned) != length:
        raise ValueError(f'{label} must be exactly {length} digits')
    return cleaned


def validate_aadhaar(aadhaar: str) -> str:
    """
    Validate and clean a 12-digit Aadhaar number.

    Raises:
        ValueError: If the number is not 12 digits
    """
    return _validate_digits(aadhaar, 12, 'Aadhaar number')


def validate_mobile(mobile: str) -> str:
    """
    Validate and clean a 10-digit Indian mobile number.

    A leading +91 country code is accepted and stripped.

    Raises:
        ValueError: If the number is not 10 digits
    """
    if mobile and mobile.strip().startswith('+91'):
        mobile = mobile.strip()[3:]
    return _validate_digits(mobile, 10, 'Mobile number')


def validate_mobile_optional(mobile: Optional[str]) -> Optional[str]:
    """Validate a mobile number if provided, allow None or empty string."""
    if mobile is None or not mobile.strip():
        return None
    return validate_mobile(mobile)


def validate_otp(otp: str) -> str:
    """
    Validate a 6-digit OTP.

    Raises:
        ValueError: If the OTP is not 6 digits
    """
    if not otp or not re.fullmatch(r'\d{6}', otp.strip()):
        raise ValueError('OTP must be exactly 6 digits')
    return otp.strip()
