"""
Error taxonomy for the ABDM integration and consent services.

Every error raised by the gateway, encryption, token and consent layers
derives from AbhaServiceError so callers can catch one family.
"""

from typing import Any, Optional


class AbhaServiceError(Exception):
    """Base class for all service errors."""
    pass


class ConfigurationError(AbhaServiceError):
    """Required configuration is missing or malformed. Fatal at startup."""
    pass


class UpstreamError(AbhaServiceError):
    """
    ABDM gateway call failed.

    status is the HTTP status code, or None when the request never produced
    a response (timeout, connection failure).
    """

    def __init__(self, status: Optional[int], body: Any, message: Optional[str] = None) -> None:
        self.status = status
        self.body = body
        super().__init__(message or f"Upstream request failed (status={status})")


class UpstreamAuthError(UpstreamError):
    """Session or token exchange with the gateway failed."""

    def __init__(self, status: Optional[int], body: Any, message: Optional[str] = None) -> None:
        super().__init__(status, body, message or f"Upstream token exchange failed (status={status})")


class CryptoError(AbhaServiceError):
    """Encryption input is invalid (bad key material, oversized plaintext)."""
    pass


class IntegrityError(CryptoError):
    """Ciphertext failed authentication or is malformed."""
    pass


class StoreError(AbhaServiceError):
    """Backing store is unavailable or rejected the write."""
    pass


class ConsentTokenError(AbhaServiceError):
    """Consent token is invalid or malformed."""
    pass


class InvalidPurposeError(ConsentTokenError):
    """purposeOfUse is outside the closed set."""
    pass


class InvalidWindowError(ConsentTokenError):
    """Validity window does not end strictly in the future."""
    pass


class ScopeError(ConsentTokenError):
    """Requested resource type is not covered by the consent."""

    def __init__(self, resource_type: str, allowed_resources: list[str]) -> None:
        self.resource_type = resource_type
        self.allowed_resources = list(allowed_resources)
        super().__init__(
            f"Resource type '{resource_type}' not permitted by consent. "
            f"Allowed: {', '.join(allowed_resources)}"
        )


class RevokedError(ConsentTokenError):
    """Consent token has been revoked."""
    pass


class ExpiredError(ConsentTokenError):
    """Consent token or consent period has expired."""
    pass
