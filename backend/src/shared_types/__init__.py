"""
Shared type definitions for the ABDM integration backend.

This module contains dataclasses and types that are used across multiple services.
"""

from shared_types.abha import (
    AbhaEnrollmentResult,
    AbhaEnvironment,
    AbhaLinkDetails,
    DocumentEnrollment,
    LoginHint,
    OrchestratorResult,
    SessionToken,
)
from shared_types.consent import (
    AccessDecision,
    ConsentAccessRequest,
    ConsentTokenPayload,
    FailureCategory,
    TokenValidationResult,
)

__all__ = [
    "AbhaEnrollmentResult",
    "AbhaEnvironment",
    "AbhaLinkDetails",
    "DocumentEnrollment",
    "LoginHint",
    "OrchestratorResult",
    "SessionToken",
    "AccessDecision",
    "ConsentAccessRequest",
    "ConsentTokenPayload",
    "FailureCategory",
    "TokenValidationResult",
]
