"""
Services package for the ABDM integration.

This package contains the gateway client, token stores, flow orchestration
and consent token services shared across API endpoints.
"""

from .abha_client import AbhaClient
from .abha_link_service import AbhaLinkService
from .abha_orchestrator import AbhaOrchestrator
from .abha_token_service import PatientTokenStore
from .consent_token_service import ConsentTokenService
from .encryption_service import TokenEncryptionService
from .public_key_cache import PublicKeyCache
from .session_token_service import SessionTokenManager

__all__ = [
    "AbhaClient",
    "AbhaLinkService",
    "AbhaOrchestrator",
    "PatientTokenStore",
    "ConsentTokenService",
    "TokenEncryptionService",
    "PublicKeyCache",
    "SessionTokenManager",
]
