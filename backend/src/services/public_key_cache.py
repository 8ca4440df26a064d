"""
Gateway public key cache.

The ABDM public key used to encrypt PII is fetched per environment and
re-fetched every five minutes. A key fetched from one environment is never
used to encrypt a request bound for the other.
"""

import asyncio
import logging
import time
from typing import Callable, Optional, Union

import httpx

from core.config import ABHA_HTTP_TIMEOUT_SECONDS
from core.constants import ENDPOINT_PUBLIC_KEY, PUBLIC_KEY_TTL_SECONDS
from core.exceptions import CryptoError, UpstreamError
from services.abha_http import (
    build_abha_headers,
    default_base_urls,
    parse_upstream,
    resolve_environment,
    send_json,
)
from services.encryption_service import to_pem_public_key
from services.session_token_service import SessionTokenManager
from shared_types.abha import AbhaEnvironment, CachedPublicKey, PublicKeyResponse

logger = logging.getLogger(__name__)


class PublicKeyCache:
    """Per-environment cache of the gateway's PEM public key."""

    def __init__(
        self,
        session_tokens: SessionTokenManager,
        base_urls: Optional[dict[AbhaEnvironment, str]] = None,
        ttl_seconds: int = PUBLIC_KEY_TTL_SECONDS,
        timeout: float = ABHA_HTTP_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.session_tokens = session_tokens
        self.base_urls = base_urls or default_base_urls()
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self._clock = clock
        self._transport = transport
        self._entries: dict[AbhaEnvironment, CachedPublicKey] = {}
        self._locks: dict[AbhaEnvironment, asyncio.Lock] = {}

    def _cached(self, env: AbhaEnvironment) -> Optional[CachedPublicKey]:
        entry = self._entries.get(env)
        if entry is not None and self._clock() < entry.expiry_timestamp:
            return entry
        return None

    async def get(self, env: Union[str, AbhaEnvironment]) -> CachedPublicKey:
        """
        Return the public key for an environment, fetching it if stale.

        Raises:
            UpstreamError: If the certificate endpoint fails
            UpstreamAuthError: If no session token can be obtained
        """
        environment = resolve_environment(env)
        entry = self._cached(environment)
        if entry is not None:
            return entry

        lock = self._locks.setdefault(environment, asyncio.Lock())
        async with lock:
            entry = self._cached(environment)
            if entry is not None:
                return entry
            return await self._fetch(environment)

    async def get_pem(self, env: Union[str, AbhaEnvironment]) -> str:
        return (await self.get(env)).pem

    def clear(self) -> None:
        self._entries.clear()

    async def _fetch(self, environment: AbhaEnvironment) -> CachedPublicKey:
        logger.info(f"Fetching ABDM public key for environment {environment.value}")
        token = await self.session_tokens.get_valid_token()
        body = await send_json(
            "GET",
            f"{self.base_urls[environment]}{ENDPOINT_PUBLIC_KEY}",
            headers=build_abha_headers(environment, token),
            timeout=self.timeout,
            transport=self._transport,
        )
        response = parse_upstream(PublicKeyResponse, body)

        try:
            pem = to_pem_public_key(response.public_key)
        except CryptoError as e:
            raise UpstreamError(200, body, f"Gateway returned an unusable public key: {e}") from e

        entry = CachedPublicKey(
            pem=pem,
            expiry_timestamp=self._clock() + self.ttl_seconds,
            encryption_algorithm=response.encryption_algorithm,
        )
        self._entries[environment] = entry
        logger.info(f"ABDM public key cached for environment {environment.value}")
        return entry
