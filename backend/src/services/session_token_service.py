"""
Session token manager for the ABDM gateway.

Obtains one shared service-level bearer token through the client-credentials
grant and caches it until one minute before its upstream expiry. Concurrent
callers racing past expiry share a single in-flight exchange.
"""

import asyncio
import logging
import time
from typing import Callable, Optional, Union

import httpx

from core.config import (
    ABHA_CLIENT_ID,
    ABHA_CLIENT_SECRET,
    ABHA_ENV,
    ABHA_HTTP_TIMEOUT_SECONDS,
    ABHA_SESSION_URL,
)
from core.constants import TOKEN_EXPIRY_SAFETY_MARGIN_SECONDS
from core.exceptions import UpstreamAuthError
from services.abha_http import build_abha_headers, parse_upstream, resolve_environment, send_json
from shared_types.abha import AbhaEnvironment, SessionToken, SessionTokenResponse

logger = logging.getLogger(__name__)


class SessionTokenManager:
    """
    Cache for the gateway session token.

    Attributes:
        session_url: Client-credentials endpoint
        environment: Environment sent in the X-CM-ID header of the exchange
    """

    def __init__(
        self,
        session_url: str = ABHA_SESSION_URL,
        client_id: str = ABHA_CLIENT_ID,
        client_secret: str = ABHA_CLIENT_SECRET,
        environment: Union[str, AbhaEnvironment] = ABHA_ENV,
        timeout: float = ABHA_HTTP_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.session_url = session_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.environment = resolve_environment(environment)
        self.timeout = timeout
        self._clock = clock
        self._transport = transport
        self._session: Optional[SessionToken] = None
        self._lock = asyncio.Lock()

    @property
    def cached_session(self) -> Optional[SessionToken]:
        return self._session

    def _valid_cached_token(self) -> Optional[str]:
        if self._session is not None and self._session.is_valid(self._clock()):
            return self._session.access_token
        return None

    async def get_valid_token(self) -> str:
        """
        Return the cached token, exchanging for a new one if it has expired.

        Raises:
            UpstreamAuthError: If the exchange fails. A stale token is never returned.
        """
        token = self._valid_cached_token()
        if token:
            return token

        async with self._lock:
            # Another caller may have refreshed while we waited
            token = self._valid_cached_token()
            if token:
                return token
            logger.info("ABDM session token expired or missing, fetching new one")
            session = await self._exchange()
            return session.access_token

    async def fetch_and_cache(self) -> SessionToken:
        """
        Unconditionally exchange credentials for a new session token.

        Raises:
            UpstreamAuthError: If the exchange fails
        """
        async with self._lock:
            return await self._exchange()

    def invalidate(self) -> None:
        """Drop the cached token so the next caller fetches a new one."""
        self._session = None

    async def _exchange(self) -> SessionToken:
        if not self.client_id or not self.client_secret:
            raise UpstreamAuthError(None, None, "ABDM client credentials are not configured")

        body = await send_json(
            "POST",
            self.session_url,
            headers=build_abha_headers(self.environment),
            payload={
                "clientId": self.client_id,
                "clientSecret": self.client_secret,
                "grantType": "client_credentials",
            },
            timeout=self.timeout,
            transport=self._transport,
            error_cls=UpstreamAuthError,
        )
        response = parse_upstream(SessionTokenResponse, body, error_cls=UpstreamAuthError)

        session = SessionToken(
            access_token=response.access_token,
            expiry_timestamp=self._clock() + response.expires_in - TOKEN_EXPIRY_SAFETY_MARGIN_SECONDS,
            refresh_token=response.refresh_token,
        )
        self._session = session
        logger.info(f"ABDM session token cached (expires in {response.expires_in}s)")
        return session


# Global instance, created on first use
session_token_manager: Optional[SessionTokenManager] = None


def get_session_token_manager() -> SessionTokenManager:
    """Get the process-wide session token manager."""
    global session_token_manager
    if session_token_manager is None:
        session_token_manager = SessionTokenManager()
    return session_token_manager
