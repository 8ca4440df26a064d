"""
ABHA patient token store.

Keeps each patient's ABDM refresh token (encrypted at rest) and a short-lived
cache of their access token in Redis. When Redis is unreachable the store
falls back to process memory, which is a non-production degraded mode.

Every public method is fail-safe: store, fetch and exchange failures are
logged and reported as None/False so login and profile requests degrade to
"no valid session" instead of erroring.
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import REDIS_URL
from core.constants import (
    ACCESS_TOKEN_KEY_PREFIX,
    ACCESS_TOKEN_MIN_TTL_SECONDS,
    REDIS_RETRY_INTERVAL_SECONDS,
    REFRESH_TOKEN_KEY_PREFIX,
    TOKEN_EXPIRY_SAFETY_MARGIN_SECONDS,
)
from core.exceptions import AbhaServiceError
from services.encryption_service import TokenEncryptionService, get_encryption_service
from shared_types.abha import RefreshedTokens
from utils.datetime_utils import from_timestamp, isoformat_utc, parse_iso_datetime

logger = logging.getLogger(__name__)

TokenRefresher = Callable[[str], Awaitable[RefreshedTokens]]


def access_token_cache_ttl(expires_in: int) -> int:
    """TTL for a cached access token: upstream lifetime minus the safety margin, floored."""
    return max(expires_in - TOKEN_EXPIRY_SAFETY_MARGIN_SECONDS, ACCESS_TOKEN_MIN_TTL_SECONDS)


@dataclass
class _MemoryEntry:
    value: str
    expires_at: float


class PatientTokenStore:
    """
    Rotation-aware storage of patient ABDM tokens.

    Per patient: NoToken -> HasRefreshToken -> HasRefreshToken+CachedAccessToken
    -> (access token expiry) -> HasRefreshToken ... -> revoked. A revoked
    patient only gets tokens again through a new enrollment or login.
    """

    def __init__(
        self,
        token_refresher: TokenRefresher,
        redis_client: Optional[aioredis.Redis] = None,
        encryption: Optional[TokenEncryptionService] = None,
        clock: Callable[[], float] = time.time,
        retry_interval_seconds: int = REDIS_RETRY_INTERVAL_SECONDS,
    ) -> None:
        self._refresher = token_refresher
        self._redis = redis_client
        self._encryption = encryption or get_encryption_service()
        self._clock = clock
        self._retry_interval = retry_interval_seconds
        self._memory: dict[str, _MemoryEntry] = {}
        self._redis_ok: Optional[bool] = None  # None = not probed yet
        self._redis_down_since: Optional[float] = None

    @staticmethod
    def refresh_key(patient_id: str) -> str:
        return f"{REFRESH_TOKEN_KEY_PREFIX}:{patient_id}"

    @staticmethod
    def access_key(patient_id: str) -> str:
        return f"{ACCESS_TOKEN_KEY_PREFIX}:{patient_id}"

    @property
    def using_fallback(self) -> bool:
        return self._redis is None or self._redis_ok is False

    # Backend selection

    def _mark_redis_unavailable(self, error: Exception) -> None:
        # Warn once per outage
        if self._redis_ok is not False:
            logger.warning(f"Redis unavailable - using in-memory token storage: {error.__class__.__name__}")
        self._redis_ok = False
        self._redis_down_since = self._clock()

    async def _use_redis(self) -> bool:
        if self._redis is None:
            return False
        if self._redis_ok:
            return True
        if self._redis_ok is False and self._redis_down_since is not None:
            if self._clock() - self._redis_down_since < self._retry_interval:
                return False
        try:
            await self._redis.ping()
        except (RedisError, OSError) as e:
            self._mark_redis_unavailable(e)
            return False
        if self._redis_ok is False:
            logger.info("Redis reachable again - resuming Redis token storage")
        else:
            logger.info("Connected to Redis for ABHA token storage")
        self._redis_ok = True
        self._redis_down_since = None
        return True

    # In-memory fallback

    def _memory_get(self, key: str) -> Optional[str]:
        entry = self._memory.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._memory[key]
            return None
        return entry.value

    def _memory_set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._memory[key] = _MemoryEntry(value=value, expires_at=self._clock() + ttl_seconds)

    # Refresh tokens

    async def store(self, patient_id: str, refresh_token: str, ttl_seconds: int) -> bool:
        """
        Store a patient's refresh token for ttl_seconds.

        Returns:
            True if the token was stored, False otherwise
        """
        if ttl_seconds <= 0:
            logger.warning(f"Refusing to store refresh token with non-positive TTL for patient {patient_id}")
            return False

        key = self.refresh_key(patient_id)
        now = self._clock()
        try:
            if await self._use_redis():
                record = {
                    "refreshTokenEncrypted": self._encryption.encrypt_text(refresh_token),
                    "expiresAt": isoformat_utc(from_timestamp(now + ttl_seconds)),
                    "createdAt": isoformat_utc(from_timestamp(now)),
                }
                try:
                    await self._redis.setex(key, ttl_seconds, json.dumps(record))  # type: ignore[union-attr]
                    logger.info(f"Stored refresh token for patient {patient_id}")
                    return True
                except (RedisError, OSError) as e:
                    self._mark_redis_unavailable(e)

            # Process memory only; fallback mode keeps the token unencrypted
            self._memory_set(key, refresh_token, ttl_seconds)
            logger.info(f"Stored refresh token for patient {patient_id} (in-memory)")
            return True
        except AbhaServiceError as e:
            logger.error(f"Error storing refresh token for patient {patient_id}: {e}")
            return False

    async def get(self, patient_id: str) -> Optional[str]:
        """
        Get a patient's refresh token.

        Expired records are treated as absent and deleted, since Redis
        eviction may lag.
        """
        key = self.refresh_key(patient_id)
        try:
            if await self._use_redis():
                try:
                    raw = await self._redis.get(key)  # type: ignore[union-attr]
                except (RedisError, OSError) as e:
                    self._mark_redis_unavailable(e)
                else:
                    return await self._decode_refresh_record(patient_id, key, raw)

            return self._memory_get(key)
        except AbhaServiceError as e:
            logger.error(f"Error retrieving refresh token for patient {patient_id}: {e}")
            return None

    async def _decode_refresh_record(self, patient_id: str, key: str, raw: Optional[bytes | str]) -> Optional[str]:
        if raw is None:
            return None
        try:
            record = json.loads(raw)
            expires_at = parse_iso_datetime(record["expiresAt"])
            encrypted = record["refreshTokenEncrypted"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Malformed refresh token record for patient {patient_id}: {e.__class__.__name__}")
            return None

        if expires_at.timestamp() <= self._clock():
            logger.info(f"Refresh token expired for patient {patient_id}")
            try:
                await self._redis.delete(key)  # type: ignore[union-attr]
            except (RedisError, OSError) as e:
                self._mark_redis_unavailable(e)
            return None

        return self._encryption.decrypt_text(encrypted)

    async def get_token_expiry(self, patient_id: str) -> Optional[datetime]:
        """Expiry of the stored refresh token, or None if there is none."""
        key = self.refresh_key(patient_id)
        try:
            if await self._use_redis():
                try:
                    raw = await self._redis.get(key)  # type: ignore[union-attr]
                except (RedisError, OSError) as e:
                    self._mark_redis_unavailable(e)
                else:
                    if raw is None:
                        return None
                    return parse_iso_datetime(json.loads(raw)["expiresAt"])

            entry = self._memory.get(key)
            return from_timestamp(entry.expires_at) if entry else None
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Error reading token expiry for patient {patient_id}: {e.__class__.__name__}")
            return None

    async def has_valid_tokens(self, patient_id: str) -> bool:
        return await self.get(patient_id) is not None

    # Access tokens

    async def _get_cached_access_token(self, key: str) -> Optional[str]:
        if await self._use_redis():
            try:
                raw = await self._redis.get(key)  # type: ignore[union-attr]
                if raw is None:
                    return None
                return raw.decode("utf-8") if isinstance(raw, bytes) else raw
            except (RedisError, OSError) as e:
                self._mark_redis_unavailable(e)
        return self._memory_get(key)

    async def _cache_access_token(self, key: str, access_token: str, ttl_seconds: int) -> None:
        if await self._use_redis():
            try:
                await self._redis.setex(key, ttl_seconds, access_token)  # type: ignore[union-attr]
                return
            except (RedisError, OSError) as e:
                self._mark_redis_unavailable(e)
        self._memory_set(key, access_token, ttl_seconds)

    async def get_access_token(self, patient_id: str) -> Optional[str]:
        """
        Get a patient's access token, refreshing it through the gateway on a cache miss.

        A rotated refresh token returned by the gateway replaces the stored one.
        """
        cache_key = self.access_key(patient_id)
        try:
            cached = await self._get_cached_access_token(cache_key)
            if cached:
                logger.debug(f"Using cached access token for patient {patient_id}")
                return cached

            refresh_token = await self.get(patient_id)
            if not refresh_token:
                logger.info(f"No refresh token available for patient {patient_id}")
                return None

            tokens = await self._refresher(refresh_token)

            await self._cache_access_token(cache_key, tokens.access_token, access_token_cache_ttl(tokens.expires_in))

            if tokens.refresh_token and tokens.refresh_token != refresh_token:
                await self.store(patient_id, tokens.refresh_token, tokens.refresh_expires_in or tokens.expires_in)

            logger.info(f"Refreshed access token for patient {patient_id}")
            return tokens.access_token
        except AbhaServiceError as e:
            logger.error(f"Failed to refresh access token for patient {patient_id}: {e}")
            return None
        except Exception as e:
            logger.exception(f"Unexpected error getting access token for patient {patient_id}: {e}")
            return None

    async def cache_access_token(self, patient_id: str, access_token: str, expires_in: int) -> bool:
        """Cache an access token obtained outside the refresh path (e.g. at enrollment)."""
        try:
            await self._cache_access_token(self.access_key(patient_id), access_token, access_token_cache_ttl(expires_in))
            return True
        except AbhaServiceError as e:
            logger.error(f"Failed to cache access token for patient {patient_id}: {e}")
            return False

    async def revoke(self, patient_id: str) -> None:
        """Delete both token entries for a patient. Idempotent."""
        keys = [self.refresh_key(patient_id), self.access_key(patient_id)]
        for key in keys:
            self._memory.pop(key, None)
        if await self._use_redis():
            try:
                await self._redis.delete(*keys)  # type: ignore[union-attr]
            except (RedisError, OSError) as e:
                self._mark_redis_unavailable(e)
        logger.info(f"Revoked ABHA tokens for patient {patient_id}")

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except (RedisError, OSError) as e:
                logger.warning(f"Error closing Redis connection: {e}")


# Global instance, created on first use
patient_token_store: Optional[PatientTokenStore] = None


def get_patient_token_store() -> PatientTokenStore:
    """Get the process-wide patient token store backed by REDIS_URL."""
    global patient_token_store
    if patient_token_store is None:
        from services.abha_client import get_abha_client

        patient_token_store = PatientTokenStore(
            token_refresher=get_abha_client().refresh_patient_token,
            redis_client=aioredis.Redis.from_url(REDIS_URL, socket_connect_timeout=2, socket_timeout=2),
        )
    return patient_token_store
