"""
HTTP helpers shared by every ABDM gateway caller.

Builds the mandatory ABDM headers and sends JSON requests with a bounded
timeout, translating every failure (non-2xx, timeout, connection error,
unparseable body) into the UpstreamError family.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

from core.config import ABHA_PRODUCTION_BASE_URL, ABHA_SANDBOX_BASE_URL
from core.constants import (
    HEADER_CM_ID,
    HEADER_REQUEST_ID,
    HEADER_TIMESTAMP,
    TIMESTAMP_MAX_DRIFT_SECONDS,
)
from core.exceptions import UpstreamError
from shared_types.abha import AbhaEnvironment
from utils.datetime_utils import isoformat_utc, parse_iso_datetime, utc_now

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def resolve_environment(env: Union[str, AbhaEnvironment]) -> AbhaEnvironment:
    """Coerce an environment discriminator ("sbx" or "abdm").

    Raises:
        ValueError: If the value is not a known environment
    """
    if isinstance(env, AbhaEnvironment):
        return env
    try:
        return AbhaEnvironment(env)
    except ValueError:
        raise ValueError(f"Unknown ABDM environment: {env!r}. Expected 'sbx' or 'abdm'")


def default_base_urls() -> dict[AbhaEnvironment, str]:
    return {
        AbhaEnvironment.SANDBOX: ABHA_SANDBOX_BASE_URL,
        AbhaEnvironment.PRODUCTION: ABHA_PRODUCTION_BASE_URL,
    }


def build_abha_headers(env: Union[str, AbhaEnvironment], token: Optional[str] = None) -> dict[str, str]:
    """
    Build the mandatory ABDM headers.

    Every call gets a fresh REQUEST-ID and TIMESTAMP; the gateway rejects
    replayed request IDs and stale timestamps.
    """
    headers = {
        HEADER_REQUEST_ID: str(uuid.uuid4()),
        HEADER_TIMESTAMP: isoformat_utc(utc_now()),
        HEADER_CM_ID: resolve_environment(env).value,
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def validate_timestamp_drift(timestamp: str, now: Optional[datetime] = None) -> bool:
    """Check that a gateway TIMESTAMP is within the allowed drift of server time."""
    try:
        request_time = parse_iso_datetime(timestamp)
    except ValueError:
        return False
    current = now or utc_now()
    return abs((current - request_time).total_seconds()) < TIMESTAMP_MAX_DRIFT_SECONDS


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


async def send_json(
    method: str,
    url: str,
    *,
    headers: dict[str, str],
    payload: Optional[dict[str, Any]] = None,
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    error_cls: Type[UpstreamError] = UpstreamError,
) -> Any:
    """
    Send one JSON request to the gateway and return the decoded body.

    Raises:
        UpstreamError (or error_cls): On non-2xx status, timeout or transport failure
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.request(method, url, headers=headers, json=payload)
    except httpx.TimeoutException as e:
        logger.warning(f"ABDM request timed out: {method} {url}")
        raise error_cls(None, None, f"Upstream request timed out after {timeout}s") from e
    except httpx.HTTPError as e:
        logger.warning(f"ABDM request failed: {method} {url}: {e.__class__.__name__}")
        raise error_cls(None, None, f"Upstream request failed: {e}") from e

    body = _response_body(response)
    if not response.is_success:
        logger.warning(f"ABDM request rejected: {method} {url} -> {response.status_code}")
        raise error_cls(response.status_code, body)

    logger.debug(f"ABDM request succeeded: {method} {url} -> {response.status_code}")
    return body


def parse_upstream(
    model: Type[ModelT],
    body: Any,
    error_cls: Type[UpstreamError] = UpstreamError,
    status: Optional[int] = 200,
) -> ModelT:
    """Validate an upstream body against its schema.

    Raises:
        UpstreamError (or error_cls): If the body does not match the schema
    """
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise error_cls(status, body, f"Unexpected {model.__name__} from upstream: {e.error_count()} validation error(s)") from e
