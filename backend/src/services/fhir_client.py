"""
Minimal FHIR REST client.

Only used to read and update the Patient resource when an ABHA identifier
is linked or removed. Resource mapping lives with the FHIR server.
"""

import logging
from typing import Any, Optional

import httpx

from core.config import ABHA_HTTP_TIMEOUT_SECONDS, FHIR_BASE_URL
from core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

FHIR_CONTENT_TYPE = "application/fhir+json"


class FhirClient:
    """Async client for reading and replacing FHIR resources."""

    def __init__(
        self,
        base_url: str = FHIR_BASE_URL,
        timeout: float = ABHA_HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not base_url:
            raise ValueError("FHIR base URL must be set")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _send(self, method: str, path: str, resource: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        headers = {"Accept": FHIR_CONTENT_TYPE}
        if resource is not None:
            headers["Content-Type"] = FHIR_CONTENT_TYPE
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, f"{self.base_url}/{path}", headers=headers, json=resource)
        except httpx.HTTPError as e:
            raise UpstreamError(None, None, f"FHIR request failed: {e}") from e

        if not response.is_success:
            logger.warning(f"FHIR {method} {path} -> {response.status_code}")
            raise UpstreamError(response.status_code, response.text)

        # 201/204 without a body: the server accepted the resource as sent
        if not response.content:
            return resource if resource is not None else {}
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(response.status_code, response.text, f"FHIR {method} {path} returned invalid JSON") from e

    async def get_resource(self, resource_type: str, resource_id: str) -> dict[str, Any]:
        return await self._send("GET", f"{resource_type}/{resource_id}")

    async def put_resource(self, resource_type: str, resource_id: str, resource: dict[str, Any]) -> dict[str, Any]:
        return await self._send("PUT", f"{resource_type}/{resource_id}", resource)


def upsert_identifier(resource: dict[str, Any], system: str, value: str) -> dict[str, Any]:
    """Set the identifier for system, replacing an existing one rather than adding a duplicate."""
    identifiers = resource.setdefault("identifier", [])
    new_identifier = {"system": system, "value": value}
    for index, identifier in enumerate(identifiers):
        if identifier.get("system") == system:
            identifiers[index] = new_identifier
            break
    else:
        identifiers.append(new_identifier)
    return resource


def remove_identifier(resource: dict[str, Any], system: str) -> dict[str, Any]:
    if resource.get("identifier"):
        resource["identifier"] = [i for i in resource["identifier"] if i.get("system") != system]
    return resource
