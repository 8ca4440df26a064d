"""
Test utilities for ABDM integration tests.
"""

import base64
import json
from typing import Any, Callable, Optional

import httpx
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa


class FakeClock:
    """Controllable clock returning POSIX seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def decrypt_field(private_key: rsa.RSAPrivateKey, ciphertext_b64: str) -> str:
    """Decrypt a field encrypted with RSA-OAEP/SHA-1, as the gateway would."""
    oaep = padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA1()), algorithm=hashes.SHA1(), label=None)
    return private_key.decrypt(base64.b64decode(ciphertext_b64), oaep).decode("utf-8")


class GatewayStub:
    """
    In-process fake of the ABDM gateway for httpx.MockTransport.

    Routes are keyed by URL path suffix; every request is recorded.
    """

    def __init__(self, public_key: Optional[str] = None):
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.session_calls = 0
        if public_key is not None:
            self.on("/v3/profile/public/certificate", lambda request: httpx.Response(200, json={"publicKey": public_key}))
        self.on("/sessions", self._session)

    def _session(self, request: httpx.Request) -> httpx.Response:
        self.session_calls += 1
        return httpx.Response(200, json={"accessToken": f"session-{self.session_calls}", "expiresIn": 1800})

    def on(self, path_suffix: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[path_suffix] = handler

    def respond(self, path_suffix: str, status_code: int, body: Any) -> None:
        self.on(path_suffix, lambda request: httpx.Response(status_code, json=body))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for suffix, route in self.routes.items():
            if request.url.path.endswith(suffix):
                return route(request)
        return httpx.Response(404, json={"message": "not found"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests_to(self, path_suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(path_suffix)]

    @staticmethod
    def body(request: httpx.Request) -> dict[str, Any]:
        return json.loads(request.content)
