"""
Test doubles shared by the test-suite.

`StubDriver` stands in for the deployment driver, `FakeRunner` for the
process runner behind the `pac` CLI bridge and `TokenIssuer` for the
Entra ID tenant that signs bearer tokens.
"""

import asyncio
import json
import time
from typing import Callable, Dict, List, Optional

import httpx
import jwt
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from connector_studio.models.connector import ConnectorRecord
from connector_studio.services.deployment_driver import DriverResult
from connector_studio.services.process_runner import ProcessResult
from connector_studio.util.connector_definition import build_definition

PLATFORM_ID = "3fa85f64-5717-4562-b3fc-2c963f66afa6"


class StubDriver:
    """
    Deployment driver double.

    `results` holds the outcome returned per action. When `gate` is set to an
    `asyncio.Event`, every call blocks until the event is set, which keeps an
    operation in flight for as long as a test needs; `remove_gate` does the same
    for `remove`.
    """

    def __init__(self):
        self.results: Dict[str, DriverResult] = {
            "test": DriverResult.ok("pong"),
            "deploy": DriverResult.ok("Connector created", platform_connector_id=PLATFORM_ID),
        }
        self.remove_result = DriverResult.ok()
        self.remove_gate: Optional[asyncio.Event] = None
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []
        self.seen: List[ConnectorRecord] = []
        self.cancelled = 0
        self.discarded: List[str] = []

    async def _respond(self, action: str, record: ConnectorRecord) -> DriverResult:
        self.calls.append((action, record.id))
        self.seen.append(record)
        try:
            if self.gate is not None:
                await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        return self.results[action]

    async def deploy(self, record, session):
        return await self._respond("deploy", record)

    async def test(self, record):
        return await self._respond("test", record)

    async def remove(self, record, session):
        self.calls.append(("remove", record.id))
        if self.remove_gate is not None:
            await self.remove_gate.wait()
        return self.remove_result

    def definition(self, record):
        return build_definition(record)

    def discard_artifacts(self, record):
        self.discarded.append(record.id)


class FakeRunner:
    """Process runner double: records invocations and replays a handler."""

    def __init__(self, handler: Optional[Callable[[str, list], object]] = None):
        self.handler = handler or (lambda command, args: "")
        self.calls: List[dict] = []

    async def run(self, command, args=(), timeout=None, input=None, env=None, cwd=None):
        self.calls.append({"command": command, "args": list(args), "timeout": timeout, "input": input, "env": env})
        outcome = self.handler(command, list(args))
        if isinstance(outcome, BaseException):
            raise outcome
        return ProcessResult(exit_code=0, stdout=str(outcome).strip(), stderr="")


async def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class TokenIssuer:
    """
    Identity provider double.

    Signs RS256 access tokens the way Entra ID does and serves the matching
    key set; `transport` plugs it into an `IdentityClient`. The token
    endpoint answers every client-credentials request with `app-token`.
    """

    def __init__(self, tenant_id: str = "tenant", audience: str = "https://api.powerplatform.com",
                 kid: str = "signing-key"):
        self.tenant_id = tenant_id
        self.audience = audience
        self.kid = kid
        self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        public_jwk = json.loads(RSAAlgorithm.to_jwk(self.private_key.public_key()))
        public_jwk.update({"kid": kid, "use": "sig"})
        self.jwks = {"keys": [public_jwk]}
        self.key_requests = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/discovery/v2.0/keys"):
            self.key_requests += 1
            return httpx.Response(200, json=self.jwks)
        return httpx.Response(200, json={"access_token": "app-token", "token_type": "Bearer", "expires_in": 3600})

    def issue(self, lifetime: int = 3600, signing_key=None, kid: Optional[str] = None, **claims) -> str:
        now = int(time.time())
        payload = {
            "iss": f"https://sts.windows.net/{self.tenant_id}/",
            "tid": self.tenant_id,
            "aud": self.audience,
            "iat": now,
            "nbf": now,
            "exp": now + lifetime,
            "scp": "user_impersonation",
            **claims,
        }
        return jwt.encode(payload, signing_key or self.private_key, algorithm="RS256",
                          headers={"kid": kid or self.kid})

    def headers(self, **kwargs) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.issue(**kwargs)}"}
