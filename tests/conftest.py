from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from ake_orchestrator.api.http_api import create_app
from ake_orchestrator.backends.backend_config import OrchestratorConfig
from ake_orchestrator.backends.client import BackendClient


KYBER_URL = "http://kyber.test"
DILITHIUM_URL = "http://dilithium.test"
FALCON_URL = "http://falcon.test"
ROTATION_URL = "http://rotation.test"


def signer_public_key(scheme: str) -> str:
    return f"{scheme}-service-signer-public-key"


def rotation_public_key(alg: str) -> str:
    return f"rotation-public-key-for-{alg}"


@dataclass
class FakeBackends:
    """In-memory stand-ins for the KEM, signature, and rotation services.

    Signatures are plain strings binding signer and message, so verification is a
    string comparison and a wrong pairing is detected the same way a real backend
    would reject it.
    """

    up: dict[str, bool] = field(default_factory=lambda: {
        "kyber": True,
        "dilithium": True,
        "falcon": True,
        "rotation": False,
    })
    health_status: int = 200
    # backend -> number of /health answers left before it starts refusing
    health_budget: dict[str, int] = field(default_factory=dict)
    # ok | error | empty
    sign_mode: str = "ok"
    # ok | error | no_keys
    bootstrap_mode: str = "ok"
    # ok | reject_all | server_error | malformed
    encapsulate_mode: str = "ok"
    signer_mode: str = "ok"
    corrupt_ciphertext: bool = False
    rotation_has_key: bool = True
    rotation_short_key: bool = False
    calls: list[tuple[str, str, str]] = field(default_factory=list)
    bodies: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)
    _keypairs: int = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def called(self, backend: str, path: str) -> bool:
        return any(b == backend and p == path for b, _, p in self.calls)

    def body_for(self, backend: str, path: str) -> dict[str, Any]:
        for b, p, body in reversed(self.bodies):
            if b == backend and p == path:
                return body
        raise AssertionError(f"no call to {backend}{path}")

    # ------------------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        backend = request.url.host.split(".")[0]
        path = request.url.path
        self.calls.append((backend, request.method, path))

        if not self.up.get(backend, False):
            raise httpx.ConnectError("connection refused", request=request)

        body = json.loads(request.content) if request.content else {}
        if request.method == "POST":
            self.bodies.append((backend, path, body))

        if path == "/health":
            if backend in self.health_budget:
                if self.health_budget[backend] <= 0:
                    raise httpx.ConnectError("connection refused", request=request)
                self.health_budget[backend] -= 1
            return httpx.Response(self.health_status, json={"status": "up"})

        if backend == "kyber":
            return self._kyber(path, body)
        if backend == "rotation":
            return self._rotation(request, path, body)
        return self._signature(backend, path, body)

    def _new_keypair(self) -> tuple[str, str]:
        self._keypairs += 1
        return f"kpk-{self._keypairs}", f"ksk-{self._keypairs}"

    def _kyber(self, path: str, body: dict[str, Any]) -> httpx.Response:
        if path == "/kyber/generate-keypair":
            public_key, secret_key = self._new_keypair()
            return httpx.Response(200, json={"publicKey": public_key, "secretKey": secret_key})

        if path == "/kyber/decapsulate":
            ciphertext = body.get("ciphertext", "")
            index = body.get("secretKey", "").removeprefix("ksk-")
            if ciphertext == f"ct:kpk-{index}":
                return httpx.Response(200, json={"sharedSecret": f"ss:kpk-{index}"})
            return httpx.Response(200, json={"sharedSecret": "ss:garbage"})

        return httpx.Response(404, json={"error": "not found"})

    def _signature(self, scheme: str, path: str, body: dict[str, Any]) -> httpx.Response:
        if path == "/orchestrator/signer":
            if self.signer_mode == "error":
                return httpx.Response(500, json={"error": "signer unavailable"})
            level = "Dilithium3" if scheme == "dilithium" else "Falcon-1024"
            return httpx.Response(
                200,
                json={f"{scheme}SignerPublicKey": signer_public_key(scheme), "level": level},
            )

        if path == f"/{scheme}/sign":
            if self.sign_mode == "error":
                return httpx.Response(404, json={"error": "sign not supported"})
            if self.sign_mode == "empty":
                return httpx.Response(200, json={})
            signature = f"sig:{signer_public_key(scheme)}:{body['messageBase64']}"
            return httpx.Response(200, json={"signatureBase64": signature})

        if path == "/orchestrator/bootstrap":
            if self.bootstrap_mode == "error":
                return httpx.Response(500, json={"error": "bootstrap failed"})
            public_key, secret_key = self._new_keypair()
            payload: dict[str, Any] = {
                "signature": f"sig:{signer_public_key(scheme)}:{public_key}",
                "signerPublicKey": signer_public_key(scheme),
                "level": "bootstrap-level",
            }
            if self.bootstrap_mode != "no_keys":
                payload["kyberPublicKey"] = public_key
                payload["kyberSecretKey"] = secret_key
            return httpx.Response(200, json=payload)

        if path == "/orchestrator/encapsulate-verified":
            return self._encapsulate(body)

        return httpx.Response(404, json={"error": "not found"})

    def _encapsulate(self, body: dict[str, Any]) -> httpx.Response:
        if self.encapsulate_mode == "server_error":
            return httpx.Response(500, json={"error": "internal error"})
        if self.encapsulate_mode == "malformed":
            return httpx.Response(200, json={"unexpected": True})

        kyber_public_key = body.get("kyberPublicKey")
        expected = {
            f"sig:{body.get('signerPublicKey')}:{kyber_public_key}",
            f"rsig:{body.get('signerPublicKey')}:{kyber_public_key}",
        }
        if self.encapsulate_mode == "reject_all" or body.get("signature") not in expected:
            return httpx.Response(400, json={"error": "signature mismatch"})

        ciphertext = "ct:corrupted" if self.corrupt_ciphertext else f"ct:{kyber_public_key}"
        return httpx.Response(
            200,
            json={"ciphertext": ciphertext, "sharedSecret": f"ss:{kyber_public_key}"},
        )

    def _rotation(self, request: httpx.Request, path: str, body: dict[str, Any]) -> httpx.Response:
        if path == "/orchestrator/keys/current":
            alg = request.url.params.get("alg")
            if not self.rotation_has_key:
                return httpx.Response(404, json={"error": "no active key"})
            key = "short" if self.rotation_short_key else rotation_public_key(alg)
            return httpx.Response(200, json={"publicKeyB64": key, "kid": f"kid-{alg}"})

        if path == "/keys/rotate":
            self.rotation_has_key = True
            return httpx.Response(200, json={"rotated": body.get("alg")})

        if path == "/sign":
            alg = body["alg"]
            signature = f"rsig:{rotation_public_key(alg)}:{body['messageB64']}"
            return httpx.Response(200, json={"signatureB64": signature, "isCompressed": False})

        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def fake() -> FakeBackends:
    return FakeBackends()


@pytest.fixture
def config() -> OrchestratorConfig:
    return OrchestratorConfig(
        kyber_bases=(KYBER_URL,),
        dilithium_bases=(DILITHIUM_URL,),
        falcon_bases=(FALCON_URL,),
        rotation_bases=(ROTATION_URL,),
    )


@pytest.fixture
def backend_client(config, fake) -> BackendClient:
    return BackendClient(config, transport=fake.transport())


@pytest.fixture
def api(config, backend_client) -> TestClient:
    return TestClient(create_app(config, client=backend_client))
