"""Typed adapters for the downstream KEM, signature, and rotation contracts.

Architectural role:
    Owns the response-shape normalization for every backend the orchestrator talks
    to. Heterogeneous services expose the same logical field under different names;
    each logical field is resolved here through an ordered alias tuple, so call
    sites in `core` only ever see normalized values.

Verification-failure indicator:
    `SignatureContract.encapsulate_verified` returns `VerificationRejected` when the
    backend refuses the signature, and raises for every other failure. Callers
    never inspect error text themselves.

Determinism:
    Alias resolution is deterministic: first present, well-typed value wins.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from ake_orchestrator.backends.client import BackendClient, BackendHTTPError
from ake_orchestrator.core.ake_types import (
    Encapsulation,
    SignerInfo,
    SigningContext,
    VerificationRejected,
)
from ake_orchestrator.core.errors import DownstreamContractError


logger = logging.getLogger(__name__)


# ============================================================
# Field aliases
# ============================================================

SIGNER_PUBLIC_KEY_FIELDS = (
    "signerPublicKey",
    "falconSignerPublicKey",
    "dilithiumSignerPublicKey",
    "publicKey",
)
SIGNER_LEVEL_FIELDS = ("level", "alg", "algorithm")
SERVICE_SIGNATURE_FIELDS = ("signature", "signatureBase64", "sig")
ROTATION_SIGNATURE_FIELDS = ("signatureB64", "signatureBase64", "signature", "sig")
ROTATION_PUBLIC_KEY_FIELDS = (
    "publicKey",
    "publicKeyB64",
    "publicKeyBase64",
    "signerPublicKey",
    "falconPublicKey",
    "dilithiumPublicKey",
    "pub",
    "pk",
)
ROTATION_KID_FIELDS = ("kid", "keyId", "id")

# Shorter strings are ids or algorithm labels, not key material.
MIN_ROTATION_PUBLIC_KEY_CHARS = 17

VERIFICATION_ERROR_CODES = frozenset({
    "signature_invalid",
    "invalid_signature",
    "signature_mismatch",
    "verification_failed",
    "signature_verification_failed",
})

_VERIFICATION_TEXT = re.compile(
    r"signature\s+mismatch"
    r"|invalid\s+signature"
    r"|signature\s+(?:is\s+)?invalid"
    r"|signature\s+verification\s+failed"
    r"|verification\s+failed"
    r"|failed\s+to\s+verify",
    re.IGNORECASE,
)


def is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def is_level_value(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    return isinstance(value, (int, float)) or is_non_empty_str(value)


def is_key_material(value: Any) -> bool:
    return isinstance(value, str) and len(value) >= MIN_ROTATION_PUBLIC_KEY_CHARS


def first_field(
    payload: Mapping[str, Any] | None,
    fields: Iterable[str],
    accept: Callable[[Any], bool] = is_non_empty_str,
) -> Any | None:
    """Return the first accepted value among `fields` in `payload`, else `None`."""
    if not payload:
        return None
    for name in fields:
        value = payload.get(name)
        if accept(value):
            return value
    return None


def compression_flag(payload: Mapping[str, Any]) -> bool | None:
    value = payload.get("isCompressed")
    return value if isinstance(value, bool) else None


def is_verification_failure(err: BackendHTTPError) -> bool:
    """Classify an encapsulate-verified error response.

    Structured indicators are checked first (`verified: false`, known error codes);
    prose error/detail text is matched against the verification vocabulary for
    services that return nothing else.
    """
    payload = err.payload
    if payload.get("verified") is False:
        return True

    for key in ("code", "error"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip().lower() in VERIFICATION_ERROR_CODES:
            return True

    texts = [payload.get(key) for key in ("error", "detail", "message", "raw")]
    texts.append(str(err))
    return any(isinstance(text, str) and _VERIFICATION_TEXT.search(text) for text in texts)


# ============================================================
# KEM backend
# ============================================================

class KemContract:
    """`/kyber/*` endpoints of the KEM backend."""

    def __init__(self, client: BackendClient, base: str) -> None:
        self.client = client
        self.base = base

    async def generate_keypair(self) -> tuple[str, str]:
        data = await self.client.post_json(f"{self.base}/kyber/generate-keypair", {})
        public_key = data.get("publicKey")
        secret_key = data.get("secretKey")
        if not is_non_empty_str(public_key) or not is_non_empty_str(secret_key):
            raise DownstreamContractError("Kyber generate-keypair returned no keypair")
        return public_key, secret_key

    async def decapsulate(self, secret_key: str, ciphertext: str) -> str:
        data = await self.client.post_json(
            f"{self.base}/kyber/decapsulate",
            {"secretKey": secret_key, "ciphertext": ciphertext},
        )
        shared_secret = data.get("sharedSecret")
        if not is_non_empty_str(shared_secret):
            raise DownstreamContractError("Kyber decapsulate returned no shared secret")
        return shared_secret


# ============================================================
# Signature backends
# ============================================================

@dataclass(frozen=True)
class BootstrapBundle:
    """Normalized `/orchestrator/bootstrap` response."""

    signature: str | None
    is_compressed: bool | None
    kyber_public_key: str | None
    kyber_secret_key: str | None
    signer_public_key: str | None
    level: str | int | float | None


class SignatureContract:
    """Endpoints exposed by one signature backend (Dilithium or Falcon)."""

    def __init__(self, client: BackendClient, base: str, scheme: str) -> None:
        self.client = client
        self.base = base
        self.scheme = scheme

    async def signer_info(self) -> SignerInfo:
        data = await self.client.get_json(f"{self.base}/orchestrator/signer")
        return SignerInfo(
            public_key=first_field(data, SIGNER_PUBLIC_KEY_FIELDS),
            level=first_field(data, SIGNER_LEVEL_FIELDS, accept=is_level_value),
        )

    async def sign(
        self,
        message_b64: str,
        level: str | int | float | None,
    ) -> tuple[str | None, bool | None]:
        """Sign `message_b64` with the service's own signer.

        Returns:
            `(signature, is_compressed)`; signature is `None` when no alias is present.
        """
        body: dict[str, Any] = {"messageBase64": message_b64}
        if level is not None:
            body["level"] = level
        data = await self.client.post_json(f"{self.base}/{self.scheme}/sign", body)
        return first_field(data, SERVICE_SIGNATURE_FIELDS), compression_flag(data)

    async def bootstrap(self) -> BootstrapBundle:
        data = await self.client.post_json(f"{self.base}/orchestrator/bootstrap", {})
        return BootstrapBundle(
            signature=first_field(data, SERVICE_SIGNATURE_FIELDS),
            is_compressed=compression_flag(data),
            kyber_public_key=first_field(data, ("kyberPublicKey",)),
            kyber_secret_key=first_field(data, ("kyberSecretKey",)),
            signer_public_key=first_field(data, SIGNER_PUBLIC_KEY_FIELDS),
            level=first_field(data, ("level",), accept=is_level_value),
        )

    async def encapsulate_verified(
        self,
        context: SigningContext,
    ) -> Encapsulation | VerificationRejected:
        """Ask the backend to verify the context signature and encapsulate.

        Returns:
            `Encapsulation` on success, `VerificationRejected` when the backend
            refuses the signature.

        Raises:
            BackendError: Transport failures and non-verification error responses.
            DownstreamContractError: Success response without ciphertext/secret.
        """
        body: dict[str, Any] = {
            "kyberPublicKey": context.kyber_public_key,
            "signature": context.signature,
            "signerPublicKey": context.signer_public_key,
            "level": context.signer_level,
        }
        if context.is_compressed is not None:
            body["isCompressed"] = context.is_compressed

        try:
            data = await self.client.post_json(
                f"{self.base}/orchestrator/encapsulate-verified",
                body,
            )
        except BackendHTTPError as err:
            if is_verification_failure(err):
                return VerificationRejected(detail=str(err))
            raise

        if data.get("verified") is False:
            return VerificationRejected(detail=str(data.get("error") or "signature not verified"))

        ciphertext = data.get("ciphertext")
        shared_secret = data.get("sharedSecret")
        if not is_non_empty_str(ciphertext) or not is_non_empty_str(shared_secret):
            raise DownstreamContractError(
                f"{self.scheme} encapsulate-verified returned no ciphertext/shared secret"
            )
        return Encapsulation(ciphertext=ciphertext, shared_secret=shared_secret)


# ============================================================
# Rotation backend
# ============================================================

@dataclass(frozen=True)
class RotationKey:
    public_key: str | None
    kid: str | None


class RotationContract:
    """Optional key-rotation service."""

    def __init__(self, client: BackendClient, base: str) -> None:
        self.client = client
        self.base = base

    async def current_key(self, alg: str) -> RotationKey:
        data = await self.client.get_json(
            f"{self.base}/orchestrator/keys/current",
            params={"alg": alg},
        )
        kid = first_field(data, ROTATION_KID_FIELDS, accept=is_level_value)
        return RotationKey(
            public_key=first_field(data, ROTATION_PUBLIC_KEY_FIELDS, accept=is_key_material),
            kid=str(kid) if kid is not None else None,
        )

    async def rotate(self, alg: str, level: str | int | float | None = None) -> None:
        body: dict[str, Any] = {"alg": alg}
        if level is not None:
            body["level"] = level
        await self.client.post_json(f"{self.base}/keys/rotate", body)

    async def ensure_current_key(
        self,
        alg: str,
        level: str | int | float | None = None,
    ) -> RotationKey:
        """Return the active key for `alg`, rotating once when none exists."""
        try:
            return await self.current_key(alg)
        except BackendHTTPError as err:
            logger.info("no current rotation key alg=%s (%s); rotating", alg, err)
        await self.rotate(alg, level)
        return await self.current_key(alg)

    async def sign(self, alg: str, message_b64: str) -> tuple[str | None, bool | None]:
        data = await self.client.post_json(
            f"{self.base}/sign",
            {"alg": alg, "messageB64": message_b64},
        )
        return first_field(data, ROTATION_SIGNATURE_FIELDS), compression_flag(data)
