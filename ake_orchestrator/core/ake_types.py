"""Per-request data contracts shared by the selector, strategy chain, and engine.

Architectural role:
    Defines the structural values flowing through one `/select/ake` or `/health`
    request. None of these objects outlive the request that created them.

Wire representation:
    Keys, signatures, ciphertexts and shared secrets are carried as the base64
    strings exchanged with the backends; the orchestrator never decodes them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal


Scheme = Literal["dilithium", "falcon"]
ContextSource = Literal["rotation", "direct", "bootstrap"]

REASON_PAYLOAD_TIGHT = "payload_tight"
REASON_DEFAULT = "default_or_health"


def policy_reason(scheme: str) -> str:
    return f"policy:{scheme}"


@dataclass(frozen=True)
class SelectionInput:
    """Normalized caller hints.

    Attributes:
        payload_hint_bytes: Positive finite size hint, or `None` when absent/invalid.
        policy_preferred_sig: `"dilithium"`, `"falcon"`, or `None`.
        level: Optional level hint forwarded to signers and used for rotation ids.
    """

    payload_hint_bytes: float | None = None
    policy_preferred_sig: str | None = None
    level: str | int | float | None = None


@dataclass(frozen=True)
class SchemeDecision:
    scheme: Scheme
    reason: str


@dataclass(frozen=True)
class BackendHealth:
    reachable: bool
    base: str | None

    def to_dict(self) -> dict[str, Any]:
        return {"reachable": self.reachable, "base": self.base}


@dataclass(frozen=True)
class HealthReport:
    """Fresh reachability snapshot of all logical backends.

    `status` is `"ok"` iff the KEM backend and at least one signature backend are
    reachable, otherwise `"degraded"`.
    """

    kyber: BackendHealth
    dilithium: BackendHealth
    falcon: BackendHealth
    rotation: BackendHealth

    @property
    def status(self) -> str:
        if self.kyber.reachable and (self.dilithium.reachable or self.falcon.reachable):
            return "ok"
        return "degraded"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "kyber": self.kyber.to_dict(),
            "dilithium": self.dilithium.to_dict(),
            "falcon": self.falcon.to_dict(),
            "rotation": self.rotation.to_dict(),
        }


@dataclass(frozen=True)
class SignerInfo:
    """Signer metadata advertised by a signature backend (`/orchestrator/signer`)."""

    public_key: str | None = None
    level: str | int | float | None = None


@dataclass
class SigningContext:
    """One candidate signature over a KEM public key.

    Invariant:
        `kyber_public_key`/`kyber_secret_key` come from the same key generation the
        `signature` was computed over. Bootstrap contexts therefore carry the
        bootstrap keypair, not the one generated earlier by the engine.
    """

    source: ContextSource
    signature: str | None
    signer_public_key: str | None
    signer_level: str | int | float | None
    kyber_public_key: str | None
    kyber_secret_key: str | None
    signer_kid: str | None = None
    is_compressed: bool | None = None

    def missing_fields(self) -> list[str]:
        """Return the names of required fields that are absent or empty."""
        required = {
            "signature": self.signature,
            "signerPublicKey": self.signer_public_key,
            "kyberPublicKey": self.kyber_public_key,
            "kyberSecretKey": self.kyber_secret_key,
        }
        return [name for name, value in required.items() if not value]


@dataclass(frozen=True)
class Encapsulation:
    ciphertext: str
    shared_secret: str


@dataclass(frozen=True)
class VerificationRejected:
    """Structured verify-and-encapsulate outcome: the signature did not validate."""

    detail: str


@dataclass(frozen=True)
class AkeResult:
    """Outcome of one complete AKE round trip.

    `status == "mismatch"` is a successful orchestration whose downstream shared
    secrets disagree; it is not an error.
    """

    scheme_selected: str
    reason: str
    signer_level: str | None
    kyber_ciphertext_len: int
    shared_secret_match: bool
    signer_kid: str | None = None

    @property
    def status(self) -> str:
        return "ok" if self.shared_secret_match else "mismatch"

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "status": self.status,
            "schemeSelected": self.scheme_selected,
            "reason": self.reason,
            "signerLevel": self.signer_level,
        }
        if self.signer_kid:
            body["signerKid"] = self.signer_kid
        body["kyber"] = {"ciphertextLen": self.kyber_ciphertext_len}
        body["sharedSecretMatch"] = self.shared_secret_match
        return body
