"""Signing strategy chain for KEM public keys.

Architectural role:
    Produces one signature over a freshly generated KEM public key that the chosen
    signature backend accepts in `encapsulate-verified`. Backends differ in what
    they expose (direct signing, rotation-managed keys, a combined bootstrap call),
    so alternative strategies are tried strictly in order:

    1. `RotationStrategy` (only when a rotation backend is reachable)
    2. `DirectStrategy`
    3. `BootstrapStrategy`

Attempt outcomes:
    Each attempt yields exactly one explicit value:
    - `Success(context, encapsulation)`: verified and encapsulated, chain stops.
    - `Skip(reason)`: context construction failed, the context was incomplete, or
      the backend rejected the signature; the chain moves to the next strategy.
    - `Fatal(error)`: verify-and-encapsulate failed for a reason other than
      signature verification; the chain stops and the error is raised.

Construction failures:
    A network blip while building a context is indistinguishable from "strategy
    not supported" here; both skip. Skips are logged at WARNING with the cause so
    the two remain tellable apart in logs.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Protocol, Union

from ake_orchestrator.backends.backend_config import DILITHIUM, FALCON
from ake_orchestrator.backends.client import BackendError
from ake_orchestrator.backends.contracts import RotationContract, SignatureContract
from ake_orchestrator.core.ake_types import (
    Encapsulation,
    SignerInfo,
    SigningContext,
    VerificationRejected,
)
from ake_orchestrator.core.errors import DownstreamContractError, SigningStrategiesExhausted


logger = logging.getLogger(__name__)

DEFAULT_ROTATION_LEVELS = {DILITHIUM: 3, FALCON: 5}
MIN_LEVEL = 1
MAX_LEVEL = 5

_ALG_LEVEL = re.compile(r"^(falcon|dilithium)-l[1-5]$", re.IGNORECASE)
_LEVEL_HINT = re.compile(r"^(?:l|level)?\s*-?\s*(\d+)$", re.IGNORECASE)


def _parse_level(level: str | int | float | None) -> int | None:
    if level is None or isinstance(level, bool):
        return None
    if isinstance(level, int):
        return level
    if isinstance(level, float):
        return int(level) if math.isfinite(level) else None
    match = _LEVEL_HINT.match(level.strip())
    return int(match.group(1)) if match else None


def rotation_alg(scheme: str, level: str | int | float | None = None) -> str:
    """Derive the rotation-service algorithm id (e.g. `dilithium-l3`).

    Resolution order:
        1. A level already in `<scheme>-l<N>` form for the same scheme is used
           lower-cased; an id naming the other scheme is ignored.
        2. A numeric or digit-string hint (`3`, `"3"`, `"L3"`, `"level 3"`) is
           clamped into 1..5.
        3. The scheme default (Dilithium 3, Falcon 5).
    """
    if isinstance(level, str):
        explicit = _ALG_LEVEL.match(level.strip())
        if explicit and explicit.group(1).lower() == scheme:
            return level.strip().lower()

    number = _parse_level(level)
    if number is None:
        number = DEFAULT_ROTATION_LEVELS.get(scheme, MAX_LEVEL)
    number = min(MAX_LEVEL, max(MIN_LEVEL, number))
    return f"{scheme}-l{number}"


@dataclass(frozen=True)
class SigningRequest:
    """Inputs shared by every strategy for one AKE attempt.

    Attributes:
        scheme: Selected signature scheme.
        kyber_public_key: Public key from the engine's own key generation.
        kyber_secret_key: Matching secret key.
        signer: Metadata advertised by the signature backend.
        signer_level: Level forwarded to signers and to verification.
        level_hint: Caller-supplied level used for rotation algorithm ids.
    """

    scheme: str
    kyber_public_key: str
    kyber_secret_key: str
    signer: SignerInfo
    signer_level: str | int | float | None
    level_hint: str | int | float | None = None


@dataclass(frozen=True)
class Success:
    context: SigningContext
    encapsulation: Encapsulation


@dataclass(frozen=True)
class Skip:
    reason: str


@dataclass(frozen=True)
class Fatal:
    error: Exception


AttemptOutcome = Union[Success, Skip, Fatal]


class SigningStrategy(Protocol):
    name: str

    async def build_context(self, request: SigningRequest) -> SigningContext:
        """Build a signing context; raise `BackendError` when the backend fails."""
        ...


# ============================================================
# Strategies
# ============================================================

class RotationStrategy:
    """Sign through the key-rotation service, creating a key when none is active."""

    name = "rotation"

    def __init__(self, rotation: RotationContract) -> None:
        self.rotation = rotation

    async def build_context(self, request: SigningRequest) -> SigningContext:
        hint = request.level_hint if request.level_hint is not None else request.signer_level
        alg = rotation_alg(request.scheme, hint)
        key = await self.rotation.ensure_current_key(alg, request.signer_level)
        signature, is_compressed = await self.rotation.sign(alg, request.kyber_public_key)

        return SigningContext(
            source=self.name,
            signature=signature,
            signer_public_key=key.public_key,
            signer_level=request.signer_level,
            signer_kid=key.kid,
            kyber_public_key=request.kyber_public_key,
            kyber_secret_key=request.kyber_secret_key,
            is_compressed=is_compressed,
        )


class DirectStrategy:
    """Sign with the signature backend's own `/{scheme}/sign` endpoint."""

    name = "direct"

    def __init__(self, signature: SignatureContract) -> None:
        self.signature = signature

    async def build_context(self, request: SigningRequest) -> SigningContext:
        signature, is_compressed = await self.signature.sign(
            request.kyber_public_key,
            request.signer_level,
        )
        return SigningContext(
            source=self.name,
            signature=signature,
            signer_public_key=request.signer.public_key,
            signer_level=request.signer_level,
            kyber_public_key=request.kyber_public_key,
            kyber_secret_key=request.kyber_secret_key,
            is_compressed=is_compressed,
        )


class BootstrapStrategy:
    """Use the backend's combined keygen+sign call.

    The bootstrap keypair replaces the engine-generated one, since the returned
    signature covers the bootstrap public key. A response without a keypair yields
    an incomplete context and is skipped; the engine-generated keypair is never
    substituted, because the bootstrap signature was not made over it.
    """

    name = "bootstrap"

    def __init__(self, signature: SignatureContract) -> None:
        self.signature = signature

    async def build_context(self, request: SigningRequest) -> SigningContext:
        bundle = await self.signature.bootstrap()
        return SigningContext(
            source=self.name,
            signature=bundle.signature,
            signer_public_key=bundle.signer_public_key or request.signer.public_key,
            signer_level=bundle.level if bundle.level is not None else request.signer_level,
            kyber_public_key=bundle.kyber_public_key,
            kyber_secret_key=bundle.kyber_secret_key,
            is_compressed=bundle.is_compressed,
        )


# ============================================================
# Chain
# ============================================================

class SigningChain:
    """Ordered strategy loop bound to one signature backend."""

    def __init__(
        self,
        signature: SignatureContract,
        strategies: list[SigningStrategy],
    ) -> None:
        self.signature = signature
        self.strategies = strategies

    async def attempt(self, strategy: SigningStrategy, request: SigningRequest) -> AttemptOutcome:
        """Build one context and submit it to verify-and-encapsulate."""
        try:
            context = await strategy.build_context(request)
        except (BackendError, DownstreamContractError) as exc:
            return Skip(reason=f"{strategy.name}: {exc}")

        missing = context.missing_fields()
        if missing:
            return Skip(reason=f"{strategy.name}: incomplete context (missing {', '.join(missing)})")

        logger.info(
            "state=VerifyingAndEncapsulating scheme=%s source=%s",
            request.scheme,
            context.source,
        )
        try:
            outcome = await self.signature.encapsulate_verified(context)
        except (BackendError, DownstreamContractError) as exc:
            return Fatal(error=exc)

        if isinstance(outcome, VerificationRejected):
            return Skip(reason=f"{strategy.name}: verification rejected ({outcome.detail})")
        return Success(context=context, encapsulation=outcome)

    async def run(self, request: SigningRequest) -> Success:
        """Try each strategy in order until one verifies.

        Raises:
            BackendError/DownstreamContractError: Non-verification failure of
                verify-and-encapsulate, not retried.
            SigningStrategiesExhausted: No strategy produced a verified context.
        """
        reasons: list[str] = []

        for index, strategy in enumerate(self.strategies):
            logger.info(
                "state=AttemptingSignature index=%d strategy=%s scheme=%s",
                index,
                strategy.name,
                request.scheme,
            )
            outcome = await self.attempt(strategy, request)

            if isinstance(outcome, Success):
                return outcome
            if isinstance(outcome, Fatal):
                logger.error("strategy=%s fatal downstream failure: %s", strategy.name, outcome.error)
                raise outcome.error

            logger.warning("signing strategy skipped: %s", outcome.reason)
            reasons.append(outcome.reason)

        raise SigningStrategiesExhausted(reasons)
