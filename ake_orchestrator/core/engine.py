"""AKE orchestration: one full keypair -> sign -> verify+encapsulate -> decapsulate.

Architectural role:
    Provides `AkeEngine.run_ake`, the single operation behind `POST /select/ake`.
    The engine performs no cryptography; it sequences calls across the KEM backend,
    the selected signature backend, and the optional rotation backend.

Control-flow model:
    1. Select a signature scheme (`core.policy`).
    2. Resolve the KEM base; fail fast when unreachable.
    3. Re-probe the chosen signature backend; fail fast when unreachable. The
       selector's snapshot is not trusted, since backends can go away in between.
    4. Generate a KEM keypair.
    5. Fetch signer metadata as a fallback for fields strategies omit.
    6. Run the signing strategy chain against verify-and-encapsulate.
    7. Decapsulate with the secret key paired with the winning context.
    8. Compare shared secrets exactly; `mismatch` is a result, not an error.

State machine:
    Idle -> SelectingScheme -> ResolvingBackends -> GeneratingKeypair ->
    AttemptingSignature(i) -> VerifyingAndEncapsulating -> Decapsulating -> Done.
    Any failure in steps 1-3, exhaustion of the chain, or a fatal downstream error
    ends in Failed. Only the strategy sub-loop retries.

Side effects:
    May create a signing key on the rotation backend (never revoked).

Determinism:
    Orchestration order is fixed; outcomes depend on backend availability and
    responses.
"""

from __future__ import annotations

import logging

from ake_orchestrator.backends.backend_config import KYBER, ROTATION
from ake_orchestrator.backends.client import BackendClient, BackendError
from ake_orchestrator.backends.contracts import (
    KemContract,
    RotationContract,
    SignatureContract,
)
from ake_orchestrator.core.ake_types import AkeResult, SelectionInput, SignerInfo
from ake_orchestrator.core.errors import BackendUnreachable
from ake_orchestrator.core.health import HealthAggregator
from ake_orchestrator.core.policy import SchemeSelector
from ake_orchestrator.core.strategies import (
    BootstrapStrategy,
    DirectStrategy,
    RotationStrategy,
    SigningChain,
    SigningRequest,
    SigningStrategy,
)


logger = logging.getLogger(__name__)


class AkeEngine:
    """Request-scoped orchestration over a shared immutable client/config."""

    def __init__(self, client: BackendClient) -> None:
        self.client = client
        self.health = HealthAggregator(client)
        self.selector = SchemeSelector(self.health)

    async def run_ake(self, selection: SelectionInput) -> AkeResult:
        """Run one AKE round trip.

        Args:
            selection: Normalized caller hints.

        Returns:
            `AkeResult` with `status` `ok` or `mismatch`.

        Raises:
            OrchestrationError: Unreachable backends, no signature service, strategy
                exhaustion, malformed downstream responses.
            BackendError: Transport/status failures of non-retried calls.
        """
        logger.info("state=SelectingScheme")
        decision = await self.selector.select(selection)

        logger.info("state=ResolvingBackends scheme=%s", decision.scheme)
        kyber_base = await self.health.resolve(KYBER)
        if kyber_base is None:
            raise BackendUnreachable(KYBER)

        signature_base = await self.health.resolve(decision.scheme)
        if signature_base is None:
            raise BackendUnreachable(decision.scheme)

        kem = KemContract(self.client, kyber_base)
        signature = SignatureContract(self.client, signature_base, decision.scheme)

        logger.info("state=GeneratingKeypair kyber=%s", kyber_base)
        kyber_public_key, kyber_secret_key = await kem.generate_keypair()

        signer = await self._signer_info(signature)
        signer_level = selection.level if selection.level is not None else signer.level

        chain = SigningChain(signature, await self._strategies(signature))
        success = await chain.run(
            SigningRequest(
                scheme=decision.scheme,
                kyber_public_key=kyber_public_key,
                kyber_secret_key=kyber_secret_key,
                signer=signer,
                signer_level=signer_level,
                level_hint=selection.level,
            )
        )

        context = success.context
        encapsulation = success.encapsulation

        logger.info("state=Decapsulating source=%s", context.source)
        decapsulated = await kem.decapsulate(context.kyber_secret_key, encapsulation.ciphertext)
        match = decapsulated == encapsulation.shared_secret

        result = AkeResult(
            scheme_selected=decision.scheme,
            reason=decision.reason,
            signer_level=str(context.signer_level) if context.signer_level is not None else None,
            signer_kid=context.signer_kid,
            kyber_ciphertext_len=len(encapsulation.ciphertext),
            shared_secret_match=match,
        )
        logger.info(
            "state=Done status=%s scheme=%s reason=%s source=%s",
            result.status,
            result.scheme_selected,
            result.reason,
            context.source,
        )
        if not match:
            logger.warning("shared secret mismatch scheme=%s source=%s", decision.scheme, context.source)
        return result

    async def _signer_info(self, signature: SignatureContract) -> SignerInfo:
        """Fetch signer metadata; an unavailable endpoint degrades to empty metadata."""
        try:
            return await signature.signer_info()
        except BackendError as exc:
            logger.warning("signer metadata unavailable scheme=%s: %s", signature.scheme, exc)
            return SignerInfo()

    async def _strategies(self, signature: SignatureContract) -> list[SigningStrategy]:
        strategies: list[SigningStrategy] = []

        rotation_base = await self.health.resolve(ROTATION)
        if rotation_base is not None:
            strategies.append(RotationStrategy(RotationContract(self.client, rotation_base)))
        else:
            logger.info("rotation backend unreachable; skipping rotation strategy")

        strategies.append(DirectStrategy(signature))
        strategies.append(BootstrapStrategy(signature))
        return strategies
