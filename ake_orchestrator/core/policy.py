"""Signature-scheme selection policy.

Decision model:
    - Rule-based only, first matching rule wins.
    - Reachability of both signature backends is probed concurrently.

Priority order:
    1. explicit `policyPreferredSig`, when that backend is reachable
    2. payload hint `0 < hint <= 1024` and Falcon reachable (smaller signatures)
    3. Dilithium if reachable, else Falcon if reachable
    4. failure: no signature service reachable

A preference naming an unreachable backend is ignored, not rejected.

Determinism:
    Deterministic for identical inputs and identical probe outcomes.
"""

from __future__ import annotations

import asyncio
import logging

from ake_orchestrator.backends.backend_config import DILITHIUM, FALCON
from ake_orchestrator.core.ake_types import (
    REASON_DEFAULT,
    REASON_PAYLOAD_TIGHT,
    SchemeDecision,
    SelectionInput,
    policy_reason,
)
from ake_orchestrator.core.errors import NoSignatureServiceReachable
from ake_orchestrator.core.health import HealthAggregator


logger = logging.getLogger(__name__)

TIGHT_PAYLOAD_MAX_BYTES = 1024


def decide(
    selection: SelectionInput,
    dilithium_reachable: bool,
    falcon_reachable: bool,
) -> SchemeDecision:
    """Pure decision over already-probed reachability.

    Raises:
        NoSignatureServiceReachable: When neither backend is reachable.
    """
    reachable = {DILITHIUM: dilithium_reachable, FALCON: falcon_reachable}

    preferred = selection.policy_preferred_sig
    if preferred in reachable and reachable[preferred]:
        return SchemeDecision(scheme=preferred, reason=policy_reason(preferred))

    hint = selection.payload_hint_bytes
    if hint is not None and 0 < hint <= TIGHT_PAYLOAD_MAX_BYTES and falcon_reachable:
        return SchemeDecision(scheme=FALCON, reason=REASON_PAYLOAD_TIGHT)

    if dilithium_reachable:
        return SchemeDecision(scheme=DILITHIUM, reason=REASON_DEFAULT)
    if falcon_reachable:
        return SchemeDecision(scheme=FALCON, reason=REASON_DEFAULT)

    raise NoSignatureServiceReachable()


class SchemeSelector:
    def __init__(self, health: HealthAggregator) -> None:
        self.health = health

    async def select(self, selection: SelectionInput) -> SchemeDecision:
        dilithium_base, falcon_base = await asyncio.gather(
            self.health.resolve(DILITHIUM),
            self.health.resolve(FALCON),
        )
        decision = decide(selection, dilithium_base is not None, falcon_base is not None)
        logger.info(
            "scheme selected scheme=%s reason=%s hint=%s preferred=%s",
            decision.scheme,
            decision.reason,
            selection.payload_hint_bytes,
            selection.policy_preferred_sig,
        )
        return decision
