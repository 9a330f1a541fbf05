"""Health aggregation across all logical backends.

Architectural role:
    Backs the `GET /health` read path. Runs `first_reachable` for the KEM, both
    signature backends, and the rotation backend concurrently, then composes a
    `HealthReport`.

Determinism:
    Report content depends only on what answered the probes during this call.
    Nothing is cached between calls.
"""

from __future__ import annotations

import asyncio
import logging

from ake_orchestrator.backends.backend_config import DILITHIUM, FALCON, KYBER, ROTATION
from ake_orchestrator.backends.client import BackendClient
from ake_orchestrator.core.ake_types import BackendHealth, HealthReport


logger = logging.getLogger(__name__)


class HealthAggregator:
    def __init__(self, client: BackendClient) -> None:
        self.client = client

    async def resolve(self, backend: str) -> str | None:
        """Return the first reachable base of `backend`, or `None`."""
        return await self.client.first_reachable(self.client.config.candidates(backend))

    async def report(self) -> HealthReport:
        kyber, dilithium, falcon, rotation = await asyncio.gather(
            self.resolve(KYBER),
            self.resolve(DILITHIUM),
            self.resolve(FALCON),
            self.resolve(ROTATION),
        )
        report = HealthReport(
            kyber=BackendHealth(reachable=kyber is not None, base=kyber),
            dilithium=BackendHealth(reachable=dilithium is not None, base=dilithium),
            falcon=BackendHealth(reachable=falcon is not None, base=falcon),
            rotation=BackendHealth(reachable=rotation is not None, base=rotation),
        )
        logger.info(
            "health status=%s kyber=%s dilithium=%s falcon=%s rotation=%s",
            report.status,
            kyber,
            dilithium,
            falcon,
            rotation,
        )
        return report
