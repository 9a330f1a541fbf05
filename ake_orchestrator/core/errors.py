"""Fatal per-request orchestration failures.

Every exception here ends a `/select/ake` request and is reported by the HTTP
adapter as `502 {"error": "select_ake_failed", "detail": str(exc)}`. Callers do not
branch on subtype; the hierarchy exists for logging and tests.
"""

from __future__ import annotations


class OrchestrationError(RuntimeError):
    """Base class for terminal orchestration failures."""


class BackendUnreachable(OrchestrationError):
    """No candidate address of a logical backend answered within budget."""

    def __init__(self, backend: str) -> None:
        label = "Kyber" if backend == "kyber" else backend
        super().__init__(f"{label} unreachable")
        self.backend = backend


class NoSignatureServiceReachable(OrchestrationError):
    def __init__(self) -> None:
        super().__init__("No signature service reachable")


class SigningStrategiesExhausted(OrchestrationError):
    """Every signing strategy was skipped or rejected by verification."""

    def __init__(self, reasons: list[str]) -> None:
        detail = "; ".join(reasons) if reasons else "no strategy attempted"
        super().__init__(f"No signature produced ({detail})")
        self.reasons = list(reasons)


class DownstreamContractError(OrchestrationError):
    """A backend answered successfully but with an unusable response shape."""
