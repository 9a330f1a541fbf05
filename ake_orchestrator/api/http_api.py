"""
HTTP API adapter for the AKE orchestrator.

Architectural role:
- Expose the health read path and the one-call AKE endpoint.
- Perform lenient request parsing (hints are ignored when invalid, never rejected).
- Delegate orchestration to `ake_orchestrator.core.engine.AkeEngine`.
- Collapse every fatal orchestration failure into one response shape.

Endpoint responsibilities:
- `GET /health`: probe all backends concurrently and report reachability.
- `POST /select/ake`: select a scheme, run the AKE round trip, report the result.

API request lifecycle (`POST /select/ake`):
1. Parse the JSON body; a missing, malformed, or non-object body counts as `{}`.
2. Normalize hints through `AkeRequest`.
3. Run `AkeEngine.run_ake`.
4. Return the result envelope, or `502 select_ake_failed`.

Error handling strategy:
- `200` for both `ok` and `mismatch` outcomes.
- `502 {"error": "select_ake_failed", "detail": <message>}` for every failure.
  Unexpected exceptions are logged with traceback before being mapped.

Side effects:
- Outbound probes and backend calls only; no state is kept between requests.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, field_validator

from ake_orchestrator.backends.backend_config import SIGNATURE_SCHEMES, OrchestratorConfig
from ake_orchestrator.backends.client import BackendClient, BackendError
from ake_orchestrator.core.ake_types import SelectionInput
from ake_orchestrator.core.engine import AkeEngine
from ake_orchestrator.core.errors import OrchestrationError


logger = logging.getLogger(__name__)

ERROR_CODE = "select_ake_failed"


# ============================================================
# Request Schema
# ============================================================

class AkeRequest(BaseModel):
    """`POST /select/ake` body.

    Validation is deliberately loose: unusable values become `None` instead of
    producing a 422.
    """

    model_config = ConfigDict(extra="ignore")

    payloadHintBytes: float | None = None
    policyPreferredSig: str | None = None
    level: str | int | float | None = None

    @field_validator("payloadHintBytes", mode="before")
    @classmethod
    def _loose_hint(cls, value: Any) -> float | None:
        if value is None or isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError, OverflowError):
            return None
        if not math.isfinite(number) or number <= 0:
            return None
        return number

    @field_validator("policyPreferredSig", mode="before")
    @classmethod
    def _known_scheme(cls, value: Any) -> str | None:
        if not isinstance(value, str):
            return None
        scheme = value.strip().lower()
        return scheme if scheme in SIGNATURE_SCHEMES else None

    @field_validator("level", mode="before")
    @classmethod
    def _loose_level(cls, value: Any) -> str | int | float | None:
        if isinstance(value, bool):
            return None
        if isinstance(value, str):
            return value.strip() or None
        if isinstance(value, float):
            return value if math.isfinite(value) else None
        if isinstance(value, int):
            return value
        return None

    def to_selection(self) -> SelectionInput:
        return SelectionInput(
            payload_hint_bytes=self.payloadHintBytes,
            policy_preferred_sig=self.policyPreferredSig,
            level=self.level,
        )


async def _read_body(request: Request) -> dict[str, Any]:
    """Return the request JSON object, or `{}` for empty/invalid/non-object bodies."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _failure(detail: str) -> JSONResponse:
    return JSONResponse(status_code=502, content={"error": ERROR_CODE, "detail": detail})


# ============================================================
# Application factory
# ============================================================

def create_app(config: OrchestratorConfig, client: BackendClient | None = None) -> FastAPI:
    """Build the FastAPI application bound to one immutable configuration.

    Args:
        config: Process configuration built once at startup.
        client: Optional pre-built backend client (tests inject a mock transport).

    Returns:
        Configured `FastAPI` instance.
    """
    backend_client = client or BackendClient(config)
    engine = AkeEngine(backend_client)

    app = FastAPI(title="AKE auto-selector")
    app.state.config = config
    app.state.engine = engine

    @app.get("/health")
    async def health():
        report = await engine.health.report()
        return report.to_dict()

    @app.post("/select/ake")
    async def select_ake(request: Request):
        body = await _read_body(request)
        selection = AkeRequest.model_validate(body).to_selection()

        try:
            result = await engine.run_ake(selection)
        except (OrchestrationError, BackendError) as exc:
            logger.warning("select/ake failed: %s", exc)
            return _failure(str(exc))
        except Exception as exc:
            logger.exception("select/ake failed unexpectedly")
            return _failure(str(exc) or type(exc).__name__)

        return result.to_dict()

    return app
