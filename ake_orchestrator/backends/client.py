"""Async HTTP transport to the KEM, signature, and rotation backends.

Architectural role:
    Executes every outbound call made by the orchestrator and normalizes JSON
    materialization. Higher layers (`contracts`, `core.health`, `core.engine`) never
    touch `httpx` directly.

Reachability model:
    `probe(base)` issues `GET {base}/health` with the probe budget. Any HTTP response,
    whatever its status code, counts as reachable. Transport errors, malformed
    responses, invalid URLs, and timeouts count as unreachable.
    `first_reachable(candidates)` probes sequentially in candidate order and returns
    the first reachable base.

Retry behavior:
    No retry loop is implemented. Each call is attempted once under a total deadline
    (`asyncio.wait_for`) covering connect, send, and the full
    body read. A timeout aborts that call only.

Connection model:
    One `httpx.AsyncClient` per outbound call, no pooling. An optional transport can
    be injected (tests use `httpx.MockTransport`).

Failure handling model:
    - Transport failures raise `BackendRequestError`.
    - Non-2xx responses raise `BackendHTTPError` carrying status and parsed body.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Iterable

import httpx

from ake_orchestrator.backends.backend_config import OrchestratorConfig


logger = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """Base failure for one outbound backend call."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(message)
        self.url = url


class BackendRequestError(BackendError):
    """Transport-level failure: connect error, timeout, malformed response."""


class BackendHTTPError(BackendError):
    """Backend answered with a non-2xx status.

    Attributes:
        status_code: HTTP status returned by the backend.
        payload: Parsed JSON body (or `{"raw": text}` for non-JSON bodies).
    """

    def __init__(self, url: str, status_code: int, payload: dict[str, Any]) -> None:
        error = payload.get("error")
        message = error if isinstance(error, str) and error else f"{url} -> {status_code}"
        super().__init__(url, message)
        self.status_code = status_code
        self.payload = payload


def parse_body(text: str) -> dict[str, Any]:
    """Parse a response body into a dict.

    Edge cases:
        - Empty body -> `{}`.
        - Non-JSON body -> `{"raw": text}`.
        - JSON that is not an object -> `{"raw": value}`.
    """
    if not text:
        return {}
    try:
        data = json.loads(text)
    except ValueError:
        return {"raw": text}
    return data if isinstance(data, dict) else {"raw": data}


class BackendClient:
    """Per-process outbound client bound to an immutable configuration."""

    def __init__(
        self,
        config: OrchestratorConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport

    # ============================================================
    # Reachability
    # ============================================================

    async def probe(self, base: str) -> bool:
        """Return whether anything at `base` answers a liveness call."""
        url = f"{base}/health"
        budget = self.config.probe_timeout
        try:
            response = await asyncio.wait_for(self._send("GET", url, budget), timeout=budget)
        except asyncio.TimeoutError:
            logger.debug("probe timed out base=%s budget=%.2fs", base, budget)
            return False
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.debug("probe failed base=%s error=%r", base, exc)
            return False

        logger.debug("probe ok base=%s status=%d", base, response.status_code)
        return True

    async def first_reachable(self, candidates: Iterable[str]) -> str | None:
        """Probe candidates in order and return the first reachable base.

        Ordering encodes deployment precedence, so probes are never run in parallel.
        """
        for base in candidates:
            if await self.probe(base):
                return base
        return None

    # ============================================================
    # JSON calls
    # ============================================================

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """GET `url` and return the parsed JSON body."""
        return await self._request(
            "GET",
            url,
            params=params,
            timeout=timeout if timeout is not None else self.config.info_timeout,
        )

    async def post_json(
        self,
        url: str,
        body: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """POST a JSON body to `url` and return the parsed JSON body."""
        return await self._request(
            "POST",
            url,
            json_body=body if body is not None else {},
            timeout=timeout if timeout is not None else self.config.crypto_timeout,
        )

    async def _request(
        self,
        method: str,
        url: str,
        timeout: float,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute one call without retry.

        Raises:
            BackendRequestError: On transport failures and timeouts.
            BackendHTTPError: On non-2xx responses.
        """
        try:
            response = await asyncio.wait_for(
                self._send(method, url, timeout, params=params, json=json_body),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise BackendRequestError(url, f"{url} -> timeout") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise BackendRequestError(url, f"{url} -> {exc!r}") from exc

        payload = parse_body(response.text)
        if not response.is_success:
            raise BackendHTTPError(url, response.status_code, payload)
        return payload

    async def _send(self, method: str, url: str, timeout: float, **kwargs: Any) -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            return await client.request(method, url, **kwargs)
