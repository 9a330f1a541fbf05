"""Backend address and runtime configuration for the orchestrator.

Architectural role:
    Centralizes backend discovery (KEM, signature, rotation) and network budgets
    for the orchestration components. The configuration is built exactly once at process
    start by `load_config` and then passed by reference into the HTTP adapter, the
    health aggregator, the scheme selector, and the AKE engine.

Candidate ordering:
    Each logical backend resolves to an ordered candidate tuple:
    explicit override (environment) -> `localhost` -> `127.0.0.1` ->
    `host.docker.internal`. Order encodes deployment precedence and is never
    reshuffled; first-reachable wins.

Determinism:
    Deterministic for a fixed process environment and `.env` file. Nothing in this
    module reads the environment after `load_config` returns.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from dotenv import load_dotenv


KYBER = "kyber"
DILITHIUM = "dilithium"
FALCON = "falcon"
ROTATION = "rotation"

SIGNATURE_SCHEMES = (DILITHIUM, FALCON)

# Default service ports per logical backend.
DEFAULT_PORTS = {
    KYBER: 8080,
    DILITHIUM: 8081,
    FALCON: 8083,
    ROTATION: 8092,
}

FALLBACK_HOSTS = ("localhost", "127.0.0.1", "host.docker.internal")

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8090


@dataclass(frozen=True)
class OrchestratorConfig:
    """Immutable process configuration.

    Attributes:
        kyber_bases: Ordered KEM backend candidates.
        dilithium_bases: Ordered Dilithium signature backend candidates.
        falcon_bases: Ordered Falcon signature backend candidates.
        rotation_bases: Ordered key-rotation backend candidates.
        host: Listen address for the HTTP server.
        port: Listen port for the HTTP server.
        probe_timeout: Liveness probe budget in seconds.
        info_timeout: Budget for informational GET calls in seconds.
        crypto_timeout: Budget for calls performing cryptographic work in seconds.
        log_level: Root logging level name used by the CLI `serve` command.
    """

    kyber_bases: tuple[str, ...]
    dilithium_bases: tuple[str, ...]
    falcon_bases: tuple[str, ...]
    rotation_bases: tuple[str, ...]
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    probe_timeout: float = 1.5
    info_timeout: float = 4.0
    crypto_timeout: float = 8.0
    log_level: str = "INFO"

    def candidates(self, backend: str) -> tuple[str, ...]:
        """Return the candidate tuple for a logical backend name.

        Raises:
            ValueError: For unknown backend names.
        """
        if backend == KYBER:
            return self.kyber_bases
        if backend == DILITHIUM:
            return self.dilithium_bases
        if backend == FALCON:
            return self.falcon_bases
        if backend == ROTATION:
            return self.rotation_bases
        raise ValueError(f"Unknown backend: {backend}")


def build_candidates(override: str | None, port: int) -> tuple[str, ...]:
    """Build the ordered candidate tuple for one backend.

    Blank overrides are dropped; a trailing slash on the override is removed so
    path joins stay stable.
    """
    bases: list[str] = []
    if override and override.strip():
        bases.append(override.strip().rstrip("/"))
    bases.extend(f"http://{host}:{port}" for host in FALLBACK_HOSTS)
    return tuple(bases)


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _port_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    try:
        value = int(raw) if raw else 0
    except ValueError:
        return default
    return value if value > 0 else default


def load_config(environ: Mapping[str, str] | None = None) -> OrchestratorConfig:
    """Build the process configuration.

    Args:
        environ: Optional explicit mapping. When omitted, `.env` is loaded via
            `load_dotenv()` and `os.environ` is used.

    Returns:
        Frozen `OrchestratorConfig`.

    Relevant environment variables:
        - `KYBER_BASE`, `DILITHIUM_BASE`, `FALCON_BASE`
        - `KEYROTATION_BASE` (alias `ROTATION_BASE`)
        - `HOST`, `PORT`
        - `PROBE_TIMEOUT_SECONDS`, `INFO_TIMEOUT_SECONDS`, `CRYPTO_TIMEOUT_SECONDS`
        - `LOG_LEVEL`
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    rotation_override = environ.get("KEYROTATION_BASE") or environ.get("ROTATION_BASE")

    return OrchestratorConfig(
        kyber_bases=build_candidates(environ.get("KYBER_BASE"), DEFAULT_PORTS[KYBER]),
        dilithium_bases=build_candidates(environ.get("DILITHIUM_BASE"), DEFAULT_PORTS[DILITHIUM]),
        falcon_bases=build_candidates(environ.get("FALCON_BASE"), DEFAULT_PORTS[FALCON]),
        rotation_bases=build_candidates(rotation_override, DEFAULT_PORTS[ROTATION]),
        host=(environ.get("HOST") or DEFAULT_HOST).strip(),
        port=_port_env(environ, "PORT", DEFAULT_PORT),
        probe_timeout=_float_env(environ, "PROBE_TIMEOUT_SECONDS", 1.5),
        info_timeout=_float_env(environ, "INFO_TIMEOUT_SECONDS", 4.0),
        crypto_timeout=_float_env(environ, "CRYPTO_TIMEOUT_SECONDS", 8.0),
        log_level=(environ.get("LOG_LEVEL") or "INFO").strip().upper(),
    )
