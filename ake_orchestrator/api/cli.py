"""
Command-line entrypoint for the AKE orchestrator.

Architectural role:
- `serve`: build the configuration once, configure logging, run the HTTP API.
- `health`: query a running orchestrator's `/health` and print the report.
- `ake`: request one AKE round trip from a running orchestrator and print it.

Exit codes:
- `health`: 0 when status is `ok`, 1 when `degraded`, 2 when unreachable.
- `ake`: 0 when shared secrets match, 1 on `mismatch`, 2 on failure.

Error handling strategy:
- Transport failures of the client commands print a one-line error to stderr.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

import requests
import uvicorn

from ake_orchestrator.api.http_api import create_app
from ake_orchestrator.backends.backend_config import SIGNATURE_SCHEMES, load_config


DEFAULT_URL = "http://localhost:8090"
CLIENT_TIMEOUT_SECONDS = 30


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def serve(args: argparse.Namespace) -> int:
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = args.host or config.host
    port = args.port or config.port
    logging.getLogger(__name__).info(
        "starting orchestrator host=%s port=%d kyber=%s dilithium=%s falcon=%s rotation=%s",
        host,
        port,
        config.kyber_bases,
        config.dilithium_bases,
        config.falcon_bases,
        config.rotation_bases,
    )
    uvicorn.run(create_app(config), host=host, port=port, log_level=config.log_level.lower())
    return 0


def health(args: argparse.Namespace) -> int:
    try:
        response = requests.get(f"{args.url.rstrip('/')}/health", timeout=CLIENT_TIMEOUT_SECONDS)
        response.raise_for_status()
        report = response.json()
    except (requests.exceptions.RequestException, ValueError) as err:
        print(f"orchestrator not reachable: {err}", file=sys.stderr)
        return 2

    _print_json(report)
    return 0 if report.get("status") == "ok" else 1


def ake(args: argparse.Namespace) -> int:
    body = {}
    if args.payload_hint is not None:
        body["payloadHintBytes"] = args.payload_hint
    if args.prefer:
        body["policyPreferredSig"] = args.prefer
    if args.level:
        body["level"] = args.level

    try:
        response = requests.post(
            f"{args.url.rstrip('/')}/select/ake",
            json=body,
            timeout=CLIENT_TIMEOUT_SECONDS,
        )
        result = response.json()
    except (requests.exceptions.RequestException, ValueError) as err:
        print(f"orchestrator not reachable: {err}", file=sys.stderr)
        return 2

    _print_json(result)
    if response.status_code != 200:
        return 2
    return 0 if result.get("sharedSecretMatch") else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ake-orchestrator",
        description="Post-quantum AKE auto-selector",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve_cmd = commands.add_parser("serve", help="run the HTTP API")
    serve_cmd.add_argument("--host", default=None)
    serve_cmd.add_argument("--port", type=int, default=None)
    serve_cmd.set_defaults(handler=serve)

    health_cmd = commands.add_parser("health", help="print backend reachability")
    health_cmd.add_argument("--url", default=DEFAULT_URL)
    health_cmd.set_defaults(handler=health)

    ake_cmd = commands.add_parser("ake", help="run one AKE round trip")
    ake_cmd.add_argument("--url", default=DEFAULT_URL)
    ake_cmd.add_argument("--payload-hint", type=int, default=None)
    ake_cmd.add_argument("--prefer", choices=SIGNATURE_SCHEMES, default=None)
    ake_cmd.add_argument("--level", default=None)
    ake_cmd.set_defaults(handler=ake)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
