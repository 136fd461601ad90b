"""
CLI for codegate.
"""
import argparse
import asyncio
import json
import sys
import logging
from typing import Any, Dict, Optional

import uvicorn

from codegate.auth.store import JsonFileSessionStore
from codegate.config.defaults import SERVER_DEFAULTS
from codegate.config.gateway import GatewayConfig
from codegate.config.logging import setup_logging
from codegate.types import result_to_dict

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def build_config(args: argparse.Namespace) -> GatewayConfig:
    """Load an optional JSON config file, then apply command-line overrides."""
    data: Dict[str, Any] = {}
    if args.config:
        with open(args.config, "r", encoding="utf-8") as f:
            data = json.load(f)

    sandbox = dict(data.get("sandbox") or {})
    if args.sandbox:
        sandbox["level"] = args.sandbox
    if args.timeout is not None:
        sandbox["timeout"] = args.timeout
    if sandbox:
        data["sandbox"] = sandbox

    if args.max_calls is not None:
        data["max_calls"] = args.max_calls
    if args.api_base:
        data["api_base"] = args.api_base
    return GatewayConfig.from_dict(data)


def build_gateway(args: argparse.Namespace, session_id: str):
    from codegate.gateway import CodeGateway

    store = JsonFileSessionStore(args.session_file)
    return CodeGateway(
        store,
        account_ids=args.account or None,
        config=build_config(args),
        session_id=session_id,
    )


def serve(args: argparse.Namespace) -> None:
    from codegate.api.server import create_app

    gateway = build_gateway(args, session_id="server")
    metrics_enabled = not args.no_metrics
    app = create_app(
        gateway,
        metrics_enabled=metrics_enabled,
        metrics_exporter=args.metrics_exporter,
        metrics_endpoint=args.metrics_endpoint,
    )

    if metrics_enabled:
        if args.metrics_exporter == "prometheus":
            logger.info("OpenTelemetry metrics enabled (Prometheus exporter at /metrics)")
        elif args.metrics_exporter in ("otlp", "otlp_http"):
            endpoint = args.metrics_endpoint or "default"
            logger.info(f"OpenTelemetry metrics enabled (OTLP exporter to {endpoint})")
        else:
            logger.info(f"OpenTelemetry metrics enabled ({args.metrics_exporter} exporter)")

    logger.info(f"Sandbox level: {gateway.config.sandbox.level.value}")
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


def read_code(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def run(args: argparse.Namespace) -> int:
    from codegate.classifier import error_view

    gateway = build_gateway(args, session_id="cli")
    result = asyncio.run(gateway.execute(read_code(args.code_file), args.intent))

    payload = result_to_dict(result)
    if not result.ok:
        payload["meta"].pop("code", None)
        view = error_view(result)
        payload["error_view"] = {"title": view.title, "detail": view.detail, "hint": view.hint}
    print(json.dumps(payload, indent=2))
    return 0 if result.ok else 1


def _add_gateway_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--session-file",
        required=True,
        help="JSON file holding the connected account sessions",
    )
    parser.add_argument(
        "--account",
        action="append",
        help="Account scripts may use (repeatable; default: all in the session file)",
    )
    parser.add_argument("--config", help="JSON file with GatewayConfig values")
    parser.add_argument(
        "--sandbox",
        choices=["inprocess", "subprocess"],
        help="Sandbox isolation level (default: subprocess)",
    )
    parser.add_argument("--timeout", type=float, help="Execution timeout in seconds (default: 30)")
    parser.add_argument("--max-calls", type=int, help="Remote calls allowed per execution (default: 10)")
    parser.add_argument("--api-base", help="Base URL of the mail API")
    parser.add_argument(
        "--log-level",
        default=SERVER_DEFAULTS.log_level,
        choices=LOG_LEVELS,
        help=f"Log level (default: {SERVER_DEFAULTS.log_level})",
    )
    parser.add_argument("--log-file", help="Log file path")


def main(argv: Optional[list] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="codegate",
        description="Sandboxed code-execution gateway for a mail REST API",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    _add_gateway_arguments(serve_parser)
    serve_parser.add_argument(
        "--host",
        default=SERVER_DEFAULTS.host,
        help=f"Bind address (default: {SERVER_DEFAULTS.host})",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=SERVER_DEFAULTS.port,
        help=f"Port (default: {SERVER_DEFAULTS.port})",
    )
    serve_parser.add_argument(
        "--no-metrics",
        action="store_true",
        help="Disable metrics collection",
    )
    serve_parser.add_argument(
        "--metrics-exporter",
        default="prometheus",
        choices=["prometheus", "otlp", "otlp_http", "console"],
        help="Metrics exporter type (default: prometheus)",
    )
    serve_parser.add_argument(
        "--metrics-endpoint",
        help="OTLP endpoint URL (e.g., http://localhost:4317 for gRPC, http://localhost:4318/v1/metrics for HTTP)",
    )

    run_parser = subparsers.add_parser("run", help="Execute one script and print the result")
    _add_gateway_arguments(run_parser)
    run_parser.add_argument(
        "--code-file",
        required=True,
        help="File holding the script body, or - for stdin",
    )
    run_parser.add_argument("--intent", default="", help="What the script is meant to do")

    args = parser.parse_args(argv)

    # "run" prints its result on stdout
    stream = sys.stderr if args.command == "run" else None
    setup_logging(args.log_level, args.log_file, stream=stream)

    if args.command == "serve":
        serve(args)
    elif args.command == "run":
        sys.exit(run(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
