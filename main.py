"""
vaultseed - Main Entry Point

Secret provisioning orchestrator: seed a vault, grant workload identities
access, confirm propagation, and print secret references.

Usage:
    # Provision against the configured backend
    python main.py run --config infrastructure/provisioning.example.json

    # Dry run with the in-memory backend and a simulated propagation delay
    SIMULATED_PROPAGATION_SECONDS=3 python main.py run --config provisioning.json --backend memory

    # Check a configuration without writing anything
    python main.py validate --config provisioning.json

Exit codes:
    0   run reached Ready (or configuration is valid)
    1   run failed permanently
    2   invalid configuration
    75  run failed transiently; resubmitting may succeed
    130 run cancelled
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

from vaultseed.config import Settings, get_settings, load_request
from vaultseed.core.container import BackendContainer
from vaultseed.core.exceptions import VaultSeedError
from vaultseed.models.schemas import ProvisioningRun, RunState
from vaultseed.orchestration import (
    missing_read_bindings,
    render_workloads,
    run_with_retries,
)

EXIT_READY = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_RETRYABLE = 75
EXIT_CANCELLED = 130

logger = structlog.get_logger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure structured logging to stderr."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, settings.log_level),
    )
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def exit_code_for(run: ProvisioningRun) -> int:
    if run.state is RunState.READY:
        return EXIT_READY
    if run.failure is not None and run.failure.kind == "cancelled":
        return EXIT_CANCELLED
    if run.failure is not None and run.failure.retryable:
        return EXIT_RETRYABLE
    return EXIT_FAILED


def build_output(run: ProvisioningRun, workloads: dict[str, Any]) -> dict[str, Any]:
    output = run.summary()
    output["workloads"] = workloads
    return output


async def provision(args: argparse.Namespace, settings: Settings) -> int:
    """Run the provisioning sequence and print the reference map."""
    overrides = {
        "confirm_timeout_seconds": args.confirm_timeout,
        "poll_interval_seconds": args.poll_interval,
    }
    request = load_request(Path(args.config), overrides)

    container = BackendContainer(settings)
    container.register_request(request)
    orchestrator = container.orchestrator

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        loop.add_signal_handler(signal.SIGTERM, orchestrator.cancel)
    except NotImplementedError:
        pass

    retries = settings.run_retries if args.retries is None else args.retries
    run = await run_with_retries(orchestrator, request, retries=retries)

    workloads = render_workloads(request.workloads, run.reference_map) if run.is_ready else {}
    output = json.dumps(build_output(run, workloads), indent=2)
    if args.output:
        Path(args.output).write_text(output + "\n", encoding="utf-8")
    else:
        print(output)

    if run.failure is not None:
        print(f"Provisioning failed: {run.failure.describe()}", file=sys.stderr)
        if run.failure.retryable:
            print("This failure is transient; resubmitting the run is safe.", file=sys.stderr)

    return exit_code_for(run)


def validate(args: argparse.Namespace, settings: Settings) -> int:
    """Check a run configuration without side effects."""
    request = load_request(Path(args.config))

    container = BackendContainer(settings)
    errors = []
    for spec in request.secret_specs:
        try:
            container.materializer.validate(spec)
        except VaultSeedError as e:
            errors.append(f"secret {spec.name}: {e.message}")

    unmet = [p.name for p in request.preconditions if not p.satisfied]
    for name in unmet:
        errors.append(f"precondition {name} is not satisfied")

    for missing in missing_read_bindings(request, settings.vault_name):
        print(f"warning: no read binding for workload secret {missing}", file=sys.stderr)

    if errors:
        for error in errors:
            print(f"error: {error}", file=sys.stderr)
        return EXIT_CONFIG

    print(
        f"Configuration valid: {len(request.secret_specs)} secret(s), "
        f"{len(request.bindings)} binding(s), {len(request.workloads)} workload(s)"
    )
    return EXIT_READY


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vaultseed",
        description="Provision vault secrets and access bindings, then publish references",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run_parser = sub.add_parser("run", help="Provision secrets and bindings")
    run_parser.add_argument("--config", "-c", required=True, help="Run configuration JSON file")
    run_parser.add_argument(
        "--backend",
        choices=["memory", "aws"],
        default=None,
        help="Override the configured backend",
    )
    run_parser.add_argument("--confirm-timeout", type=float, default=None, help="Seconds to wait for bindings")
    run_parser.add_argument("--poll-interval", type=float, default=None, help="Seconds between confirmation polls")
    run_parser.add_argument("--retries", type=int, default=None, help="Resubmissions on transient failure")
    run_parser.add_argument("--output", "-o", default=None, help="Write the result JSON to a file")

    validate_parser = sub.add_parser("validate", help="Validate a run configuration")
    validate_parser.add_argument("--config", "-c", required=True, help="Run configuration JSON file")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
        if getattr(args, "backend", None):
            settings = Settings(**{**settings.model_dump(), "backend": args.backend})
    except ValueError as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(settings)

    try:
        if args.command == "validate":
            return validate(args, settings)
        return asyncio.run(provision(args, settings))
    except VaultSeedError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except KeyboardInterrupt:
        print("Provisioning cancelled", file=sys.stderr)
        return EXIT_CANCELLED


if __name__ == "__main__":
    sys.exit(main())
