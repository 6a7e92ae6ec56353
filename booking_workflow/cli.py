"""
booking-workflow command line.

Usage:
  booking-workflow [--config PATH] init-db
  booking-workflow [--config PATH] --wiring MODULE:FUNC sweep
  booking-workflow [--config PATH] --wiring MODULE:FUNC resend SUBJECT_ID
  booking-workflow [--config PATH] --wiring MODULE:FUNC render SUBJECT_ID --out PATH
  booking-workflow [--config PATH] --wiring MODULE:FUNC schedule [--interval SECONDS]

``--wiring`` names a callable that takes the ``WorkflowConfig`` and returns
``(DomainDataProvider, UserDirectory)`` for the deployment's domain.  It can
also be set with ``BOOKING_WORKFLOW_WIRING``.

Exit codes: 0 success, 1 workflow errors, 2 usage or configuration errors.
"""

from __future__ import annotations

import argparse
import importlib
import logging
import os
import sys
from pathlib import Path
from typing import Sequence

import yaml

from booking_config import get_config
from booking_config.schema import WorkflowConfig
from booking_kernel.db.engine import create_tables, init_engine_from_url
from booking_kernel.exceptions import SubjectNotFoundError
from booking_kernel.logging_config import configure_logging, get_logger
from booking_workflow.orchestrator import BookingFormWorkflow

logger = get_logger("workflow.cli")

WIRING_ENV = "BOOKING_WORKFLOW_WIRING"


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="booking-workflow",
        description="Booking-form approval workflow: ledger setup, sweeper and manual resend",
    )
    p.add_argument("--config", default=None, help="Path to the workflow YAML file")
    p.add_argument(
        "--wiring",
        default=os.environ.get(WIRING_ENV),
        help="MODULE:FUNC returning (provider, directory) for the given config",
    )
    p.add_argument("--log-level", default="INFO", help="Root log level (default INFO)")

    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create the ledger table")
    sub.add_parser("sweep", help="Run one sweeper pass")
    resend = sub.add_parser("resend", help="Resend the booking form for a subject")
    resend.add_argument("subject_id")
    render = sub.add_parser("render", help="Write the current booking form PDF without sending it")
    render.add_argument("subject_id")
    render.add_argument("--out", required=True, help="File to write the PDF to")
    schedule = sub.add_parser("schedule", help="Run the sweeper on a fixed interval")
    schedule.add_argument(
        "--interval", type=float, default=None,
        help="Seconds between passes (default: sweep_interval_seconds from config)",
    )
    return p.parse_args(argv)


def load_wiring(spec: str):
    """Import ``MODULE:FUNC`` and return the callable."""
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Wiring must look like MODULE:FUNC, got {spec!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


def build_workflow(config: WorkflowConfig, wiring: str | None) -> BookingFormWorkflow:
    if not wiring:
        raise ValueError(f"--wiring (or ${WIRING_ENV}) is required for this command")
    provider, directory = load_wiring(wiring)(config)
    return BookingFormWorkflow.from_config(config, provider=provider, directory=directory)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(level=getattr(logging, args.log_level.upper(), logging.INFO))

    try:
        config = get_config(args.config, reload=True)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 2

    if args.command == "init-db":
        create_tables(init_engine_from_url(config.database_url))
        print("  Ledger table ready.")
        return 0

    try:
        workflow = build_workflow(config, args.wiring)
    except (ImportError, AttributeError, ValueError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 2

    if args.command == "sweep":
        result = workflow.sweep()
        print(f"  Processed: {result.processed}")
        for error in result.errors:
            print(f"  ERROR: {error}", file=sys.stderr)
        return 1 if result.errors else 0

    if args.command == "resend":
        result = workflow.resend(args.subject_id)
        if not result.ok:
            print(f"  ERROR: {result.error}", file=sys.stderr)
            return 1
        print(f"  Sent ({result.idempotency_key}).")
        return 0

    if args.command == "render":
        document = workflow.render(args.subject_id)
        if document is None:
            print(f"  ERROR: {SubjectNotFoundError(args.subject_id)}", file=sys.stderr)
            return 1
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(document)
        print(f"  Wrote {out} ({len(document)} bytes).")
        return 0

    scheduler = workflow.create_scheduler(args.interval)
    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
