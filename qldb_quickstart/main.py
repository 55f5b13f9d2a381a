"""
QLDB Quickstart - Main entry point.

Provisions a ledger, creates a table, inserts one timestamped document and
reads it back, then prints a per-stage summary.

Usage:
    qldb-quickstart [--ledger-name NAME] [--table-name NAME] [options]
    python -m qldb_quickstart.main

Configuration comes from environment variables (see config.py); command
line flags override them.

Invariants:
    - The first SIGINT/SIGTERM stops the run after the current stage and
      cancels a provisioning wait; the remaining stages are skipped
    - A second signal cancels the run outright (exit status 130)
    - The exit status is 0 only if every stage succeeded

How to change safely:
    - Add new flags with defaults that leave the environment value in charge
    - Keep the JSON report schema additive
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

import json_log_formatter

from .config import QuickstartConfig
from .control.aws import AwsLedgerControlPlane
from .driver.driver import LedgerDriver
from .workflow import Quickstart, RunReport

logger = logging.getLogger(__name__)


def setup_logging(config: QuickstartConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Quickstart configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("pyqldb").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create a QLDB ledger, write one document and read it back"
    )
    parser.add_argument("--ledger-name", help="Ledger to create (default: MyLedger)")
    parser.add_argument("--table-name", help="Table to create (default: MyTable)")
    parser.add_argument("--region", help="AWS region")
    parser.add_argument("--poll-interval", type=float, help="Seconds between ledger status polls")
    parser.add_argument("--timeout", type=float, help="Seconds to wait for the ledger to become active")
    parser.add_argument("--retry-limit", type=int, help="OCC retries per transaction")
    parser.add_argument(
        "--delete-after", action="store_true", help="Delete the ledger when the run finishes"
    )
    parser.add_argument("--report-json", type=Path, help="Write the run report as JSON to this path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    return parser


def apply_overrides(config: QuickstartConfig, args: argparse.Namespace) -> QuickstartConfig:
    """Return a copy of config with command line overrides applied and validated.

    Raises:
        ValueError: If the resulting configuration is invalid
    """
    ledger_changes = {}
    if args.ledger_name is not None:
        ledger_changes["ledger_name"] = args.ledger_name
    if args.table_name is not None:
        ledger_changes["table_name"] = args.table_name
    if args.poll_interval is not None:
        ledger_changes["poll_interval_seconds"] = args.poll_interval
    if args.timeout is not None:
        ledger_changes["provisioning_timeout_seconds"] = args.timeout
    if args.delete_after:
        ledger_changes["delete_after_run"] = True

    driver_changes = {}
    if args.retry_limit is not None:
        driver_changes["retry_limit"] = args.retry_limit

    aws_changes = {}
    if args.region is not None:
        aws_changes["region"] = args.region

    observability_changes = {}
    if args.verbose:
        observability_changes["log_level"] = "DEBUG"

    config = dataclasses.replace(
        config,
        aws=dataclasses.replace(config.aws, **aws_changes),
        ledger=dataclasses.replace(config.ledger, **ledger_changes),
        driver=dataclasses.replace(config.driver, **driver_changes),
        observability=dataclasses.replace(config.observability, **observability_changes),
    )
    config.validate()
    return config


async def run_quickstart(
    config: QuickstartConfig, cancel_event: Optional[asyncio.Event] = None
) -> RunReport:
    """Run the quickstart against AWS."""
    control = AwsLedgerControlPlane(config.aws)
    driver = LedgerDriver.from_config(config.ledger.ledger_name, config.aws, config.driver)
    quickstart = Quickstart(config, control, driver, cancel_event=cancel_event)
    return await quickstart.run()


def signal_handler(cancel_event: asyncio.Event, task: asyncio.Future) -> Callable[[int], None]:
    """First signal sets cancel_event, any further one cancels the task."""

    def handle_signal(sig: int) -> None:
        if cancel_event.is_set():
            logger.warning(f"Received signal {sig} again, aborting")
            task.cancel()
            return
        logger.info(f"Received signal {sig}, cancelling")
        cancel_event.set()

    return handle_signal


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    # Load configuration
    try:
        config = apply_overrides(QuickstartConfig.from_env(), args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    cancel_event = asyncio.Event()
    task = loop.create_task(run_quickstart(config, cancel_event))
    handle_signal = signal_handler(cancel_event, task)

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        report = loop.run_until_complete(task)
    except asyncio.CancelledError:
        logger.error("Run aborted")
        sys.exit(130)
    finally:
        loop.close()

    if args.report_json:
        args.report_json.write_text(report.model_dump_json(indent=2))
        logger.info(f"Run report written to {args.report_json}")

    sys.exit(report.exit_code)


if __name__ == "__main__":
    main()
