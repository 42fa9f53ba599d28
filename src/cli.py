"""Console entry point for the managed instance group canary rollout CLI."""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import List

from config import RolloutConfig
from errors import RolloutCancelledError, RolloutError
from log_utils import setup_logging
from rollout import RolloutOrchestrator

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description=(
            "Managed Instance Group Canary Rollout Tool\n\n"
            "Rolls a new instance template out to a managed instance group by doubling\n"
            "a canary slice each round, waiting for the group to become stable and\n"
            "checking backend service health of the canary instances."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  # Preview the first canary step\n"
            "  mig-canary-rollout --project my-project --region europe-west2 \\\n"
            "      --instance-group web --template web-v2 --dry-run\n\n"
            "  # Roll out to a zonal group\n"
            "  mig-canary-rollout --project my-project --zone europe-west2-a \\\n"
            "      --instance-group web --template web-v2\n"
        ),
    )

    required = parser.add_argument_group("required arguments")
    required.add_argument(
        "--project",
        required=True,
        metavar="PROJECT_ID",
        help="GCP project ID containing the instance group",
    )
    required.add_argument(
        "--instance-group",
        required=True,
        metavar="NAME",
        help="Name of the managed instance group",
    )
    required.add_argument(
        "--template",
        required=True,
        metavar="TEMPLATE",
        help="Name of the instance template to roll out",
    )

    location = parser.add_mutually_exclusive_group(required=True)
    location.add_argument(
        "--region", help="Region of a regional managed instance group"
    )
    location.add_argument("--zone", help="Zone of a zonal managed instance group")

    timing = parser.add_argument_group("stability wait")
    timing.add_argument(
        "--tick-interval",
        type=int,
        default=60,
        metavar="SECONDS",
        help="Time between stability checks (default: 60 seconds).",
    )
    timing.add_argument(
        "--max-ticks",
        type=int,
        default=60,
        metavar="N",
        help=(
            "Stability checks before the rollout is aborted (default: 60, "
            "i.e. one hour with the default tick interval)."
        ),
    )

    mode = parser.add_argument_group("operation mode")
    mode.add_argument(
        "--dry-run",
        action="store_true",
        help="Log the first canary patch without applying it.",
    )

    logging_group = parser.add_argument_group("logging and output")
    logging_group.add_argument(
        "--verbose", action="store_true", help="Enable verbose (DEBUG) logging."
    )
    logging_group.add_argument(
        "--log-file",
        default="mig-rollout.log",
        metavar="PATH",
        help="Log file path (default: mig-rollout.log).",
    )
    return parser


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose, log_file=args.log_file)

    config = RolloutConfig.from_args(args)
    cancel_event = threading.Event()

    def _cancel(signum, _frame):
        if cancel_event.is_set():
            return
        logger.warning(f"Received signal {signum}, cancelling rollout...")
        cancel_event.set()
        # Unwind out of any blocking HTTP read instead of waiting for its timeout
        raise RolloutCancelledError(f"rollout cancelled by signal {signum}")

    try:
        runner = RolloutOrchestrator(
            project_id=config.project_id,
            location=config.location,
            group_name=config.group_name,
            template_name=config.template_name,
            tick_interval=config.tick_interval,
            max_ticks=config.max_ticks,
            dry_run=config.dry_run,
        )

        previous = {
            sig: signal.signal(sig, _cancel) for sig in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            runner.start(cancel_event)
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
    except RolloutError as e:
        logger.critical(f"[FATAL] {e}")
        return 1
    except Exception as e:
        logger.critical(f"[FATAL] unexpected error: {e!r}", exc_info=True)
        return 1

    return 0
