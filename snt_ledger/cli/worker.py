"""CLI entry point for the background job worker.

Usage:
    python -m snt_ledger.cli.worker            # poll until interrupted
    python -m snt_ledger.cli.worker --once     # run due jobs once and exit

Exit Codes:
    0 - Success
    1 - Failure: worker crashed
"""

import argparse
import asyncio
import logging
import signal
import sys

from snt_ledger.config import settings
from snt_ledger.jobs.runner import JobRunner
from snt_ledger.services import SessionLocal
from snt_ledger.services.logging import setup_server_logging

logger = logging.getLogger(__name__)


async def run(once: bool, poll_interval: float | None) -> int:
    runner = JobRunner(SessionLocal)
    if once:
        processed = await runner.run_pending()
        logger.info("Processed %d job attempt(s)", processed)
        return 0

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass
    await runner.run_forever(stop_event, poll_interval)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="SNT Ledger job worker")
    parser.add_argument("--once", action="store_true", help="Run due jobs once and exit")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help=f"Seconds between polls (default: {settings.job_poll_interval_seconds})",
    )
    args = parser.parse_args()

    setup_server_logging(settings.log_file)
    try:
        return asyncio.run(run(args.once, args.poll_interval))
    except KeyboardInterrupt:
        logger.warning("Worker interrupted by user")
        return 1
    except Exception as e:
        logger.error("Worker failed: %s", e, exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
