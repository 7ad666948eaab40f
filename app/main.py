"""
Sweep Service Entry Point

Runs the scheduled transaction sweep on a fixed interval until interrupted.

Usage:
    python -m app.main            # run forever
    python -m app.main --once     # single sweep, print the summary and exit
"""

import argparse
import asyncio
import logging
import signal
import sys

import structlog

from finance_ledger.config import get_settings, validate_all_settings
from finance_ledger.orchestrator import create_app_components


logger = structlog.get_logger(__name__)


def _configure_logging() -> None:
    level = get_settings().app.log_level
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level),
    )


async def _serve(once: bool) -> int:
    checks = validate_all_settings()
    failed = [name for name, ok in checks.items() if ok is False]
    if failed:
        logger.error("settings_invalid", groups=failed, details=checks)
        return 1

    components = create_app_components()

    if once:
        result = await components.runner.run_once()
        print(result.model_dump_json(indent=2))
        return 0 if result.errors == 0 else 2

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, components.runner.stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    await components.runner.run_forever()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Finance ledger sweep service")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit",
    )
    args = parser.parse_args()

    _configure_logging()
    sys.exit(asyncio.run(_serve(args.once)))


if __name__ == "__main__":
    main()
