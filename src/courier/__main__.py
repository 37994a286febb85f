"""Run the Courier delivery worker pool.

Usage:
    python -m courier
    courier-worker --concurrency 16
"""

from __future__ import annotations

import argparse
import asyncio
import signal

from courier.config import Settings
from courier.logging import configure_logging, get_logger
from courier.service import CourierService

logger = get_logger(__name__)


async def run_worker(settings: Settings) -> None:
    """Run claim loops and the reclaimer until SIGINT/SIGTERM."""
    async with CourierService.create(settings) as service:
        pool = service.pool()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, pool.stop)

        logger.info(
            "Courier worker started",
            concurrency=settings.worker_concurrency,
            queue_prefix=settings.queue_prefix,
        )
        await pool.run()


def main(argv: list[str] | None = None) -> None:
    """Parse arguments and run the worker pool."""
    parser = argparse.ArgumentParser(prog="courier-worker", description=__doc__.splitlines()[0])
    parser.add_argument("--concurrency", type=int, help="Override COURIER_WORKER_CONCURRENCY")
    args = parser.parse_args(argv)

    settings = Settings()
    if args.concurrency is not None:
        settings = settings.model_copy(update={"worker_concurrency": args.concurrency})

    configure_logging(level=settings.log_level, format=settings.log_format)
    asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()
