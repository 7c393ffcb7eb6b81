"""Recurring runner for the expired-order sweep.

Cancels pending gateway orders that were never paid, on a fixed interval.
The threshold comes from ORDER_EXPIRY_HOURS (default 24) and the interval
from SWEEP_INTERVAL_MINUTES (default 15).

Usage:
    python src/server.py               # Sweep every SWEEP_INTERVAL_MINUTES
    python src/server.py --once        # Run a single sweep and exit
    python src/server.py --interval 5  # Sweep every 5 minutes
"""

import argparse
import asyncio
import os

import structlog

from storefront.domain import storefront
from storefront.order.expiry import sweep

logger = structlog.get_logger(__name__)


def run_sweep():
    with storefront.domain_context():
        return sweep()


async def run(interval_minutes: float, once: bool = False):
    storefront.init()
    logger.info("Expiry sweeper started", interval_minutes=interval_minutes, once=once)

    while True:
        # Sweeps block on per-key locks and the store; keep them off the event loop.
        result = await asyncio.to_thread(run_sweep)
        logger.info("Sweep finished", **result.to_dict())
        if once:
            return
        await asyncio.sleep(interval_minutes * 60)


def main():
    parser = argparse.ArgumentParser(description="Storefront expiry sweeper")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    parser.add_argument(
        "--interval",
        type=float,
        default=float(os.environ.get("SWEEP_INTERVAL_MINUTES", "15")),
        help="Minutes between sweeps (default: SWEEP_INTERVAL_MINUTES or 15)",
    )
    args = parser.parse_args()

    asyncio.run(run(args.interval, once=args.once))


if __name__ == "__main__":
    main()
