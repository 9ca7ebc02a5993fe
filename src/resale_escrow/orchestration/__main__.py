"""Run the deadline sweep outside the API process.

Usage:
    python -m resale_escrow.orchestration            # one pass, then exit
    python -m resale_escrow.orchestration --loop     # every SWEEP_INTERVAL_SECONDS
"""

from __future__ import annotations

import argparse
import asyncio
import json

from resale_escrow.config import get_settings
from resale_escrow.infrastructure.database.engine import close_db, init_db
from resale_escrow.logging_config import get_logger, setup_logging
from resale_escrow.orchestration.deadline_sweep import DeadlineSweep


async def _main(loop: bool, interval: int | None) -> None:
    settings = get_settings()
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
        environment=settings.app_env,
    )
    logger = get_logger("sweep")

    await init_db()
    sweep = DeadlineSweep()
    try:
        if loop:
            await sweep.run_forever(interval)
        else:
            summary = await sweep.run_once()
            print(json.dumps(summary.to_dict(), indent=2))
    finally:
        await close_db()
        logger.info("sweep.process_exit")


def main() -> None:
    parser = argparse.ArgumentParser(description="Resale escrow deadline sweep")
    parser.add_argument("--loop", action="store_true", help="Keep sweeping on an interval")
    parser.add_argument("--interval", type=int, default=None, help="Seconds between passes")
    args = parser.parse_args()
    asyncio.run(_main(args.loop, args.interval))


if __name__ == "__main__":
    main()
