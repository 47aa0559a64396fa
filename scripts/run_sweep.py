import asyncio
import os
import sys

import httpx
import structlog

# Root folder on the path so config / services import when run as a script
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import get_settings
from database import AsyncSessionLocal
from logger_config import configure_logger
from services.gateways import build_gateways, build_sweeps

logger = structlog.get_logger("run_sweep")
settings = get_settings()

JOBS = ("reminders", "overdue_forms", "inventory", "digest")


async def run_sweeps(job: str = "all"):
    """
    Run one sweep (or all four) once, outside the worker's schedule.

    Guards are the same as in the worker, so running this next to a live
    worker never duplicates a reminder, alert or digest.
    """
    async with httpx.AsyncClient(timeout=settings.GATEWAY_TIMEOUT_SECONDS) as http:
        runner = build_sweeps(AsyncSessionLocal, build_gateways(AsyncSessionLocal, http))

        jobs = JOBS if job == "all" else (job,)
        for name in jobs:
            result = await runner.run(name)
            print(f"{'✅' if not result.failed else '⚠️'} {name}: "
                  f"{result.processed} processed, {result.skipped} skipped, {result.failed} failed")


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="Run scheduled sweeps once")
    parser.add_argument("--job", choices=JOBS + ("all",), default="all", help="Sweep to run")
    args = parser.parse_args()

    configure_logger()
    asyncio.run(run_sweeps(job=args.job))
