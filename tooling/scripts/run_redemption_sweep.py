"""Expire stale redemption codes and pool reservations once.

Intended usage: schedule via cron when the in-process sweep worker is
disabled, or run by hand after an outage.

Example:
    python tooling/scripts/run_redemption_sweep.py --trigger cron
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Execute the redemption sweep once")
    parser.add_argument(
        "--trigger",
        default="manual",
        help="Label logged with the run to describe the invocation source.",
    )
    return parser.parse_args()


async def _run(trigger: str) -> dict[str, int]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from riselocal_api import models  # type: ignore import-position  # noqa: F401
    from riselocal_api.db.session import async_session  # type: ignore import-position
    from riselocal_api.workers import RedemptionSweepWorker  # type: ignore import-position

    worker = RedemptionSweepWorker(async_session)  # type: ignore[arg-type]
    return await worker.run_once(triggered_by=trigger)


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.trigger))
    logger.success(
        "Redemption sweep completed",
        expired_codes=summary.get("expired_codes", 0),
        released_reservations=summary.get("released_reservations", 0),
        expired_reservations=summary.get("expired_reservations", 0),
        trigger=args.trigger,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
