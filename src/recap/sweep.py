"""
Daily cleanup of inactive users.

Users whose last_active_at is older than MAX_INACTIVE are deleted together
with their cached summary.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from .store import Store

logger = logging.getLogger(__name__)

MAX_INACTIVE = timedelta(days=30)
SWEEP_HOUR_UTC = 0


def sweep_inactive_users(store: Store, now: datetime, max_inactive: timedelta = MAX_INACTIVE) -> int:
    threshold = now - max_inactive
    deleted = store.delete_inactive_users(threshold)
    logger.info(f"Inactive user sweep removed {deleted} users (inactive since before {threshold.isoformat()})")
    return deleted


def seconds_until_next_run(now: datetime, hour: int = SWEEP_HOUR_UTC) -> float:
    next_run = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def run_daily_sweep(store: Store) -> None:
    """Run forever; cancel the task to stop."""
    while True:
        delay = seconds_until_next_run(datetime.now(timezone.utc))
        logger.debug(f"Next inactive user sweep in {delay:.0f}s")
        await asyncio.sleep(delay)
        try:
            await asyncio.to_thread(sweep_inactive_users, store, datetime.now(timezone.utc))
        except Exception:
            logger.exception("Inactive user sweep failed")


__all__ = ["MAX_INACTIVE", "run_daily_sweep", "seconds_until_next_run", "sweep_inactive_users"]
