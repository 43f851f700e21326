"""Daily Drive sync trigger.

Runs as an asyncio task within the FastAPI process (started from the app
lifespan). Sleeps until the next SYNC_CRON_HOUR:SYNC_CRON_MINUTE in
SYNC_TIMEZONE, runs one reconciliation pass, and repeats.
"""
import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import settings

logger = logging.getLogger(__name__)


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        logger.warning(f"Unknown timezone {name!r}, falling back to UTC")
        return ZoneInfo("UTC")


def next_run_at(
    now: datetime,
    *,
    hour: int,
    minute: int = 0,
    tz: str = "UTC",
) -> datetime:
    """Next wall-clock hour:minute in ``tz`` strictly after ``now``."""
    zone = _zone(tz)
    local_now = now.astimezone(zone)
    candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= local_now:
        candidate = (candidate + timedelta(days=1)).replace(hour=hour, minute=minute)
    return candidate


def seconds_until_next_run(now: Optional[datetime] = None) -> float:
    now = now or datetime.now(timezone.utc)
    target = next_run_at(
        now,
        hour=settings.SYNC_CRON_HOUR,
        minute=settings.SYNC_CRON_MINUTE,
        tz=settings.SYNC_TIMEZONE,
    )
    return max((target - now).total_seconds(), 0.0)


async def run_scheduled_pass(engine) -> Optional[dict]:
    """Run one pass and log the outcome. Never raises (except cancellation)."""
    logger.info("Daily Google Drive sync started")
    try:
        summary = await engine.run_reconciliation_pass()
    except Exception:
        logger.exception("Daily Google Drive sync failed")
        return None
    result = summary.as_dict()
    logger.info(f"Daily Google Drive sync finished: {json.dumps(result)}")
    return result


async def sync_scheduler_loop(engine=None):
    """Main scheduler loop. Cancel the task to stop it."""
    if engine is None:
        from app.services.drive_sync import get_sync_engine
        engine = get_sync_engine()

    logger.info(
        "Drive sync scheduler started (daily at %02d:%02d %s)",
        settings.SYNC_CRON_HOUR, settings.SYNC_CRON_MINUTE, settings.SYNC_TIMEZONE,
    )
    while True:
        delay = seconds_until_next_run()
        logger.debug(f"Next Drive sync in {delay:.0f}s")
        await asyncio.sleep(delay)
        await run_scheduled_pass(engine)
