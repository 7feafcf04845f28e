"""APScheduler — runs one dispatch tick every DISPATCH_INTERVAL_SECONDS."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from sequence_control.config import DISPATCH_INTERVAL_SECONDS
from sequence_control.services.dispatcher import process_due_jobs

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


@scheduler.scheduled_job(
    "interval",
    seconds=DISPATCH_INTERVAL_SECONDS,
    id="process_sequence_jobs",
    max_instances=1,
    coalesce=True,
)
async def process_sequence_jobs():
    """Deliver due sequence jobs."""
    try:
        processed = await process_due_jobs()
        if processed > 0:
            logger.info("Sequence dispatch: %d jobs processed", processed)
    except Exception as e:
        logger.error("Sequence dispatch failed: %s", e, exc_info=True)
