from typing import Dict, Optional
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock, utc_now
from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.core.exceptions import TutorBookingException
from app.services.reservation_service import ReservationService
from app.services.scheduling_service import SchedulingService

logger = logging.getLogger(__name__)


async def cleanup_expired_holds(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    clock: Clock = utc_now,
) -> int:
    """Background task to reset lapsed holds back to available.

    Correctness never depends on this running; it only keeps the stored
    status tidy for reporting.
    """
    async with session_factory() as db:
        try:
            released = await ReservationService(db, clock=clock).release_expired_holds()
        except TutorBookingException as e:
            logger.error(f"Error cleaning up expired holds: {e}")
            return 0

    if released:
        logger.info(f"Released {released} expired slot holds")
    return released


async def generate_future_slots(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    clock: Clock = utc_now,
) -> Dict[str, int]:
    """Background task to roll every tutor's horizon forward from their pattern"""
    async with session_factory() as db:
        tutor_ids = await SchedulingService(db, clock=clock).list_tutors_with_patterns()

    totals = {"tutors": 0, "created": 0, "removed": 0, "failed": 0}
    for tutor_id in tutor_ids:
        # One session per tutor so a failure stays contained
        async with session_factory() as db:
            try:
                result = await SchedulingService(db, clock=clock).sync_schedule(tutor_id)
            except TutorBookingException as e:
                logger.error(f"Error syncing schedule for tutor {tutor_id}: {e}")
                totals["failed"] += 1
                continue
        totals["tutors"] += 1
        totals["created"] += result.created
        totals["removed"] += result.removed

    logger.info(
        f"Generated future slots for {totals['tutors']} tutors "
        f"(created={totals['created']} removed={totals['removed']} failed={totals['failed']})"
    )
    return totals


# Task scheduler functions
async def schedule_slot_tasks(interval_seconds: Optional[int] = None):
    """Run the slot maintenance tasks forever"""
    interval = interval_seconds or settings.TASK_INTERVAL_SECONDS
    while True:
        try:
            await cleanup_expired_holds()

            # Roll horizons forward once an hour
            now = utc_now()
            if now.minute * 60 < interval:
                await generate_future_slots()

            await asyncio.sleep(interval)

        except Exception as e:
            logger.error(f"Error in slot task scheduler: {e}")
            await asyncio.sleep(60)


# Wrappers for external schedulers
def cleanup_expired_holds_task():
    """Synchronous wrapper for cleaning up expired holds"""
    return asyncio.run(cleanup_expired_holds())


def generate_future_slots_task():
    """Synchronous wrapper for generating future slots"""
    return asyncio.run(generate_future_slots())


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL)
    asyncio.run(schedule_slot_tasks())
