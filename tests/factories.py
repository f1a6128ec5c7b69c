"""Builders for test rows and a controllable clock."""

from datetime import datetime, timedelta
from typing import Optional

from app.models import AvailabilityPattern, Slot, SlotSource, SlotStatus, TutorProfile

TUTOR_ID = "tutor-1"
STUDENT_A = "student-a"
STUDENT_B = "student-b"


class FrozenClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


async def add_slot(
    db,
    starts_at: datetime,
    tutor_id: str = TUTOR_ID,
    status: SlotStatus = SlotStatus.AVAILABLE,
    minutes: int = 60,
    price_cents: int = 4000,
    held_by: Optional[str] = None,
    hold_expires_at: Optional[datetime] = None,
    source: SlotSource = SlotSource.PATTERN,
) -> Slot:
    slot = Slot(
        tutor_id=tutor_id,
        starts_at=starts_at,
        ends_at=starts_at + timedelta(minutes=minutes),
        price_cents=price_cents,
        status=status,
        held_by=held_by,
        hold_expires_at=hold_expires_at,
        source=source,
    )
    db.add(slot)
    await db.commit()
    return slot


async def add_pattern(db, hours_by_dow, timezone_name: Optional[str] = "America/New_York", tutor_id: str = TUTOR_ID):
    pattern = AvailabilityPattern(tutor_id=tutor_id, hours_by_dow=hours_by_dow, timezone=timezone_name)
    db.add(pattern)
    await db.commit()
    return pattern


async def add_profile(db, hourly_rate_cents: int = 4500, time_zone: Optional[str] = None, tutor_id: str = TUTOR_ID):
    profile = TutorProfile(tutor_id=tutor_id, hourly_rate_cents=hourly_rate_cents, time_zone=time_zone)
    db.add(profile)
    await db.commit()
    return profile
