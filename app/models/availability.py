from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, Integer, JSON, Enum, Index, text
import enum

from app.core.database import Base
from app.core.types import UTCDateTime


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class AvailabilityPattern(Base):
    __tablename__ = "tutor_availability_patterns"

    # One row per tutor, written wholesale (last write wins)
    tutor_id = Column(String(64), nullable=False, unique=True, index=True)

    # {"0".."6": [hours]}, 0 = Sunday, hours in the tutor's local time
    hours_by_dow = Column(JSON, nullable=False, default=dict)

    # IANA timezone name used to interpret hours_by_dow
    timezone = Column(String(64), nullable=True)

    def has_hours(self) -> bool:
        return any(hours for hours in (self.hours_by_dow or {}).values())

    def __repr__(self):
        return f"<AvailabilityPattern(tutor_id={self.tutor_id}, timezone={self.timezone})>"


class SlotStatus(str, enum.Enum):
    AVAILABLE = "available"
    HELD = "held"
    BOOKED = "booked"
    CANCELED = "canceled"


class SlotSource(str, enum.Enum):
    PATTERN = "pattern"
    MANUAL = "manual"


# Statuses a schedule sync (or the owning tutor) may delete; a sync only
# ever deletes slots it generated from the pattern
REMOVABLE_SLOT_STATUSES = (SlotStatus.AVAILABLE, SlotStatus.HELD, SlotStatus.CANCELED)


class Slot(Base):
    __tablename__ = "lesson_slots"

    tutor_id = Column(String(64), nullable=False, index=True)

    # Time information
    starts_at = Column(UTCDateTime, nullable=False)
    ends_at = Column(UTCDateTime, nullable=False)

    # Snapshot of the tutor's rate when the slot was created
    price_cents = Column(Integer, nullable=False, default=0)

    # Status and hold
    status = Column(
        Enum(SlotStatus, name="slot_status", values_callable=_enum_values),
        default=SlotStatus.AVAILABLE,
        nullable=False,
    )
    held_by = Column(String(64), nullable=True)
    hold_expires_at = Column(UTCDateTime, nullable=True)

    # Generated from the weekly pattern or published by hand
    source = Column(
        Enum(SlotSource, name="slot_source", values_callable=_enum_values),
        default=SlotSource.PATTERN,
        nullable=False,
    )

    def is_effectively_available(self, now: datetime) -> bool:
        """A held slot whose hold has lapsed counts as available"""
        if self.status == SlotStatus.AVAILABLE:
            return True
        return (
            self.status == SlotStatus.HELD
            and self.hold_expires_at is not None
            and self.hold_expires_at <= now
        )

    def effective_status(self, now: datetime) -> SlotStatus:
        if self.status == SlotStatus.HELD and self.is_effectively_available(now):
            return SlotStatus.AVAILABLE
        return self.status

    def active_holder(self, now: datetime) -> Optional[str]:
        if self.status == SlotStatus.HELD and not self.is_effectively_available(now):
            return self.held_by
        return None

    def __repr__(self):
        return f"<Slot(id={self.id}, tutor_id={self.tutor_id}, starts_at={self.starts_at}, status={self.status})>"


# No two live slots for the same tutor and instant
Index(
    "uq_lesson_slots_tutor_start_live",
    Slot.tutor_id,
    Slot.starts_at,
    unique=True,
    postgresql_where=text("status != 'canceled'"),
    sqlite_where=text("status != 'canceled'"),
)
