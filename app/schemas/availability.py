from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime

from app.models.availability import Slot


class AvailabilityPatternUpdate(BaseModel):
    hours_by_dow: Dict[str, List[int]] = Field(..., description="Weekday (\"0\"=Sunday..\"6\") to local hours 0-23")
    timezone: Optional[str] = Field(None, description="IANA timezone the hours are expressed in")


class AvailabilityPatternResponse(BaseModel):
    hours_by_dow: Optional[Dict[str, List[int]]] = Field(None, description="Weekday to local hours")
    timezone: Optional[str] = Field(None, description="IANA timezone")


class SlotResponse(BaseModel):
    id: str = Field(..., description="Slot ID")
    tutor_id: str = Field(..., description="Tutor ID")
    starts_at: datetime = Field(..., description="Start instant (UTC)")
    ends_at: datetime = Field(..., description="End instant (UTC)")
    price_cents: int = Field(..., description="Price snapshot in cents")
    status: str = Field(..., description="Effective status; lapsed holds read as available")
    source: str = Field(..., description="\"pattern\" for generated slots, \"manual\" for one-off slots")
    held_by: Optional[str] = Field(None, description="Student holding the slot")
    hold_expires_at: Optional[datetime] = Field(None, description="Hold expiry (UTC)")

    @classmethod
    def from_slot(cls, slot: Slot, now: datetime) -> "SlotResponse":
        holder = slot.active_holder(now)
        return cls(
            id=slot.id,
            tutor_id=slot.tutor_id,
            starts_at=slot.starts_at,
            ends_at=slot.ends_at,
            price_cents=slot.price_cents,
            status=slot.effective_status(now).value,
            source=slot.source.value,
            held_by=holder,
            hold_expires_at=slot.hold_expires_at if holder else None,
        )


class SlotPageResponse(BaseModel):
    slots: List[SlotResponse] = Field(default_factory=list, description="Slots ordered by start")
    next_cursor: Optional[str] = Field(None, description="Pass as `after` to fetch the next page")


class SlotCreate(BaseModel):
    starts_at: datetime = Field(..., description="Start instant, with offset")
    duration_minutes: int = Field(60, description="Slot length in minutes")
    price_cents: Optional[int] = Field(None, description="Price in cents; defaults to the prorated hourly rate")


class SyncResponse(BaseModel):
    created: int = Field(..., description="Slots created")
    removed: int = Field(..., description="Slots removed")
    skipped: int = Field(
        ..., description="Projected instants in the horizon that already had a slot (not a count of all existing slots)"
    )
    timezone: str = Field(..., description="Effective timezone used for projection")
