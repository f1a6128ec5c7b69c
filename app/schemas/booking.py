from pydantic import BaseModel, Field
from datetime import datetime

from app.models.booking import Booking
from app.schemas.availability import SlotResponse


class BookingResponse(BaseModel):
    id: str = Field(..., description="Booking ID")
    slot_id: str = Field(..., description="Booked slot ID")
    tutor_id: str = Field(..., description="Tutor ID")
    student_id: str = Field(..., description="Student ID")
    starts_at: datetime = Field(..., description="Lesson start (UTC)")
    ends_at: datetime = Field(..., description="Lesson end (UTC)")
    price_cents: int = Field(..., description="Price in cents")
    status: str = Field(..., description="Booking status")
    created_at: datetime = Field(..., description="Creation time")

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            slot_id=booking.slot_id,
            tutor_id=booking.tutor_id,
            student_id=booking.student_id,
            starts_at=booking.starts_at,
            ends_at=booking.ends_at,
            price_cents=booking.price_cents,
            status=booking.status.value,
            created_at=booking.created_at,
        )


class HoldResponse(BaseModel):
    slot: SlotResponse = Field(..., description="The held slot")
    hold_expires_at: datetime = Field(..., description="Hold expiry (UTC)")


class BookResponse(BaseModel):
    message: str = Field("Booked", description="Outcome")
    booking: BookingResponse = Field(..., description="The booking record")
    slot: SlotResponse = Field(..., description="The booked slot")


class MessageResponse(BaseModel):
    message: str = Field(..., description="Outcome")
