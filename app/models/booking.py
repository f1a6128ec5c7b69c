from sqlalchemy import Column, String, Integer, ForeignKey, Enum
import enum

from app.core.database import Base
from app.core.types import UTCDateTime


class BookingStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CANCELED = "canceled"


class Booking(Base):
    __tablename__ = "bookings"

    # One booking per slot, enforced by the database
    slot_id = Column(String(36), ForeignKey("lesson_slots.id"), nullable=False, unique=True)

    # Participants
    tutor_id = Column(String(64), nullable=False, index=True)
    student_id = Column(String(64), nullable=False, index=True)

    # Copied from the slot at booking time
    starts_at = Column(UTCDateTime, nullable=False)
    ends_at = Column(UTCDateTime, nullable=False)
    price_cents = Column(Integer, nullable=False)

    status = Column(
        Enum(BookingStatus, name="booking_status", values_callable=lambda e: [m.value for m in e]),
        default=BookingStatus.PENDING_PAYMENT,
        nullable=False,
    )

    def __repr__(self):
        return f"<Booking(slot_id={self.slot_id}, student_id={self.student_id}, starts_at={self.starts_at}, status={self.status})>"
