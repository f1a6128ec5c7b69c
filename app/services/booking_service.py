from typing import List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utc_now
from app.core.config import Settings, settings as default_settings
from app.core.exceptions import ConflictError, NotFoundError, StorageError, PICK_ANOTHER_TIME
from app.models.availability import Slot, SlotStatus
from app.models.booking import Booking, BookingStatus

logger = logging.getLogger(__name__)


class BookingService:
    """Writes and reads immutable booking records"""

    def __init__(self, db: AsyncSession, settings: Settings = default_settings, clock: Clock = utc_now):
        self.db = db
        self.settings = settings
        self.clock = clock

    async def create_booking(self, slot: Slot, student_id: str) -> Booking:
        """
        Create the booking record for a slot that was just transitioned to booked.

        Runs inside the caller's transaction and does not commit. The unique
        constraint on ``slot_id`` is the last line of defense against double
        booking; a violation rolls back the whole transaction, including the
        caller's slot transition, and surfaces as a conflict.
        """
        if slot.status != SlotStatus.BOOKED:
            raise ConflictError(
                f"Slot {slot.id} is not booked. {PICK_ANOTHER_TIME}",
                code=ConflictError.SLOT_UNAVAILABLE,
            )

        slot_id = slot.id
        booking = Booking(
            slot_id=slot_id,
            tutor_id=slot.tutor_id,
            student_id=student_id,
            starts_at=slot.starts_at,
            ends_at=slot.ends_at,
            price_cents=slot.price_cents or 0,
            status=BookingStatus(self.settings.BOOKING_INITIAL_STATUS),
            created_at=self.clock(),
        )
        self.db.add(booking)

        try:
            await self.db.flush()
        except IntegrityError:
            # The failed flush leaves the transaction unusable and the loaded rows expired
            await self.db.rollback()
            logger.info(f"Booking for slot {slot_id} already exists")
            raise ConflictError(
                f"This slot has already been booked. {PICK_ANOTHER_TIME}",
                code=ConflictError.BOOKING_EXISTS,
                details={"slot_id": slot_id},
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error creating booking for slot {slot_id}: {e}")
            raise StorageError(f"Failed to create booking: {e}")

        return booking

    async def get_booking(self, booking_id: str) -> Booking:
        try:
            booking = await self.db.get(Booking, booking_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load booking: {e}")
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    async def get_booking_for_slot(self, slot_id: str) -> Optional[Booking]:
        try:
            result = await self.db.execute(select(Booking).where(Booking.slot_id == slot_id))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load booking: {e}")
        return result.scalar_one_or_none()

    async def list_bookings_for_student(self, student_id: str, limit: int = 20, offset: int = 0) -> List[Booking]:
        query = (
            select(Booking)
            .where(Booking.student_id == student_id)
            .order_by(Booking.starts_at.desc())
            .offset(offset)
            .limit(limit)
        )
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to fetch bookings: {e}")
        return list(result.scalars().all())
