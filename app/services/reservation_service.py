"""
Slot reservation state machine.

    available --hold--> held --book--> booked
                          |--release/expiry--> available

Every transition is one conditional UPDATE whose WHERE clause re-checks the
precondition, so concurrent requests against the same slot have exactly one
winner no matter how many API replicas serve them. When the UPDATE matches
no row the slot is re-read only to explain the failure to the caller.

Hold expiry is passive: a held slot whose ``hold_expires_at`` has passed is
treated as available by every path here (see ``Slot.is_effectively_available``).
``release_expired_holds`` is an optional sweep that tidies the stored status.
"""

from datetime import datetime, timedelta
from typing import Optional
import logging

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utc_now
from app.core.config import Settings, settings as default_settings
from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
    PICK_ANOTHER_TIME,
)
from app.models.availability import Slot, SlotStatus
from app.models.booking import Booking
from app.services.booking_service import BookingService

logger = logging.getLogger(__name__)

BOOKING_MODE_HOLD_THEN_BOOK = "hold_then_book"
BOOKING_MODE_DIRECT = "direct"
BOOKING_MODES = (BOOKING_MODE_HOLD_THEN_BOOK, BOOKING_MODE_DIRECT)


def effectively_available_clause(now: datetime):
    """SQL form of Slot.is_effectively_available"""
    return or_(
        Slot.status == SlotStatus.AVAILABLE,
        and_(Slot.status == SlotStatus.HELD, Slot.hold_expires_at <= now),
    )


def _require_id(value: Optional[str], name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required", code="missing_id")
    return value


class ReservationService:
    """Hold, release and book individual slots"""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings = default_settings,
        clock: Clock = utc_now,
        booking_service: Optional[BookingService] = None,
    ):
        self.db = db
        self.settings = settings
        self.clock = clock
        self.booking_service = booking_service or BookingService(db, settings=settings, clock=clock)

    async def _load_slot(self, slot_id: str) -> Optional[Slot]:
        query = select(Slot).where(Slot.id == slot_id).execution_options(populate_existing=True)
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"Error loading slot {slot_id}: {e}")
            raise StorageError(f"Failed to load slot: {e}")
        return result.scalar_one_or_none()

    async def get_slot(self, slot_id: str) -> Slot:
        slot = await self._load_slot(slot_id)
        if slot is None:
            raise NotFoundError(f"Slot {slot_id} not found")
        return slot

    async def _conditional_update(self, stmt, slot_id: str) -> bool:
        """Execute a guarded UPDATE; True when this caller won the row"""
        try:
            result = await self.db.execute(stmt.execution_options(synchronize_session=False))
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error updating slot {slot_id}: {e}")
            raise StorageError(f"Failed to update slot: {e}")
        return result.rowcount == 1

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error committing slot transition: {e}")
            raise StorageError(f"Failed to save slot: {e}")

    # Hold

    async def hold_slot(self, slot_id: str, student_id: str) -> Slot:
        """
        Place a time-limited hold on a slot for a student.

        Succeeds only if the slot is effectively available and still in the
        future. A lost race or an unavailable slot is a ConflictError, which
        callers present as "pick another time".
        """
        _require_id(slot_id, "slot_id")
        _require_id(student_id, "student_id")

        now = self.clock()
        expires_at = now + timedelta(minutes=self.settings.HOLD_DURATION_MINUTES)
        stmt = (
            update(Slot)
            .where(
                Slot.id == slot_id,
                effectively_available_clause(now),
                Slot.starts_at > now,
            )
            .values(
                status=SlotStatus.HELD,
                held_by=student_id,
                hold_expires_at=expires_at,
                updated_at=now,
            )
        )

        won = await self._conditional_update(stmt, slot_id)
        if not won:
            await self.db.rollback()
            slot = await self._load_slot(slot_id)
            if slot is None:
                raise NotFoundError(f"Slot {slot_id} not found")
            logger.info(f"Hold conflict on slot {slot_id} for student {student_id} (status={slot.status.value})")
            raise ConflictError(
                f"Slot is no longer available. {PICK_ANOTHER_TIME}",
                code=ConflictError.SLOT_UNAVAILABLE,
                details={"slot_id": slot_id},
            )

        await self._commit()
        logger.info(f"Slot {slot_id} held by {student_id} until {expires_at.isoformat()}")
        return await self._load_slot(slot_id)

    # Release

    async def release_slot(self, slot_id: str, student_id: str) -> None:
        """
        Give up a hold. Idempotent: releasing a slot that is not held, or
        was already released, does nothing.
        """
        _require_id(slot_id, "slot_id")
        _require_id(student_id, "student_id")

        now = self.clock()
        stmt = (
            update(Slot)
            .where(
                Slot.id == slot_id,
                Slot.status == SlotStatus.HELD,
                Slot.held_by == student_id,
            )
            .values(
                status=SlotStatus.AVAILABLE,
                held_by=None,
                hold_expires_at=None,
                updated_at=now,
            )
        )

        won = await self._conditional_update(stmt, slot_id)
        if won:
            await self._commit()
            logger.info(f"Slot {slot_id} released by {student_id}")
            return

        await self.db.rollback()
        slot = await self._load_slot(slot_id)
        if slot is None:
            raise NotFoundError(f"Slot {slot_id} not found")

        holder = slot.active_holder(now)
        if holder is not None and holder != student_id:
            raise AuthorizationError("This slot is held by another student")

    # Book

    async def book_slot(self, slot_id: str, student_id: str) -> Booking:
        """Book a slot using the deployment's configured booking contract"""
        mode = self.settings.BOOKING_MODE
        if mode not in BOOKING_MODES:
            raise ValidationError(f"Unsupported booking mode: {mode}", code="invalid_booking_mode")
        if mode == BOOKING_MODE_DIRECT:
            return await self.book_available_slot(slot_id, student_id)
        return await self.book_held_slot(slot_id, student_id)

    async def book_held_slot(self, slot_id: str, student_id: str) -> Booking:
        """
        Convert the student's live hold into a booking.

        The hold must belong to the student and must not have expired;
        an expired hold is a ConflictError even if nobody else took the slot.
        """
        _require_id(slot_id, "slot_id")
        _require_id(student_id, "student_id")

        now = self.clock()
        stmt = (
            update(Slot)
            .where(
                Slot.id == slot_id,
                Slot.status == SlotStatus.HELD,
                Slot.held_by == student_id,
                Slot.hold_expires_at > now,
            )
            .values(
                status=SlotStatus.BOOKED,
                held_by=None,
                hold_expires_at=None,
                updated_at=now,
            )
        )

        won = await self._conditional_update(stmt, slot_id)
        if not won:
            await self.db.rollback()
            await self._raise_book_conflict(slot_id, student_id, now)

        return await self._write_booking(slot_id, student_id)

    async def book_available_slot(self, slot_id: str, student_id: str) -> Booking:
        """
        Direct booking without a prior hold.

        Alternative contract, used only when BOOKING_MODE is "direct". It
        keeps the same guard: the slot must be effectively available.
        """
        _require_id(slot_id, "slot_id")
        _require_id(student_id, "student_id")

        now = self.clock()
        stmt = (
            update(Slot)
            .where(
                Slot.id == slot_id,
                effectively_available_clause(now),
                Slot.starts_at > now,
            )
            .values(
                status=SlotStatus.BOOKED,
                held_by=None,
                hold_expires_at=None,
                updated_at=now,
            )
        )

        won = await self._conditional_update(stmt, slot_id)
        if not won:
            await self.db.rollback()
            slot = await self._load_slot(slot_id)
            if slot is None:
                raise NotFoundError(f"Slot {slot_id} not found")
            logger.info(f"Direct booking conflict on slot {slot_id} for student {student_id}")
            raise ConflictError(
                f"Slot is no longer available. {PICK_ANOTHER_TIME}",
                code=ConflictError.SLOT_UNAVAILABLE,
                details={"slot_id": slot_id},
            )

        return await self._write_booking(slot_id, student_id)

    async def _write_booking(self, slot_id: str, student_id: str) -> Booking:
        """Create the booking in the same transaction as the slot transition"""
        try:
            slot = await self._load_slot(slot_id)
            booking = await self.booking_service.create_booking(slot, student_id)
        except (ConflictError, StorageError):
            await self.db.rollback()
            raise

        await self._commit()
        logger.info(f"Slot {slot_id} booked by {student_id} (booking {booking.id})")
        return booking

    async def _raise_book_conflict(self, slot_id: str, student_id: str, now: datetime) -> None:
        slot = await self._load_slot(slot_id)
        if slot is None:
            raise NotFoundError(f"Slot {slot_id} not found")

        if slot.status in (SlotStatus.BOOKED, SlotStatus.CANCELED) or slot.starts_at <= now:
            logger.info(f"Book conflict on slot {slot_id} for student {student_id}: slot unavailable")
            raise ConflictError(
                f"Slot is no longer available. {PICK_ANOTHER_TIME}",
                code=ConflictError.SLOT_UNAVAILABLE,
                details={"slot_id": slot_id},
            )

        logger.info(f"Book conflict on slot {slot_id} for student {student_id}: hold expired or not owned")
        raise ConflictError(
            f"Hold has expired or you do not own this hold. {PICK_ANOTHER_TIME}",
            code=ConflictError.HOLD_EXPIRED,
            details={"slot_id": slot_id},
        )

    # Expiry sweep

    async def release_expired_holds(self) -> int:
        """Reset every lapsed hold to available; returns the number of slots reset"""
        now = self.clock()
        stmt = (
            update(Slot)
            .where(Slot.status == SlotStatus.HELD, Slot.hold_expires_at <= now)
            .values(
                status=SlotStatus.AVAILABLE,
                held_by=None,
                hold_expires_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error releasing expired holds: {e}")
            raise StorageError(f"Failed to release expired holds: {e}")
        return result.rowcount
