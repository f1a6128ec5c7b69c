import base64
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple
import logging

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
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
from app.models.availability import AvailabilityPattern, Slot, SlotSource, SlotStatus, REMOVABLE_SLOT_STATUSES
from app.models.tutor_profile import TutorProfile
from app.services.pattern_projector import normalize_hours_by_dow, resolve_timezone
from app.services.reservation_service import effectively_available_clause

logger = logging.getLogger(__name__)


def encode_cursor(slot: Slot) -> str:
    """URL-safe opaque cursor for the keyset position ``(starts_at, id)``"""
    raw = f"{slot.starts_at.isoformat()}|{slot.id}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> Tuple[datetime, str]:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
        raw_start, slot_id = raw.split("|", 1)
        starts_at = datetime.fromisoformat(raw_start)
    except (ValueError, UnicodeError):
        raise ValidationError("Invalid pagination cursor", code="invalid_cursor")
    if starts_at.tzinfo is None or not slot_id:
        raise ValidationError("Invalid pagination cursor", code="invalid_cursor")
    return starts_at, slot_id


class AvailabilityService:
    """Service for tutor availability patterns and slot browsing"""

    def __init__(self, db: AsyncSession, settings: Settings = default_settings, clock: Clock = utc_now):
        self.db = db
        self.settings = settings
        self.clock = clock

    # Availability pattern

    async def get_pattern(self, tutor_id: str) -> Optional[AvailabilityPattern]:
        try:
            result = await self.db.execute(
                select(AvailabilityPattern).where(AvailabilityPattern.tutor_id == tutor_id)
            )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load availability pattern: {e}")
        return result.scalar_one_or_none()

    async def save_pattern(
        self,
        tutor_id: str,
        hours_by_dow: Mapping[str, Any],
        timezone: Optional[str] = None,
    ) -> AvailabilityPattern:
        """Validate, normalize and upsert a tutor's weekly pattern (last write wins)"""
        if not tutor_id:
            raise ValidationError("tutor_id is required", code="missing_id")
        normalized = normalize_hours_by_dow(hours_by_dow)
        if timezone:
            resolve_timezone(timezone)

        try:
            pattern = await self.get_pattern(tutor_id)
            if pattern is None:
                pattern = AvailabilityPattern(tutor_id=tutor_id)
                self.db.add(pattern)
            pattern.hours_by_dow = normalized
            pattern.timezone = timezone or None
            pattern.updated_at = self.clock()
            await self.db.commit()
        except IntegrityError:
            # Another writer created the row first; overwrite it
            await self.db.rollback()
            pattern = await self.get_pattern(tutor_id)
            pattern.hours_by_dow = normalized
            pattern.timezone = timezone or None
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error saving availability pattern for tutor {tutor_id}: {e}")
            raise StorageError(f"Failed to save availability pattern: {e}")

        logger.info(f"Saved availability pattern for tutor {tutor_id}")
        return pattern

    # Slot browsing

    async def list_available_slots(
        self,
        tutor_id: str,
        from_utc: datetime,
        to_utc: datetime,
        limit: Optional[int] = None,
        after: Optional[str] = None,
    ) -> Tuple[List[Slot], Optional[str]]:
        """
        List a tutor's bookable slots in ``[from_utc, to_utc)``.

        Lapsed holds count as available. Results are ordered by
        ``(starts_at, id)``; the returned cursor, passed back as ``after``,
        resumes from the next slot.
        """
        if not tutor_id:
            raise ValidationError("tutor_id is required", code="missing_id")
        if from_utc.tzinfo is None or to_utc.tzinfo is None:
            raise ValidationError("from and to must include a timezone offset")
        if from_utc >= to_utc:
            raise ValidationError("from must be before to")

        page_size = min(limit or self.settings.SLOT_PAGE_SIZE, self.settings.MAX_SLOT_PAGE_SIZE)
        now = self.clock()

        query = select(Slot).where(
            Slot.tutor_id == tutor_id,
            Slot.starts_at >= max(from_utc, now),
            Slot.starts_at < to_utc,
            effectively_available_clause(now),
        )
        if after:
            after_start, after_id = decode_cursor(after)
            query = query.where(
                or_(
                    Slot.starts_at > after_start,
                    and_(Slot.starts_at == after_start, Slot.id > after_id),
                )
            )
        query = query.order_by(Slot.starts_at, Slot.id).limit(page_size + 1)

        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list slots: {e}")

        slots = list(result.scalars().all())
        next_cursor = None
        if len(slots) > page_size:
            slots = slots[:page_size]
            next_cursor = encode_cursor(slots[-1])
        return slots, next_cursor

    async def list_tutor_slots(self, tutor_id: str, include_past: bool = False) -> List[Slot]:
        """All of a tutor's slots, every status, ordered by start"""
        query = select(Slot).where(Slot.tutor_id == tutor_id)
        if not include_past:
            query = query.where(Slot.starts_at >= self.clock())
        try:
            result = await self.db.execute(query.order_by(Slot.starts_at))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list slots: {e}")
        return list(result.scalars().all())

    # Manual slots

    async def create_slot(
        self,
        tutor_id: str,
        starts_at: datetime,
        duration_minutes: int,
        price_cents: Optional[int] = None,
    ) -> Slot:
        """Publish a one-off slot outside the weekly pattern; schedule syncs leave it alone"""
        if not tutor_id:
            raise ValidationError("tutor_id is required", code="missing_id")
        if starts_at.tzinfo is None:
            raise ValidationError("starts_at must include a timezone offset")
        if not self.settings.MIN_SLOT_MINUTES <= duration_minutes <= self.settings.MAX_SLOT_MINUTES:
            raise ValidationError(
                f"Duration must be between {self.settings.MIN_SLOT_MINUTES} "
                f"and {self.settings.MAX_SLOT_MINUTES} minutes"
            )
        if price_cents is not None and price_cents < 0:
            raise ValidationError("price_cents cannot be negative")

        now = self.clock()
        if starts_at <= now:
            raise ValidationError("Slots must start in the future")

        if price_cents is None:
            profile = await self._get_profile(tutor_id)
            hourly = profile.hourly_rate_cents if profile and profile.hourly_rate_cents else 0
            price_cents = round(hourly * duration_minutes / 60)

        slot = Slot(
            tutor_id=tutor_id,
            starts_at=starts_at,
            ends_at=starts_at + timedelta(minutes=duration_minutes),
            price_cents=price_cents,
            status=SlotStatus.AVAILABLE,
            source=SlotSource.MANUAL,
        )
        self.db.add(slot)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(
                f"A slot already exists at this time. {PICK_ANOTHER_TIME}",
                code=ConflictError.SLOT_EXISTS,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error creating slot for tutor {tutor_id}: {e}")
            raise StorageError(f"Failed to create slot: {e}")

        logger.info(f"Tutor {tutor_id} created slot {slot.id} at {slot.starts_at.isoformat()}")
        return slot

    async def delete_slot(self, tutor_id: str, slot_id: str) -> None:
        """Delete one of the tutor's own slots while it is still removable"""
        stmt = (
            delete(Slot)
            .where(
                Slot.id == slot_id,
                Slot.tutor_id == tutor_id,
                Slot.status.in_(REMOVABLE_SLOT_STATUSES),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(f"Failed to delete slot: {e}")

        if result.rowcount == 1:
            logger.info(f"Tutor {tutor_id} deleted slot {slot_id}")
            return

        slot = await self.db.get(Slot, slot_id)
        if slot is None:
            raise NotFoundError(f"Slot {slot_id} not found")
        if slot.tutor_id != tutor_id:
            raise AuthorizationError("You can only delete your own slots")
        raise ConflictError(
            f"Slot is {slot.status.value} and cannot be deleted",
            code=ConflictError.SLOT_NOT_REMOVABLE,
        )

    async def _get_profile(self, tutor_id: str) -> Optional[TutorProfile]:
        try:
            result = await self.db.execute(select(TutorProfile).where(TutorProfile.tutor_id == tutor_id))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load tutor profile: {e}")
        return result.scalar_one_or_none()
