from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set
import logging

from sqlalchemy import and_, delete, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utc_now
from app.core.config import Settings, settings as default_settings
from app.core.database import new_id
from app.core.exceptions import ScheduleSyncError, StorageError, ValidationError
from app.models.availability import AvailabilityPattern, Slot, SlotSource, SlotStatus, REMOVABLE_SLOT_STATUSES
from app.models.tutor_profile import TutorProfile
from app.services.pattern_projector import (
    ProjectedSlot,
    horizon_start_for,
    is_valid_timezone,
    project_pattern,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one sync; ``skipped`` counts projected instants that already had a slot"""

    created: int
    removed: int
    skipped: int
    timezone: str

    def to_dict(self) -> Dict:
        return asdict(self)


class SchedulingService:
    """Keeps a tutor's generated slots in step with their weekly availability pattern"""

    def __init__(self, db: AsyncSession, settings: Settings = default_settings, clock: Clock = utc_now):
        self.db = db
        self.settings = settings
        self.clock = clock

    async def _get_pattern(self, tutor_id: str) -> Optional[AvailabilityPattern]:
        result = await self.db.execute(
            select(AvailabilityPattern).where(AvailabilityPattern.tutor_id == tutor_id)
        )
        return result.scalar_one_or_none()

    async def _get_profile(self, tutor_id: str) -> Optional[TutorProfile]:
        result = await self.db.execute(
            select(TutorProfile).where(TutorProfile.tutor_id == tutor_id)
        )
        return result.scalar_one_or_none()

    def resolve_effective_timezone(
        self,
        pattern: Optional[AvailabilityPattern],
        profile: Optional[TutorProfile],
    ) -> str:
        """Pattern timezone, then profile timezone, then the configured default"""
        for candidate in (
            pattern.timezone if pattern else None,
            profile.time_zone if profile else None,
        ):
            if candidate:
                if not is_valid_timezone(candidate):
                    raise ValidationError(f"Unknown timezone: {candidate}", code="invalid_timezone")
                return candidate
        return self.settings.DEFAULT_TIMEZONE

    def slot_price_cents(self, profile: Optional[TutorProfile]) -> int:
        """Hourly rate snapshot prorated to the configured slot length"""
        hourly = profile.hourly_rate_cents if profile and profile.hourly_rate_cents else 0
        return round(hourly * self.settings.SLOT_DURATION_MINUTES / 60)

    async def sync_schedule(self, tutor_id: str) -> SyncResult:
        """
        Reconcile a tutor's future slots with their availability pattern.

        Creates missing ``available`` slots for every projected instant in the
        rolling horizon and deletes future slots the pattern no longer covers,
        but only while they are available, held or canceled. Booked slots and
        slots the tutor published by hand are never touched. Running it twice
        with an unchanged pattern is a no-op.

        The create and remove batches are applied as two independent bulk
        statements. If either fails, a ScheduleSyncError reports what was
        applied; re-running the sync is always safe.
        """
        if not tutor_id:
            raise ValidationError("tutor_id is required", code="missing_id")

        now = self.clock()
        try:
            pattern = await self._get_pattern(tutor_id)
            profile = await self._get_profile(tutor_id)
        except SQLAlchemyError as e:
            logger.error(f"Error loading schedule inputs for tutor {tutor_id}: {e}")
            raise StorageError(f"Failed to load availability pattern: {e}")

        if pattern is None or not pattern.has_hours():
            logger.info(f"Tutor {tutor_id} has no availability pattern hours; nothing to sync")
            tz_name = (
                (pattern.timezone if pattern else None)
                or (profile.time_zone if profile else None)
                or self.settings.DEFAULT_TIMEZONE
            )
            return SyncResult(created=0, removed=0, skipped=0, timezone=tz_name)

        tz_name = self.resolve_effective_timezone(pattern, profile)

        horizon_start = horizon_start_for(now)
        horizon_end = horizon_start + timedelta(days=self.settings.SYNC_HORIZON_DAYS)
        targets = project_pattern(
            pattern.hours_by_dow,
            tz_name,
            horizon_start,
            self.settings.SYNC_HORIZON_DAYS,
            now,
            self.settings.SLOT_DURATION_MINUTES,
        )
        target_starts: Set[datetime] = {target.starts_at for target in targets}

        existing = await self._load_horizon_slots(tutor_id, horizon_start, horizon_end)
        existing_starts: Set[datetime] = {slot.starts_at for slot in existing}

        to_create = [target for target in targets if target.starts_at not in existing_starts]
        to_remove = [
            slot.id
            for slot in existing
            if slot.starts_at not in target_starts
            and slot.starts_at > now
            and slot.status in REMOVABLE_SLOT_STATUSES
            and slot.source == SlotSource.PATTERN
        ]
        skipped = len(target_starts) - len(to_create)

        created = await self._create_batch(tutor_id, to_create, self.slot_price_cents(profile), now, tz_name)
        removed = await self._remove_batch(tutor_id, to_remove, now, created, tz_name)

        result = SyncResult(created=created, removed=removed, skipped=skipped, timezone=tz_name)
        logger.info(
            f"Synced schedule for tutor {tutor_id}: created={created} removed={removed} "
            f"skipped={skipped} timezone={tz_name}"
        )
        return result

    async def _load_horizon_slots(self, tutor_id: str, horizon_start: datetime, horizon_end: datetime) -> List[Slot]:
        try:
            result = await self.db.execute(
                select(Slot).where(
                    and_(
                        Slot.tutor_id == tutor_id,
                        Slot.starts_at >= horizon_start,
                        Slot.starts_at < horizon_end,
                    )
                ).execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            logger.error(f"Error loading slots for tutor {tutor_id}: {e}")
            raise StorageError(f"Failed to load existing slots: {e}")
        return list(result.scalars().all())

    async def _create_batch(
        self,
        tutor_id: str,
        to_create: List[ProjectedSlot],
        price_cents: int,
        now: datetime,
        tz_name: str,
    ) -> int:
        if not to_create:
            return 0

        rows = [
            {
                "id": new_id(),
                "tutor_id": tutor_id,
                "starts_at": target.starts_at,
                "ends_at": target.ends_at,
                "price_cents": price_cents,
                "status": SlotStatus.AVAILABLE,
                "source": SlotSource.PATTERN,
                "held_by": None,
                "hold_expires_at": None,
                "created_at": now,
                "updated_at": now,
            }
            for target in to_create
        ]
        try:
            await self.db.execute(insert(Slot), rows)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Schedule sync create batch failed for tutor {tutor_id}: {e}")
            raise ScheduleSyncError(
                f"Schedule sync incomplete: failed to create slots: {e}",
                details={"failed_batch": "create", "created": 0, "removed": 0, "timezone": tz_name},
            )
        return len(rows)

    async def _remove_batch(
        self,
        tutor_id: str,
        to_remove: List[str],
        now: datetime,
        created: int,
        tz_name: str,
    ) -> int:
        if not to_remove:
            return 0

        # Status, source and start are re-checked so a slot booked since it was read survives
        stmt = (
            delete(Slot)
            .where(
                Slot.id.in_(to_remove),
                Slot.tutor_id == tutor_id,
                Slot.status.in_(REMOVABLE_SLOT_STATUSES),
                Slot.source == SlotSource.PATTERN,
                Slot.starts_at > now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Schedule sync remove batch failed for tutor {tutor_id}: {e}")
            raise ScheduleSyncError(
                f"Schedule sync incomplete: failed to remove slots: {e}",
                details={"failed_batch": "remove", "created": created, "removed": 0, "timezone": tz_name},
            )
        return result.rowcount

    async def list_tutors_with_patterns(self) -> List[str]:
        try:
            result = await self.db.execute(select(AvailabilityPattern.tutor_id))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list availability patterns: {e}")
        return list(result.scalars().all())
