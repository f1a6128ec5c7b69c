from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.core.config import Settings
from app.core.exceptions import ScheduleSyncError
from app.models import Slot, SlotSource, SlotStatus
from app.services.availability_service import AvailabilityService
from app.services.reservation_service import ReservationService
from app.services.scheduling_service import SchedulingService
from tests.factories import STUDENT_A, TUTOR_ID, add_pattern, add_profile, add_slot


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


async def all_slots(db, tutor_id=TUTOR_ID):
    result = await db.execute(
        select(Slot).where(Slot.tutor_id == tutor_id).order_by(Slot.starts_at).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_sync_creates_slots_for_the_horizon(db, clock, test_settings):
    await add_profile(db, hourly_rate_cents=4500)
    await add_pattern(db, {"1": [9]}, "America/New_York")

    result = await SchedulingService(db, settings=test_settings, clock=clock).sync_schedule(TUTOR_ID)

    assert (result.created, result.removed, result.skipped) == (3, 0, 0)
    assert result.timezone == "America/New_York"

    slots = await all_slots(db)
    assert [slot.starts_at for slot in slots] == [
        utc(2026, 3, 2, 14),
        utc(2026, 3, 9, 13),
        utc(2026, 3, 16, 13),
    ]
    for slot in slots:
        assert slot.status == SlotStatus.AVAILABLE
        assert slot.price_cents == 4500
        assert slot.ends_at - slot.starts_at == timedelta(hours=1)
        assert slot.held_by is None and slot.hold_expires_at is None


@pytest.mark.asyncio
async def test_sync_is_idempotent(db, clock, test_settings):
    await add_profile(db)
    await add_pattern(db, {"1": [9], "3": [10, 11]}, "America/New_York")
    service = SchedulingService(db, settings=test_settings, clock=clock)

    first = await service.sync_schedule(TUTOR_ID)
    second = await service.sync_schedule(TUTOR_ID)

    assert first.created > 0
    assert (second.created, second.removed) == (0, 0)
    assert second.skipped == first.created
    assert len(await all_slots(db)) == first.created


@pytest.mark.asyncio
async def test_empty_pattern_is_a_no_op(db, clock, test_settings):
    await add_pattern(db, {"1": [], "2": []}, "America/New_York")
    manual = await add_slot(db, utc(2026, 3, 3, 15))

    result = await SchedulingService(db, settings=test_settings, clock=clock).sync_schedule(TUTOR_ID)

    assert (result.created, result.removed, result.skipped) == (0, 0, 0)
    assert [slot.id for slot in await all_slots(db)] == [manual.id]


@pytest.mark.asyncio
async def test_missing_pattern_is_a_no_op(db, clock, test_settings):
    result = await SchedulingService(db, settings=test_settings, clock=clock).sync_schedule(TUTOR_ID)

    assert (result.created, result.removed) == (0, 0)
    assert result.timezone == "UTC"


@pytest.mark.asyncio
async def test_timezone_falls_back_to_profile_then_default(db, clock, test_settings):
    await add_profile(db, time_zone="Europe/London")
    await add_pattern(db, {"1": [9]}, None)
    service = SchedulingService(db, settings=test_settings, clock=clock)

    result = await service.sync_schedule(TUTOR_ID)

    assert result.timezone == "Europe/London"
    assert (await all_slots(db))[0].starts_at == utc(2026, 3, 2, 9)

    await add_pattern(db, {"1": [9]}, None, tutor_id="tutor-2")
    other = await service.sync_schedule("tutor-2")
    assert other.timezone == "UTC"


@pytest.mark.asyncio
async def test_pattern_edit_removes_open_slots_but_keeps_booked_ones(db, clock, test_settings):
    await add_profile(db)
    await add_pattern(db, {"1": [9]}, "America/New_York")
    scheduling = SchedulingService(db, settings=test_settings, clock=clock)
    reservations = ReservationService(db, settings=test_settings, clock=clock)
    await scheduling.sync_schedule(TUTOR_ID)
    first, second, third = await all_slots(db)

    await reservations.hold_slot(first.id, STUDENT_A)
    await reservations.book_slot(first.id, STUDENT_A)
    await reservations.hold_slot(second.id, "student-c")

    # Tutor moves Monday 9am to Tuesday 9am
    await AvailabilityService(db, settings=test_settings, clock=clock).save_pattern(
        TUTOR_ID, {"2": [9]}, "America/New_York"
    )
    result = await scheduling.sync_schedule(TUTOR_ID)

    assert result.created == 3
    assert result.removed == 2

    slots = await all_slots(db)
    booked = [slot for slot in slots if slot.id == first.id]
    assert len(booked) == 1
    assert booked[0].status == SlotStatus.BOOKED
    assert second.id not in {slot.id for slot in slots}
    assert third.id not in {slot.id for slot in slots}


@pytest.mark.asyncio
async def test_past_slots_are_never_removed(db, clock, test_settings):
    await add_pattern(db, {"1": [9]}, "America/New_York")
    past = await add_slot(db, clock() - timedelta(hours=2))

    result = await SchedulingService(db, settings=test_settings, clock=clock).sync_schedule(TUTOR_ID)

    assert result.removed == 0
    assert result.skipped == 0
    assert past.id in {slot.id for slot in await all_slots(db)}


@pytest.mark.asyncio
async def test_canceled_slots_outside_the_pattern_are_removed(db, clock, test_settings):
    await add_pattern(db, {"1": [9]}, "America/New_York")
    canceled = await add_slot(db, utc(2026, 3, 4, 15), status=SlotStatus.CANCELED)

    result = await SchedulingService(db, settings=test_settings, clock=clock).sync_schedule(TUTOR_ID)

    assert result.removed == 1
    assert canceled.id not in {slot.id for slot in await all_slots(db)}


@pytest.mark.asyncio
async def test_remove_batch_rechecks_status(db, clock, test_settings):
    booked = await add_slot(db, utc(2026, 3, 4, 15), status=SlotStatus.BOOKED)
    service = SchedulingService(db, settings=test_settings, clock=clock)

    removed = await service._remove_batch(TUTOR_ID, [booked.id], clock(), 0, "UTC")

    assert removed == 0
    assert [slot.id for slot in await all_slots(db)] == [booked.id]


@pytest.mark.asyncio
async def test_price_is_prorated_to_slot_length(db, clock):
    settings = Settings(SLOT_DURATION_MINUTES=30, SYNC_HORIZON_DAYS=7)
    await add_profile(db, hourly_rate_cents=4500)
    await add_pattern(db, {"1": [9]}, "UTC")

    await SchedulingService(db, settings=settings, clock=clock).sync_schedule(TUTOR_ID)

    (slot,) = await all_slots(db)
    assert slot.price_cents == 2250
    assert slot.ends_at - slot.starts_at == timedelta(minutes=30)


@pytest.mark.asyncio
async def test_failed_create_batch_reports_incomplete_sync(db, clock, test_settings, monkeypatch):
    await add_pattern(db, {"1": [9]}, "America/New_York")

    async def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db, "commit", failing_commit)

    with pytest.raises(ScheduleSyncError) as exc_info:
        await SchedulingService(db, settings=test_settings, clock=clock).sync_schedule(TUTOR_ID)

    assert exc_info.value.details["failed_batch"] == "create"
    assert exc_info.value.details["created"] == 0

    monkeypatch.undo()
    assert await all_slots(db) == []


@pytest.mark.asyncio
async def test_missing_pattern_ignores_a_bad_profile_timezone(db, clock, test_settings):
    await add_profile(db, time_zone="Mars/Olympus")

    result = await SchedulingService(db, settings=test_settings, clock=clock).sync_schedule(TUTOR_ID)

    assert (result.created, result.removed, result.skipped) == (0, 0, 0)
    assert result.timezone == "Mars/Olympus"


@pytest.mark.asyncio
async def test_skipped_counts_only_projected_instants(db, clock, test_settings):
    await add_pattern(db, {"1": [9]}, "America/New_York")
    await add_slot(db, utc(2026, 3, 2, 14))
    await add_slot(db, utc(2026, 3, 4, 15), source=SlotSource.MANUAL)

    result = await SchedulingService(db, settings=test_settings, clock=clock).sync_schedule(TUTOR_ID)

    assert (result.created, result.removed, result.skipped) == (2, 0, 1)


@pytest.mark.asyncio
async def test_manual_slots_survive_a_sync(db, clock, test_settings):
    await add_pattern(db, {"1": [9]}, "America/New_York")
    manual = await add_slot(db, utc(2026, 3, 4, 15), source=SlotSource.MANUAL)
    held_manual = await add_slot(
        db,
        utc(2026, 3, 5, 15),
        status=SlotStatus.HELD,
        held_by=STUDENT_A,
        hold_expires_at=clock() + timedelta(minutes=5),
        source=SlotSource.MANUAL,
    )
    manual_id, held_manual_id = manual.id, held_manual.id

    result = await SchedulingService(db, settings=test_settings, clock=clock).sync_schedule(TUTOR_ID)

    assert result.removed == 0
    slots = {slot.id: slot for slot in await all_slots(db)}
    assert manual_id in slots
    assert slots[held_manual_id].held_by == STUDENT_A


@pytest.mark.asyncio
async def test_generated_slots_are_marked_as_pattern_slots(db, clock, test_settings):
    await add_pattern(db, {"1": [9]}, "America/New_York")

    await SchedulingService(db, settings=test_settings, clock=clock).sync_schedule(TUTOR_ID)

    assert {slot.source for slot in await all_slots(db)} == {SlotSource.PATTERN}
