from datetime import timedelta

import pytest

from app.core.config import Settings
from app.core.exceptions import ConflictError, NotFoundError
from app.models import BookingStatus, SlotStatus
from app.services.booking_service import BookingService
from tests.factories import STUDENT_A, STUDENT_B, add_slot


@pytest.mark.asyncio
async def test_booking_copies_the_slot(db, clock, test_settings):
    slot = await add_slot(db, clock() + timedelta(days=1), status=SlotStatus.BOOKED, price_cents=5200)
    service = BookingService(db, settings=test_settings, clock=clock)

    booking = await service.create_booking(slot, STUDENT_A)
    await db.commit()

    stored = await service.get_booking_for_slot(slot.id)
    assert stored.id == booking.id
    assert stored.price_cents == 5200
    assert stored.starts_at == slot.starts_at
    assert stored.status == BookingStatus.PENDING_PAYMENT


@pytest.mark.asyncio
async def test_initial_status_is_configurable(db, clock):
    slot = await add_slot(db, clock() + timedelta(days=1), status=SlotStatus.BOOKED)

    booking = await BookingService(
        db, settings=Settings(BOOKING_INITIAL_STATUS="confirmed"), clock=clock
    ).create_booking(slot, STUDENT_A)

    assert booking.status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_one_booking_per_slot(db, clock, test_settings):
    slot = await add_slot(db, clock() + timedelta(days=1), status=SlotStatus.BOOKED)
    slot_id = slot.id
    service = BookingService(db, settings=test_settings, clock=clock)
    await service.create_booking(slot, STUDENT_A)
    await db.commit()

    with pytest.raises(ConflictError) as exc_info:
        await service.create_booking(slot, STUDENT_B)

    assert exc_info.value.code == ConflictError.BOOKING_EXISTS
    assert exc_info.value.details == {"slot_id": slot_id}

    # The session is usable again without an explicit rollback
    bookings = await service.list_bookings_for_student(STUDENT_A)
    assert [booking.slot_id for booking in bookings] == [slot_id]
    assert await service.list_bookings_for_student(STUDENT_B) == []


@pytest.mark.asyncio
async def test_slot_must_be_booked_first(db, clock, test_settings):
    slot = await add_slot(db, clock() + timedelta(days=1))

    with pytest.raises(ConflictError):
        await BookingService(db, settings=test_settings, clock=clock).create_booking(slot, STUDENT_A)


@pytest.mark.asyncio
async def test_student_bookings_latest_first(db, clock, test_settings):
    service = BookingService(db, settings=test_settings, clock=clock)
    for days in (1, 3, 2):
        slot = await add_slot(db, clock() + timedelta(days=days), status=SlotStatus.BOOKED)
        await service.create_booking(slot, STUDENT_A)
    await db.commit()

    bookings = await service.list_bookings_for_student(STUDENT_A)

    assert [b.starts_at for b in bookings] == sorted((b.starts_at for b in bookings), reverse=True)
    assert len(bookings) == 3
    assert await service.list_bookings_for_student(STUDENT_B) == []


@pytest.mark.asyncio
async def test_unknown_booking(db, clock, test_settings):
    with pytest.raises(NotFoundError):
        await BookingService(db, settings=test_settings, clock=clock).get_booking("missing")
