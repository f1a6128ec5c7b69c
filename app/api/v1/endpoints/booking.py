from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user_id
from app.core.clock import Clock, get_clock
from app.core.database import get_db
from app.core.exceptions import TutorBookingException
from app.schemas.availability import SlotResponse
from app.schemas.booking import BookingResponse, BookResponse, HoldResponse, MessageResponse
from app.services.booking_service import BookingService
from app.services.reservation_service import ReservationService

router = APIRouter()


@router.post("/slots/{slot_id}/hold", response_model=HoldResponse)
async def hold_slot(
    slot_id: str,
    student_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Hold a slot for the caller (returns the slot and hold expiry)"""
    try:
        slot = await ReservationService(db, clock=clock).hold_slot(slot_id, student_id)
    except TutorBookingException as e:
        raise e.to_http_exception()
    return HoldResponse(slot=SlotResponse.from_slot(slot, clock()), hold_expires_at=slot.hold_expires_at)


@router.post("/slots/{slot_id}/release", response_model=MessageResponse)
async def release_slot(
    slot_id: str,
    student_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Release the caller's hold; releasing twice is harmless"""
    try:
        await ReservationService(db, clock=clock).release_slot(slot_id, student_id)
    except TutorBookingException as e:
        raise e.to_http_exception()
    return MessageResponse(message="Hold released")


@router.post("/slots/{slot_id}/book", response_model=BookResponse)
async def book_slot(
    slot_id: str,
    student_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Turn the caller's hold into a booking"""
    try:
        service = ReservationService(db, clock=clock)
        booking = await service.book_slot(slot_id, student_id)
        slot = await service.get_slot(slot_id)
    except TutorBookingException as e:
        raise e.to_http_exception()
    return BookResponse(
        message="Booked",
        booking=BookingResponse.from_booking(booking),
        slot=SlotResponse.from_slot(slot, clock()),
    )


@router.get("/bookings/me", response_model=List[BookingResponse])
async def list_my_bookings(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    student_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's bookings, latest lesson first"""
    try:
        bookings = await BookingService(db).list_bookings_for_student(student_id, limit=limit, offset=offset)
    except TutorBookingException as e:
        raise e.to_http_exception()
    return [BookingResponse.from_booking(booking) for booking in bookings]
