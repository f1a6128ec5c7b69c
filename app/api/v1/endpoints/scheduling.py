from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user_id
from app.core.clock import Clock, get_clock
from app.core.database import get_db
from app.core.exceptions import TutorBookingException
from app.schemas.availability import (
    AvailabilityPatternResponse,
    AvailabilityPatternUpdate,
    SlotCreate,
    SlotResponse,
    SyncResponse,
)
from app.schemas.booking import MessageResponse
from app.services.availability_service import AvailabilityService
from app.services.scheduling_service import SchedulingService

router = APIRouter()


@router.post("/tutor/schedule/sync", response_model=SyncResponse)
async def sync_schedule(
    tutor_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Regenerate the caller's future slots from their weekly pattern"""
    try:
        result = await SchedulingService(db, clock=clock).sync_schedule(tutor_id)
    except TutorBookingException as e:
        raise e.to_http_exception()
    return SyncResponse(**result.to_dict())


@router.get("/tutors/{tutor_id}/availability-pattern", response_model=AvailabilityPatternResponse)
async def get_availability_pattern(
    tutor_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Get a tutor's weekly availability pattern"""
    try:
        pattern = await AvailabilityService(db).get_pattern(tutor_id)
    except TutorBookingException as e:
        raise e.to_http_exception()
    if pattern is None:
        return AvailabilityPatternResponse()
    return AvailabilityPatternResponse(hours_by_dow=pattern.hours_by_dow, timezone=pattern.timezone)


@router.put("/tutor/availability-pattern", response_model=AvailabilityPatternResponse)
async def save_availability_pattern(
    payload: AvailabilityPatternUpdate,
    tutor_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Replace the caller's weekly availability pattern"""
    try:
        pattern = await AvailabilityService(db, clock=clock).save_pattern(
            tutor_id, payload.hours_by_dow, payload.timezone
        )
    except TutorBookingException as e:
        raise e.to_http_exception()
    return AvailabilityPatternResponse(hours_by_dow=pattern.hours_by_dow, timezone=pattern.timezone)


@router.get("/tutor/slots", response_model=List[SlotResponse])
async def list_my_slots(
    tutor_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """List the caller's upcoming slots in every status"""
    try:
        slots = await AvailabilityService(db, clock=clock).list_tutor_slots(tutor_id)
    except TutorBookingException as e:
        raise e.to_http_exception()
    now = clock()
    return [SlotResponse.from_slot(slot, now) for slot in slots]


@router.post("/tutor/slots", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    tutor_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Publish a one-off slot"""
    try:
        slot = await AvailabilityService(db, clock=clock).create_slot(
            tutor_id, payload.starts_at, payload.duration_minutes, payload.price_cents
        )
    except TutorBookingException as e:
        raise e.to_http_exception()
    return SlotResponse.from_slot(slot, clock())


@router.delete("/tutor/slots/{slot_id}", response_model=MessageResponse)
async def delete_slot(
    slot_id: str,
    tutor_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Delete one of the caller's slots that is not booked"""
    try:
        await AvailabilityService(db, clock=clock).delete_slot(tutor_id, slot_id)
    except TutorBookingException as e:
        raise e.to_http_exception()
    return MessageResponse(message="Slot deleted")
