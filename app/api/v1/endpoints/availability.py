from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, get_clock
from app.core.database import get_db
from app.core.exceptions import TutorBookingException
from app.schemas.availability import SlotPageResponse, SlotResponse
from app.services.availability_service import AvailabilityService

router = APIRouter()


@router.get("/tutors/{tutor_id}/slots", response_model=SlotPageResponse)
async def list_available_slots(
    tutor_id: str,
    from_utc: datetime = Query(..., alias="from", description="Window start, with offset"),
    to_utc: datetime = Query(..., alias="to", description="Window end, with offset"),
    limit: Optional[int] = Query(None, ge=1, description="Page size"),
    after: Optional[str] = Query(None, description="Cursor from the previous page"),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Get a tutor's bookable slots"""
    try:
        slots, next_cursor = await AvailabilityService(db, clock=clock).list_available_slots(
            tutor_id, from_utc, to_utc, limit=limit, after=after
        )
    except TutorBookingException as e:
        raise e.to_http_exception()

    now = clock()
    return SlotPageResponse(
        slots=[SlotResponse.from_slot(slot, now) for slot in slots],
        next_cursor=next_cursor,
    )
