from fastapi import APIRouter

from app.api.v1.endpoints import availability, booking, scheduling

api_router = APIRouter()

api_router.include_router(scheduling.router, tags=["scheduling"])
api_router.include_router(availability.router, tags=["availability"])
api_router.include_router(booking.router, tags=["booking"])
