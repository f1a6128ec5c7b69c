from app.core.database import Base
from .tutor_profile import TutorProfile
from .availability import AvailabilityPattern, Slot, SlotSource, SlotStatus, REMOVABLE_SLOT_STATUSES
from .booking import Booking, BookingStatus

__all__ = [
    "Base",
    "TutorProfile",

    # Availability and booking
    "AvailabilityPattern",
    "Slot",
    "SlotSource",
    "SlotStatus",
    "REMOVABLE_SLOT_STATUSES",
    "Booking",
    "BookingStatus",
]
