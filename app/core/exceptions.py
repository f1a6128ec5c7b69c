from typing import Any, Dict, Optional

from fastapi import HTTPException, status


PICK_ANOTHER_TIME = "Please pick another time."


class TutorBookingException(Exception):
    """Base exception for the tutor booking application"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def to_http_exception(self) -> HTTPException:
        detail: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            detail["details"] = self.details
        return HTTPException(status_code=self.status_code, detail=detail)


class ValidationError(TutorBookingException):
    """Exception raised for malformed input, before storage is touched"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_error"


class ConflictError(TutorBookingException):
    """Exception raised when a slot transition precondition is not met.

    Conflicts are an expected outcome under contention, not a system failure.
    """
    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"

    SLOT_UNAVAILABLE = "slot_unavailable"
    HOLD_EXPIRED = "hold_expired"
    BOOKING_EXISTS = "booking_exists"
    SLOT_EXISTS = "slot_exists"
    SLOT_NOT_REMOVABLE = "slot_not_removable"


class NotFoundError(TutorBookingException):
    """Exception raised when a slot, pattern or booking does not exist"""
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class AuthenticationError(TutorBookingException):
    """Exception raised when no caller identity is present"""
    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = "unauthenticated"


class AuthorizationError(TutorBookingException):
    """Exception raised when the actor is not the holder or owner"""
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "unauthorized"


class StorageError(TutorBookingException):
    """Exception raised for transient database errors; safe for the caller to retry"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "storage_failure"


class ScheduleSyncError(StorageError):
    """Exception raised when a schedule sync batch fails.

    ``details`` carries the counts applied before the failure and the batch
    that failed, so an incomplete sync is always visible to the caller.
    """
    default_code = "schedule_sync_incomplete"
