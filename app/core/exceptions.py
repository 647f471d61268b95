"""
Domain errors raised by the registration engine.

Every error carries a stable ``code`` for clients and the HTTP status the API
layer answers with. Check-in outcomes are not errors and live in
``app.services.checkin``.
"""

from typing import Any, Dict, Optional


class RegistrationError(Exception):
    code: str = "REGISTRATION_ERROR"
    status_code: int = 400
    message: str = "Registration operation failed"

    def __init__(self, message: Optional[str] = None, **extra: Any) -> None:
        self.message = message or self.message
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


class NotFound(RegistrationError):
    code = "NOT_FOUND"
    status_code = 404
    message = "Resource not found"


class Forbidden(RegistrationError):
    code = "FORBIDDEN"
    status_code = 403
    message = "You don't have permission to perform this operation"


class AlreadyRegistered(RegistrationError):
    code = "ALREADY_REGISTERED"
    message = "You are already registered for this event"


class EventNotAvailable(RegistrationError):
    code = "EVENT_NOT_AVAILABLE"
    message = "Event is not available for registration"


class RegistrationClosed(RegistrationError):
    code = "REGISTRATION_CLOSED"
    message = "Registration deadline has passed"


class EventExpired(RegistrationError):
    code = "EVENT_EXPIRED"
    message = "Event has already started"


class AlreadyAttended(RegistrationError):
    code = "ALREADY_ATTENDED"
    message = "Cannot cancel registration after attendance"


class AlreadyCheckedIn(RegistrationError):
    code = "ALREADY_CHECKED_IN"
    message = "Attendee is already checked in"


class AlreadyCancelled(RegistrationError):
    code = "ALREADY_CANCELLED"
    message = "Registration has already been cancelled"


class CancellationNotAllowed(RegistrationError):
    code = "CANCELLATION_NOT_ALLOWED"
    message = "Registrations cannot be cancelled this close to the event"


class CheckInNotOpen(RegistrationError):
    code = "CHECK_IN_NOT_OPEN"
    message = "Check-in is not open for this event"


class InvalidStateTransition(RegistrationError):
    code = "INVALID_STATE_TRANSITION"

    def __init__(self, from_status: Any, to_status: Any) -> None:
        source = getattr(from_status, "value", from_status)
        target = getattr(to_status, "value", to_status)
        super().__init__(
            f"Cannot move registration from {source} to {target}",
            from_status=source,
            to_status=target,
        )


class CapacityExceeded(RegistrationError):
    code = "CAPACITY_EXCEEDED"
    message = "Event is at capacity"


class CheckInCodeExhausted(RegistrationError):
    code = "CHECK_IN_CODE_EXHAUSTED"
    status_code = 503
    message = "Could not allocate a unique check-in code, please retry"


class BatchPreconditionFailed(RegistrationError):
    code = "BATCH_PRECONDITION_FAILED"

    def __init__(self, failing_id: Any, reason: str, reason_code: str) -> None:
        self.failing_id = failing_id
        self.reason = reason
        self.reason_code = reason_code
        super().__init__(
            f"Batch rejected at {failing_id}: {reason}",
            failing_id=failing_id,
            reason=reason,
            reason_code=reason_code,
        )


class InvalidRequest(RegistrationError):
    code = "VALIDATION_ERROR"
    message = "Request is invalid"
