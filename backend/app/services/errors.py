"""
Domain errors raised by the trip desk services.

Each error carries a stable ``kind`` (returned to API callers as ``error``)
and the HTTP status the API layer maps it to.
"""
from typing import Optional


class TripDeskError(Exception):
    kind = "error"
    status_code = 400

    def __init__(self, message: str, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(TripDeskError):
    kind = "validation_error"
    status_code = 422


class InvalidApprovalCost(ValidationError):
    kind = "invalid_approval_cost"


class Unauthenticated(TripDeskError):
    kind = "unauthenticated"
    status_code = 401


class Forbidden(TripDeskError):
    kind = "forbidden"
    status_code = 403


class NotFound(TripDeskError):
    kind = "not_found"
    status_code = 404


class UnknownUser(NotFound):
    kind = "unknown_user"


class StateConflict(TripDeskError):
    status_code = 409


class InvalidStateTransition(StateConflict):
    kind = "invalid_state_transition"

    def __init__(self, current, requested, message: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(
            message or f"Cannot move trip request from '{current.value}' to '{requested.value}'",
            {"current": current.value, "requested": requested.value},
        )


class TransitionPreconditionFailed(StateConflict):
    kind = "precondition_failed"


class ApprovalRequired(StateConflict):
    kind = "approval_required"


class EditNotAllowed(StateConflict):
    kind = "edit_not_allowed"


class DeleteNotAllowed(StateConflict):
    kind = "delete_not_allowed"


class RequestNotApproved(StateConflict):
    kind = "request_not_approved"


class NoRecipients(TripDeskError):
    kind = "no_recipients"
    status_code = 400


class BookingCreationFailed(TripDeskError):
    """The booking subsystem refused the payload. Not retried."""
    kind = "booking_creation_failed"
    status_code = 502
