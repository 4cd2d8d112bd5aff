# SQLAlchemy models
from app.models.user import User, UserRole, STAFF_ROLES
from app.models.notification import Notification, NotificationType, Priority
from app.models.trip_request import (
    TripRequest,
    TripRequestCommunication,
    TripRequestStatus,
    CommunicationType,
    RequestSource,
)
from app.models.booking import Booking, BookingStatus, PaymentStatus

__all__ = [
    "User",
    "Notification",
    "TripRequest",
    "TripRequestCommunication",
    "Booking",
    # Enums
    "UserRole",
    "NotificationType",
    "Priority",
    "TripRequestStatus",
    "CommunicationType",
    "RequestSource",
    "BookingStatus",
    "PaymentStatus",
    "STAFF_ROLES",
]
