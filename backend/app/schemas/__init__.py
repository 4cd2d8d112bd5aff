from app.schemas.trip_request import (
    TripRequestCreate,
    TripRequestEdit,
    TripRequestResponse,
    TripRequestSummary,
)
from app.schemas.notification import NotificationResponse, NotificationSend, NotificationBroadcast
from app.schemas.booking import BookingResponse

__all__ = [
    "TripRequestCreate",
    "TripRequestEdit",
    "TripRequestResponse",
    "TripRequestSummary",
    "NotificationResponse",
    "NotificationSend",
    "NotificationBroadcast",
    "BookingResponse",
]
