from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.database import get_db
from app.models.user import User
from app.schemas.booking import BookingResponse
from app.services.booking_bridge import BookingBridge
from app.services.bookings import BookingService
from app.services.permissions import Action, authorize

router = APIRouter()


@router.get("/{booking_id}")
async def get_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    booking = BookingService(db).get_or_404(booking_id)
    authorize(user, Action.VIEW_BOOKING, booking)
    return {"booking": BookingResponse.model_validate(booking)}


@router.post("/{booking_id}/confirm-payment")
async def confirm_booking_payment(
    booking_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Payment subsystem callback once the charge has settled."""
    result = BookingBridge(db).confirm_payment(booking_id, user)
    trip = result.trip_request
    return {
        "booking": BookingResponse.model_validate(result.booking),
        "trip_request": (
            {"id": trip.id, "title": trip.title, "status": trip.status.value} if trip is not None else None
        ),
        "meta": {"warnings": result.warnings},
    }
