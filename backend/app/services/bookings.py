"""
Booking/payment subsystem adapter.

The trip desk hands over a payload and receives a Booking, or a
BookingCreationFailed carrying the subsystem's reason. Rows are written
into the caller's session so the booking and the trip request's
``pending_payment`` claim commit together.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.orm import Session

from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.services.errors import BookingCreationFailed, NotFound

logger = logging.getLogger(__name__)

SUPPORTED_CURRENCIES = {"LKR", "USD", "EUR", "GBP"}


@dataclass
class BookingPayload:
    booking_id: str
    user_id: str
    trip_request_id: str
    participants: int
    start_date: datetime
    end_date: datetime
    total_amount: float
    currency: str
    special_requests: str = ""
    notes: str = ""


class BookingService:

    def __init__(self, db: Session):
        self.db = db

    def _reject_reasons(self, payload: BookingPayload) -> list[str]:
        reasons = []
        if payload.participants < 1:
            reasons.append("At least one participant is required")
        if payload.total_amount is None or payload.total_amount <= 0:
            reasons.append("Total amount must be greater than 0")
        if payload.currency not in SUPPORTED_CURRENCIES:
            reasons.append(f"Unsupported currency '{payload.currency}'")
        if payload.end_date <= payload.start_date:
            reasons.append("End date must be after start date")
        return reasons

    def create_booking(self, payload: BookingPayload) -> Booking:
        reasons = self._reject_reasons(payload)
        if reasons:
            raise BookingCreationFailed(
                "Booking subsystem rejected the booking: " + "; ".join(reasons),
                {"errors": reasons},
            )

        booking = Booking(
            id=payload.booking_id,
            user_id=payload.user_id,
            trip_request_id=payload.trip_request_id,
            participants=payload.participants,
            start_date=payload.start_date,
            end_date=payload.end_date,
            total_amount=payload.total_amount,
            currency=payload.currency,
            special_requests=payload.special_requests,
            notes=payload.notes,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
        )
        self.db.add(booking)
        self.db.flush()
        logger.info(f"Booking {booking.id} created for trip request {payload.trip_request_id}")
        return booking

    def get(self, booking_id: str) -> Optional[Booking]:
        return self.db.query(Booking).filter(Booking.id == booking_id).first()

    def get_or_404(self, booking_id: str) -> Booking:
        booking = self.get(booking_id)
        if not booking:
            raise NotFound("Booking not found")
        return booking

    def mark_paid(self, booking: Booking) -> Booking:
        booking.payment_status = PaymentStatus.PAID
        booking.status = BookingStatus.CONFIRMED
        booking.paid_at = datetime.utcnow()
        return booking
