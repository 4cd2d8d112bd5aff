"""
Turns an approved trip request into a payable booking, at most once.

The trip request id is the idempotency key. The winning caller claims the
request with a conditional update (``approved`` and no booking yet ->
``pending_payment`` with a fresh booking id) and writes the booking in the
same transaction. Anyone who loses that race, or calls again later, gets
the existing booking back.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models.booking import Booking, PaymentStatus
from app.models.notification import NotificationType, Priority
from app.models.trip_request import TripRequest, TripRequestStatus
from app.models.user import User
from app.services.approval import format_amount
from app.services.bookings import BookingPayload, BookingService
from app.services.errors import (
    BookingCreationFailed,
    InvalidStateTransition,
    NotFound,
    RequestNotApproved,
)
from app.services.notification import NotificationDispatcher
from app.services.permissions import Action, authorize
from app.services.state_machine import TripRequestStateMachine

logger = logging.getLogger(__name__)


@dataclass
class BookingResult:
    booking: Booking
    trip_request: Optional[TripRequest]
    created: bool
    warnings: List[str] = field(default_factory=list)


class BookingBridge:

    def __init__(
        self,
        db: Session,
        state_machine: Optional[TripRequestStateMachine] = None,
        bookings: Optional[BookingService] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.db = db
        self.state_machine = state_machine or TripRequestStateMachine(db)
        self.store = self.state_machine.store
        self.bookings = bookings or BookingService(db)
        self.dispatcher = dispatcher or NotificationDispatcher(db)

    def _existing(self, trip: TripRequest) -> BookingResult:
        booking = self.bookings.get(trip.booking_id)
        if booking is None:
            raise NotFound(f"Booking {trip.booking_id} for trip request {trip.id} not found")
        return BookingResult(booking=booking, trip_request=trip, created=False)

    def _payload(self, trip: TripRequest, booking_id: str) -> BookingPayload:
        special = ", ".join((trip.preferences or {}).get("special_requirements") or [])
        notes = f"Custom trip booking created from trip request: {trip.title}."
        if trip.approval_notes:
            notes = f"{notes} {trip.approval_notes}"
        return BookingPayload(
            booking_id=booking_id,
            user_id=trip.user_id,
            trip_request_id=trip.id,
            participants=trip.total_travelers,
            start_date=trip.start_date,
            end_date=trip.end_date,
            total_amount=trip.approved_cost,
            currency=trip.currency,
            special_requests=special,
            notes=notes,
        )

    def create_booking(self, trip_id: str, actor: User) -> BookingResult:
        trip = self.store.get_or_404(trip_id)
        authorize(actor, Action.CREATE_BOOKING, trip)

        if trip.booking_id:
            return self._existing(trip)
        if trip.status != TripRequestStatus.APPROVED:
            raise RequestNotApproved("Only approved trip requests can be converted to bookings")
        if not trip.approved_cost:
            raise RequestNotApproved("Trip request must have an approved cost before creating a booking")

        booking_id = uuid.uuid4().hex
        try:
            self.state_machine.transition(
                trip, TripRequestStatus.PENDING_PAYMENT, actor,
                note=f"Booking {booking_id} created, awaiting payment",
                values={"booking_id": booking_id},
                commit=False,
            )
        except InvalidStateTransition:
            fresh = self.store.reload(trip_id)
            if fresh is not None and fresh.booking_id:
                logger.info(f"Trip request {trip_id}: booking already created by a concurrent call")
                return self._existing(fresh)
            raise RequestNotApproved("Only approved trip requests can be converted to bookings")

        try:
            booking = self.bookings.create_booking(self._payload(trip, booking_id))
            self.db.commit()
        except BookingCreationFailed as e:
            self.db.rollback()
            logger.warning(f"Trip request {trip_id}: booking creation failed: {e.message}")
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(trip)
        result = BookingResult(booking=booking, trip_request=trip, created=True)
        warning = self.dispatcher.dispatch_event(
            trip.user_id,
            NotificationType.BOOKING_CONFIRMED,
            "Booking Created - Payment Pending",
            f"Your booking for '{trip.title}' has been created. Please complete payment of "
            f"{format_amount(booking.total_amount, booking.currency)} to confirm your trip.",
            data={
                "trip_request_id": trip.id,
                "booking_id": booking.id,
                "amount": booking.total_amount,
                "currency": booking.currency,
                "requires_payment": True,
            },
            priority=Priority.HIGH,
        )
        if warning:
            result.warnings.append(warning)
        return result

    def confirm_payment(self, booking_id: str, actor: User) -> BookingResult:
        """Payment callback: ``pending_payment -> booked``. Repeat calls are no-ops."""
        authorize(actor, Action.CONFIRM_PAYMENT)
        booking = self.bookings.get_or_404(booking_id)
        trip = self.store.get(booking.trip_request_id) if booking.trip_request_id else None

        if booking.payment_status == PaymentStatus.PAID:
            return BookingResult(booking=booking, trip_request=trip, created=False)

        try:
            if trip is not None:
                self.state_machine.transition(
                    trip, TripRequestStatus.BOOKED, actor,
                    note=f"Payment confirmed for booking {booking.id}",
                    commit=False,
                )
            self.bookings.mark_paid(booking)
            self.db.commit()
        except InvalidStateTransition:
            self.db.rollback()
            fresh = self.bookings.get(booking.id)
            if fresh is not None and fresh.payment_status == PaymentStatus.PAID:
                logger.info(f"Booking {booking.id}: payment already confirmed by a concurrent call")
                return BookingResult(booking=fresh, trip_request=self.store.get(fresh.trip_request_id), created=False)
            raise
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Booking {booking.id} paid")
        result = BookingResult(booking=booking, trip_request=trip, created=False)
        title = trip.title if trip is not None else "your trip"
        warning = self.dispatcher.dispatch_event(
            booking.user_id,
            NotificationType.PAYMENT_SUCCESS,
            "Payment Successful",
            f"Your payment for '{title}' has been processed successfully! Your trip is booked.",
            data={
                "booking_id": booking.id,
                "trip_request_id": booking.trip_request_id,
                "amount": booking.total_amount,
                "currency": booking.currency,
            },
            priority=Priority.HIGH,
        )
        if warning:
            result.warnings.append(warning)
        return result
