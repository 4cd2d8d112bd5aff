"""Tests for turning approved trip requests into bookings."""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from unittest.mock import patch
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.database import Base
from app.models import (
    Booking,
    BookingStatus,
    Notification,
    NotificationType,
    PaymentStatus,
    TripRequest,
    TripRequestStatus,
    User,
    UserRole,
)
from app.services.approval import ApprovalEngine
from app.services.booking_bridge import BookingBridge
from app.services.bookings import BookingService
from app.services.errors import (
    BookingCreationFailed,
    Forbidden,
    NotFound,
    RequestNotApproved,
)
from app.services.notification import NotificationDispatcher
from app.services.state_machine import TripRequestStateMachine
from app.services.trip_requests import TripRequestStore
from tests.factories import make_user, trip_details


@pytest.fixture
def approved_request(db_session, trip_request, staff):
    return ApprovalEngine(db_session).approve(trip_request.id, staff, 180000).trip_request


class TestCreateBooking:
    def test_creates_pending_payment_booking(self, db_session, approved_request, customer):
        result = BookingBridge(db_session).create_booking(approved_request.id, customer)

        assert result.created is True
        assert result.warnings == []
        booking = result.booking
        assert booking.total_amount == 180000
        assert booking.currency == "LKR"
        assert booking.participants == 3
        assert booking.special_requests == "vegetarian meals"
        assert booking.status == BookingStatus.PENDING
        assert booking.payment_status == PaymentStatus.PENDING

        trip = result.trip_request
        assert trip.status == TripRequestStatus.PENDING_PAYMENT
        assert trip.booking_id == booking.id
        assert trip.communications[-1].message.startswith(
            "[customer] Status changed from approved to pending_payment"
        )

        types = {n.type for n in db_session.query(Notification).filter(Notification.user_id == customer.id)}
        assert types == {NotificationType.TRIP_REQUEST, NotificationType.BOOKING_CONFIRMED}

    def test_second_call_returns_same_booking(self, db_session, approved_request, customer):
        bridge = BookingBridge(db_session)
        first = bridge.create_booking(approved_request.id, customer)
        second = bridge.create_booking(approved_request.id, customer)

        assert second.created is False
        assert second.booking.id == first.booking.id
        assert db_session.query(Booking).count() == 1
        assert db_session.query(Notification).filter(
            Notification.type == NotificationType.BOOKING_CONFIRMED
        ).count() == 1

    def test_losing_a_race_returns_winner_booking(self, db_session, approved_request, customer):
        bridge = BookingBridge(db_session)
        stale = TripRequest(
            id=approved_request.id,
            user_id=customer.id,
            title=approved_request.title,
            status=TripRequestStatus.APPROVED,
            approved_cost=180000,
        )
        winner = bridge.create_booking(approved_request.id, customer)

        # The loser read the request before the winner's claim committed
        with patch.object(TripRequestStore, "get_or_404", return_value=stale):
            loser = bridge.create_booking(approved_request.id, customer)

        assert loser.created is False
        assert loser.booking.id == winner.booking.id
        assert db_session.query(Booking).count() == 1

    @pytest.mark.parametrize("status", ["pending", "rejected"])
    def test_requires_approval(self, db_session, trip_request, customer, staff, status):
        if status == "rejected":
            ApprovalEngine(db_session).reject(trip_request.id, staff, "Fully booked")
        with pytest.raises(RequestNotApproved):
            BookingBridge(db_session).create_booking(trip_request.id, customer)
        assert db_session.query(Booking).count() == 0

    def test_only_owner(self, db_session, approved_request, staff, other_customer):
        bridge = BookingBridge(db_session)
        for actor in (staff, other_customer):
            with pytest.raises(Forbidden):
                bridge.create_booking(approved_request.id, actor)

    def test_subsystem_rejection_rolls_back_claim(self, db_session, approved_request, customer):
        failure = BookingCreationFailed("Booking subsystem rejected the booking", {"errors": ["closed"]})
        with patch.object(BookingService, "create_booking", side_effect=failure):
            with pytest.raises(BookingCreationFailed) as exc:
                BookingBridge(db_session).create_booking(approved_request.id, customer)
        assert exc.value.detail == {"errors": ["closed"]}

        trip = TripRequestStore(db_session).reload(approved_request.id)
        assert trip.status == TripRequestStatus.APPROVED
        assert trip.booking_id is None
        assert db_session.query(Booking).count() == 0

        # Nothing left behind: a later attempt goes through
        result = BookingBridge(db_session).create_booking(approved_request.id, customer)
        assert result.created is True

    def test_unsupported_currency_is_refused(self, db_session, approved_request, customer):
        db_session.query(TripRequest).filter(TripRequest.id == approved_request.id).update({"currency": "JPY"})
        db_session.commit()

        with pytest.raises(BookingCreationFailed) as exc:
            BookingBridge(db_session).create_booking(approved_request.id, customer)
        assert "Unsupported currency 'JPY'" in exc.value.detail["errors"]

    def test_notification_failure_is_a_warning(self, db_session, approved_request, customer):
        with patch.object(NotificationDispatcher, "notify", side_effect=RuntimeError("boom")):
            result = BookingBridge(db_session).create_booking(approved_request.id, customer)

        assert result.created is True
        assert len(result.warnings) == 1
        trip = TripRequestStore(db_session).reload(approved_request.id)
        assert trip.status == TripRequestStatus.PENDING_PAYMENT
        assert db_session.query(Booking).count() == 1


class TestConcurrentSessions:
    def test_parallel_sessions_create_one_booking(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'bookings.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(bind=engine)
        RaceSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        try:
            with RaceSession() as setup:
                owner = make_user(setup, "Chamari Dias")
                reviewer = make_user(setup, "Sunil Bandara", role=UserRole.STAFF)
                trip = TripRequestStateMachine(setup).submit(owner, trip_details())
                ApprovalEngine(setup).approve(trip.id, reviewer, 180000)
                trip_id, owner_id = trip.id, owner.id

            callers = 8
            barrier = threading.Barrier(callers)

            def attempt():
                with RaceSession() as session:
                    actor = session.get(User, owner_id)
                    barrier.wait()
                    result = BookingBridge(session).create_booking(trip_id, actor)
                    return result.created, result.booking.id

            with ThreadPoolExecutor(max_workers=callers) as pool:
                outcomes = [f.result() for f in [pool.submit(attempt) for _ in range(callers)]]

            assert sorted(created for created, _ in outcomes) == [False] * (callers - 1) + [True]
            assert len({booking_id for _, booking_id in outcomes}) == 1
            with RaceSession() as check:
                assert check.query(Booking).count() == 1
                assert check.get(TripRequest, trip_id).status == TripRequestStatus.PENDING_PAYMENT
        finally:
            engine.dispose()


class TestConfirmPayment:
    def test_confirm_moves_request_to_booked(self, db_session, approved_request, customer, admin):
        bridge = BookingBridge(db_session)
        booking_id = bridge.create_booking(approved_request.id, customer).booking.id

        result = bridge.confirm_payment(booking_id, admin)
        assert result.booking.payment_status == PaymentStatus.PAID
        assert result.booking.status == BookingStatus.CONFIRMED
        assert result.booking.paid_at is not None
        assert result.trip_request.status == TripRequestStatus.BOOKED

        assert db_session.query(Notification).filter(
            Notification.user_id == customer.id,
            Notification.type == NotificationType.PAYMENT_SUCCESS,
        ).count() == 1

    def test_confirm_twice_is_a_no_op(self, db_session, approved_request, customer, admin):
        bridge = BookingBridge(db_session)
        booking_id = bridge.create_booking(approved_request.id, customer).booking.id
        first = bridge.confirm_payment(booking_id, admin)
        paid_at = first.booking.paid_at

        second = bridge.confirm_payment(booking_id, admin)
        assert second.booking.paid_at == paid_at
        assert db_session.query(Notification).filter(
            Notification.type == NotificationType.PAYMENT_SUCCESS
        ).count() == 1

    def test_losing_a_payment_race_returns_paid_booking(self, db_session, approved_request, customer, admin):
        bridge = BookingBridge(db_session)
        booking = bridge.create_booking(approved_request.id, customer).booking
        stale = Booking(
            id=booking.id,
            user_id=customer.id,
            trip_request_id=approved_request.id,
            payment_status=PaymentStatus.PENDING,
        )
        winner = bridge.confirm_payment(booking.id, admin)

        # The loser read the booking before the winner's payment committed
        with patch.object(BookingService, "get_or_404", return_value=stale):
            loser = bridge.confirm_payment(booking.id, admin)

        assert loser.booking.id == winner.booking.id
        assert loser.booking.payment_status == PaymentStatus.PAID
        assert loser.trip_request.status == TripRequestStatus.BOOKED
        assert db_session.query(Notification).filter(
            Notification.type == NotificationType.PAYMENT_SUCCESS
        ).count() == 1

    def test_only_admin_confirms(self, db_session, approved_request, customer, staff):
        booking_id = BookingBridge(db_session).create_booking(approved_request.id, customer).booking.id
        for actor in (customer, staff):
            with pytest.raises(Forbidden):
                BookingBridge(db_session).confirm_payment(booking_id, actor)

    def test_unknown_booking(self, db_session, admin):
        with pytest.raises(NotFound):
            BookingBridge(db_session).confirm_payment("missing", admin)
