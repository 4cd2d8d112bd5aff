"""Tests for the trip request lifecycle."""
import pytest
from datetime import datetime, timedelta

from app.models import TripRequest, TripRequestStatus, Priority, CommunicationType
from app.services.errors import (
    ApprovalRequired,
    DeleteNotAllowed,
    EditNotAllowed,
    Forbidden,
    InvalidStateTransition,
    TransitionPreconditionFailed,
    ValidationError,
)
from app.services.state_machine import (
    TRANSITIONS,
    TripRequestStateMachine,
    can_transition,
)
from app.services.trip_requests import TripRequestStore, validate_trip_details
from tests.factories import trip_details

S = TripRequestStatus


def _force_status(db_session, trip, status, **values):
    TripRequestStore(db_session).compare_and_set_status(trip.id, trip.status, status, values)
    db_session.commit()
    db_session.refresh(trip)
    return trip


class TestTransitionTable:
    def test_terminal_states_have_no_exits(self):
        for state in (S.REJECTED, S.CANCELLED, S.BOOKED):
            assert TRANSITIONS[state] == frozenset()

    def test_every_state_is_covered(self):
        assert set(TRANSITIONS) == set(TripRequestStatus)

    @pytest.mark.parametrize("current,target", [
        (S.PENDING, S.UNDER_REVIEW),
        (S.PENDING, S.APPROVED),
        (S.UNDER_REVIEW, S.REJECTED),
        (S.APPROVED, S.CANCELLED),
        (S.APPROVED, S.PENDING_PAYMENT),
        (S.PENDING_PAYMENT, S.BOOKED),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (S.PENDING, S.BOOKED),
        (S.PENDING, S.PENDING_PAYMENT),
        (S.APPROVED, S.REJECTED),
        (S.PENDING_PAYMENT, S.CANCELLED),
        (S.REJECTED, S.PENDING),
        (S.CANCELLED, S.PENDING),
        (S.BOOKED, S.CANCELLED),
    ])
    def test_disallowed(self, current, target):
        assert not can_transition(current, target)


class TestValidateTripDetails:
    def test_end_before_start(self):
        now = datetime(2030, 1, 1)
        with pytest.raises(ValidationError, match="End date"):
            validate_trip_details(
                {"start_date": now + timedelta(days=5), "end_date": now + timedelta(days=2)}, now=now
            )

    def test_past_start_date(self):
        now = datetime(2030, 1, 1)
        with pytest.raises(ValidationError, match="past"):
            validate_trip_details(
                {"start_date": now - timedelta(days=1), "end_date": now + timedelta(days=2)}, now=now
            )

    def test_min_budget_above_max(self):
        with pytest.raises(ValidationError, match="Minimum budget"):
            validate_trip_details({"min_budget": 300000, "max_budget": 100000})

    def test_zero_budget_is_not_compared(self):
        validate_trip_details({"min_budget": 300000, "max_budget": 0})

    def test_incomplete_contact_info(self):
        with pytest.raises(ValidationError, match="country_code"):
            validate_trip_details({"contact_info": {"phone": "771234567"}})


class TestSubmit:
    def test_submit_defaults(self, trip_request, customer):
        assert trip_request.status == S.PENDING
        assert trip_request.priority == Priority.MEDIUM
        assert trip_request.user_id == customer.id
        assert trip_request.contact_info["email"] == customer.email
        assert trip_request.tags == ["culture", "family"]
        assert trip_request.total_travelers == 3
        assert trip_request.trip_duration_days == 5
        assert trip_request.review is None
        assert trip_request.booking_id is None

    def test_submit_rejects_missing_destinations(self, db_session, customer):
        with pytest.raises(ValidationError):
            TripRequestStateMachine(db_session).submit(customer, trip_details(destinations=[]))
        assert db_session.query(TripRequest).count() == 0


class TestUpdateStatus:
    def test_under_review_requires_assignment(self, db_session, trip_request, staff):
        machine = TripRequestStateMachine(db_session)
        with pytest.raises(TransitionPreconditionFailed):
            machine.update_status(trip_request.id, staff, "under_review")

        machine.assign(trip_request.id, staff, staff.id)
        trip = machine.update_status(trip_request.id, staff, "under_review", note="Looking at hotels")
        assert trip.status == S.UNDER_REVIEW

        last = trip.communications[-1]
        assert last.type == CommunicationType.INTERNAL_NOTE
        assert last.message == "[staff] Status changed from pending to under_review: Looking at hotels"
        assert last.sent_by == staff.id

    def test_generic_path_cannot_approve(self, db_session, trip_request, staff):
        with pytest.raises(ApprovalRequired):
            TripRequestStateMachine(db_session).update_status(trip_request.id, staff, S.APPROVED)
        db_session.refresh(trip_request)
        assert trip_request.status == S.PENDING

    @pytest.mark.parametrize("target", [S.PENDING_PAYMENT, S.BOOKED])
    def test_generic_path_cannot_enter_system_states(self, db_session, trip_request, staff, target):
        with pytest.raises(InvalidStateTransition):
            TripRequestStateMachine(db_session).update_status(trip_request.id, staff, target)

    def test_customer_cannot_update_status(self, db_session, trip_request, customer):
        with pytest.raises(Forbidden):
            TripRequestStateMachine(db_session).update_status(trip_request.id, customer, S.CANCELLED)

    def test_unknown_status(self, db_session, trip_request, staff):
        with pytest.raises(ValidationError):
            TripRequestStateMachine(db_session).update_status(trip_request.id, staff, "on_hold")

    def test_invalid_transition_names_both_states(self, db_session, trip_request, staff):
        _force_status(db_session, trip_request, S.CANCELLED)
        with pytest.raises(InvalidStateTransition) as exc:
            TripRequestStateMachine(db_session).update_status(trip_request.id, staff, S.UNDER_REVIEW)
        assert exc.value.detail == {"current": "cancelled", "requested": "under_review"}


class TestTransitionRace:
    def test_stale_snapshot_loses(self, db_session, trip_request, staff):
        machine = TripRequestStateMachine(db_session)
        stale = TripRequest(id=trip_request.id, user_id=trip_request.user_id, status=S.PENDING)

        machine.cancel(trip_request.id, staff, reason="Customer called")

        with pytest.raises(InvalidStateTransition) as exc:
            machine.transition(stale, S.REJECTED, staff, values={"rejection_reason": "Too late"})
        assert exc.value.current == S.CANCELLED

        trip = TripRequestStore(db_session).reload(trip_request.id)
        assert trip.status == S.CANCELLED
        assert trip.rejection_reason is None


class TestCancel:
    def test_owner_can_cancel_approved(self, db_session, trip_request, customer):
        _force_status(db_session, trip_request, S.APPROVED, approved_cost=100000)
        trip = TripRequestStateMachine(db_session).cancel(trip_request.id, customer, reason="Plans changed")
        assert trip.status == S.CANCELLED
        assert trip.communications[-1].message.startswith("[customer] Status changed from approved to cancelled")

    def test_cannot_cancel_after_booking_started(self, db_session, trip_request, customer):
        _force_status(db_session, trip_request, S.APPROVED, approved_cost=100000)
        _force_status(db_session, trip_request, S.PENDING_PAYMENT, booking_id="b" * 32)
        with pytest.raises(InvalidStateTransition):
            TripRequestStateMachine(db_session).cancel(trip_request.id, customer)

    def test_other_customer_cannot_cancel(self, db_session, trip_request, other_customer):
        with pytest.raises(Forbidden):
            TripRequestStateMachine(db_session).cancel(trip_request.id, other_customer)


class TestEdit:
    def test_owner_edit_while_pending(self, db_session, trip_request, customer):
        trip = TripRequestStateMachine(db_session).edit(
            trip_request.id, customer, {"title": "Cultural triangle", "adults": 3}, note="Added a friend"
        )
        assert trip.title == "Cultural triangle"
        assert trip.adults == 3
        assert trip.status == S.PENDING
        assert trip.communications[-1].message == "[customer] Trip details updated (adults, title): Added a friend"

    def test_partial_preferences_keep_untouched_keys(self, db_session, trip_request, customer):
        trip = TripRequestStateMachine(db_session).edit(
            trip_request.id, customer,
            {"preferences": {"meal_plan": "full-board"}, "contact_info": {"phone": "712345678"}},
        )
        assert trip.preferences == {
            "accommodation": "mid-range",
            "special_requirements": ["vegetarian meals"],
            "meal_plan": "full-board",
        }
        assert trip.contact_info["phone"] == "712345678"
        assert trip.contact_info["country_code"] == "+94"
        assert trip.contact_info["email"] == customer.email

    def test_edit_revalidates_dates_against_stored_values(self, db_session, trip_request, customer):
        with pytest.raises(ValidationError, match="End date"):
            TripRequestStateMachine(db_session).edit(
                trip_request.id, customer, {"end_date": trip_request.start_date - timedelta(days=1)}
            )

    @pytest.mark.parametrize("status", [S.APPROVED, S.REJECTED, S.CANCELLED])
    def test_edit_not_allowed(self, db_session, trip_request, customer, status):
        _force_status(db_session, trip_request, status, approved_cost=100000)
        with pytest.raises(EditNotAllowed):
            TripRequestStateMachine(db_session).edit(trip_request.id, customer, {"title": "New"})
        db_session.refresh(trip_request)
        assert trip_request.title == "Hill country and south coast"

    @pytest.mark.parametrize("status", [S.PENDING_PAYMENT, S.BOOKED])
    def test_edit_not_allowed_after_booking(self, db_session, trip_request, customer, status):
        _force_status(db_session, trip_request, S.APPROVED, approved_cost=100000)
        _force_status(db_session, trip_request, S.PENDING_PAYMENT, booking_id="c" * 32)
        if status == S.BOOKED:
            _force_status(db_session, trip_request, S.BOOKED)
        with pytest.raises(EditNotAllowed):
            TripRequestStateMachine(db_session).edit(trip_request.id, customer, {"title": "New"})

    def test_stranger_cannot_edit(self, db_session, trip_request, other_customer):
        with pytest.raises(Forbidden):
            TripRequestStateMachine(db_session).edit(trip_request.id, other_customer, {"title": "Mine now"})


class TestAssign:
    def test_assign_with_priority(self, db_session, trip_request, admin, staff):
        trip = TripRequestStateMachine(db_session).assign(trip_request.id, admin, staff.id, priority="urgent")
        assert trip.assigned_to == staff.id
        assert trip.priority == Priority.URGENT
        assert trip.communications[-1].message == "[admin] Assigned to Kumari Silva with urgent priority"

    def test_assignee_must_be_staff(self, db_session, trip_request, admin, customer):
        with pytest.raises(ValidationError):
            TripRequestStateMachine(db_session).assign(trip_request.id, admin, customer.id)


class TestCommunications:
    def test_staff_appends(self, db_session, trip_request, staff):
        trip = TripRequestStateMachine(db_session).add_communication(
            trip_request.id, staff, "Called to confirm dates", type="phone", recipient="+94771234567"
        )
        entry = trip.communications[-1]
        assert entry.type == CommunicationType.PHONE
        assert entry.recipient == "+94771234567"

    def test_customer_cannot_append(self, db_session, trip_request, customer):
        with pytest.raises(Forbidden):
            TripRequestStateMachine(db_session).add_communication(trip_request.id, customer, "Hello")


class TestDelete:
    def test_owner_deletes_pending(self, db_session, trip_request, customer):
        TripRequestStateMachine(db_session).delete(trip_request.id, customer)
        assert db_session.query(TripRequest).count() == 0

    def test_staff_cannot_delete(self, db_session, trip_request, staff):
        with pytest.raises(Forbidden):
            TripRequestStateMachine(db_session).delete(trip_request.id, staff)

    def test_approved_cannot_be_deleted(self, db_session, trip_request, admin):
        _force_status(db_session, trip_request, S.APPROVED, approved_cost=100000)
        with pytest.raises(DeleteNotAllowed):
            TripRequestStateMachine(db_session).delete(trip_request.id, admin)
