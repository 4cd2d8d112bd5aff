"""
Trip request lifecycle.

    pending ──> under_review ──┬──> approved ──> pending_payment ──> booked
       │             │         └──> rejected
       └─────────────┴──> cancelled <── approved

``pending`` may also go straight to approved/rejected. Every write is a
conditional update on the status the caller last saw, so two staff members
racing (approve vs. reject, or two approvals) cannot both win; the loser
gets InvalidStateTransition naming the status it lost to.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.models.notification import Priority
from app.models.trip_request import (
    TripRequest,
    TripRequestStatus,
    CommunicationType,
    RequestSource,
    EDITABLE_STATUSES,
    DELETABLE_STATUSES,
)
from app.models.user import User, UserRole
from app.services.errors import (
    ApprovalRequired,
    DeleteNotAllowed,
    EditNotAllowed,
    InvalidStateTransition,
    TransitionPreconditionFailed,
    ValidationError,
)
from app.services.permissions import Action, authorize
from app.services.trip_requests import TripRequestStore, validate_trip_details
from app.services.users import UserDirectory

logger = logging.getLogger(__name__)

S = TripRequestStatus

TRANSITIONS: dict[TripRequestStatus, frozenset] = {
    S.PENDING: frozenset({S.UNDER_REVIEW, S.APPROVED, S.REJECTED, S.CANCELLED}),
    S.UNDER_REVIEW: frozenset({S.APPROVED, S.REJECTED, S.CANCELLED}),
    S.APPROVED: frozenset({S.PENDING_PAYMENT, S.CANCELLED}),
    S.PENDING_PAYMENT: frozenset({S.BOOKED}),
    S.REJECTED: frozenset(),
    S.CANCELLED: frozenset(),
    S.BOOKED: frozenset(),
}

# Entered only through booking creation and payment confirmation
SYSTEM_ONLY_TARGETS = {S.PENDING_PAYMENT, S.BOOKED}

# Edited key by key; destinations and tags are replaced whole
MERGED_JSON_FIELDS = ("preferences", "contact_info")


def can_transition(current: TripRequestStatus, target: TripRequestStatus) -> bool:
    return target in TRANSITIONS[current]


def actor_tag(actor: User) -> str:
    if actor.role == UserRole.ADMIN:
        return "[admin]"
    if actor.is_staff:
        return "[staff]"
    return "[customer]"


def coerce_status(value) -> TripRequestStatus:
    if isinstance(value, TripRequestStatus):
        return value
    try:
        return TripRequestStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown trip request status '{value}'")


class TripRequestStateMachine:

    def __init__(self, db: Session, store: Optional[TripRequestStore] = None,
                 users: Optional[UserDirectory] = None):
        self.db = db
        self.store = store or TripRequestStore(db)
        self.users = users or UserDirectory(db)

    def ensure_transition(self, current: TripRequestStatus, target: TripRequestStatus) -> None:
        if not can_transition(current, target):
            raise InvalidStateTransition(current, target)

    def _check_preconditions(self, trip: TripRequest, target: TripRequestStatus, values: dict) -> None:
        if target == S.UNDER_REVIEW and not trip.assigned_to:
            raise TransitionPreconditionFailed("Assign the trip request to a staff member before reviewing it")
        if target == S.APPROVED and not (values.get("approved_cost") or 0) > 0:
            raise ApprovalRequired("Approval requires an approved cost greater than 0")
        if target == S.REJECTED and not (values.get("rejection_reason") or "").strip():
            raise ValidationError("A reason is required to reject a trip request")
        if target == S.PENDING_PAYMENT and not values.get("booking_id"):
            raise TransitionPreconditionFailed("A booking reference is required")

    def transition(
        self,
        trip: TripRequest,
        target: TripRequestStatus,
        actor: User,
        note: Optional[str] = None,
        values: Optional[dict] = None,
        commit: bool = True,
    ) -> TripRequest:
        """Apply ``trip.status -> target`` atomically and log it.

        ``values`` are written in the same conditional update as the status.
        With ``commit=False`` the caller owns the transaction.
        """
        values = values or {}
        current = trip.status
        self.ensure_transition(current, target)
        self._check_preconditions(trip, target, values)

        applied = self.store.compare_and_set_status(
            trip.id, current, target, values,
            unbooked_only=(target == S.PENDING_PAYMENT),
        )
        if not applied:
            self.db.rollback()
            fresh = self.store.reload(trip.id)
            latest = fresh.status if fresh else current
            logger.info(f"Trip request {trip.id}: lost race {current.value} -> {target.value} (now {latest.value})")
            raise InvalidStateTransition(latest, target)

        message = f"{actor_tag(actor)} Status changed from {current.value} to {target.value}"
        if note:
            message = f"{message}: {note}"
        self.store.append_communication(trip.id, actor.id, message)

        if commit:
            self.db.commit()
        else:
            self.db.flush()
        self.db.expire(trip)
        logger.info(f"Trip request {trip.id}: {current.value} -> {target.value} by {actor.id}")
        return trip

    def submit(self, actor: User, details: dict, source: Optional[RequestSource] = None) -> TripRequest:
        """Create a trip request in its initial ``pending`` state."""
        authorize(actor, Action.CREATE_TRIP_REQUEST)
        validate_trip_details(details)

        trip = self.store.create(actor, details, source=source)
        self.db.commit()
        self.db.refresh(trip)
        logger.info(f"Trip request {trip.id} submitted by {actor.id}")
        return trip

    def get_for(self, actor: User, trip_id: str) -> TripRequest:
        trip = self.store.get_or_404(trip_id)
        authorize(actor, Action.VIEW_TRIP_REQUEST, trip)
        return trip

    def update_status(
        self,
        trip_id: str,
        actor: User,
        status,
        note: Optional[str] = None,
    ) -> TripRequest:
        """Generic staff status change.

        Approval and rejection have dedicated entry points that validate cost
        and reason; booking states belong to the booking bridge.
        """
        trip = self.store.get_or_404(trip_id)
        authorize(actor, Action.UPDATE_STATUS, trip)
        target = coerce_status(status)

        if target in (S.APPROVED, S.REJECTED):
            raise ApprovalRequired(
                f"Use the {'approve' if target == S.APPROVED else 'reject'} endpoint to move a trip request to {target.value}"
            )
        if target in SYSTEM_ONLY_TARGETS:
            raise InvalidStateTransition(
                trip.status, target,
                f"'{target.value}' is set by booking and payment processing, not by a status update",
            )
        return self.transition(trip, target, actor, note=note)

    def cancel(self, trip_id: str, actor: User, reason: Optional[str] = None) -> TripRequest:
        trip = self.store.get_or_404(trip_id)
        authorize(actor, Action.CANCEL, trip)
        return self.transition(trip, S.CANCELLED, actor, note=reason)

    def edit(self, trip_id: str, actor: User, details: dict, note: Optional[str] = None) -> TripRequest:
        trip = self.store.get_or_404(trip_id)
        authorize(actor, Action.EDIT_TRIP_REQUEST, trip)
        if trip.status not in EDITABLE_STATUSES:
            raise EditNotAllowed(
                f"Only pending or under review trip requests can be edited (status is {trip.status.value})"
            )
        if not details:
            raise ValidationError("No changes supplied")

        details = dict(details)
        for key in MERGED_JSON_FIELDS:
            if key in details:
                details[key] = {**(getattr(trip, key) or {}), **details[key]}

        merged = {
            "start_date": details.get("start_date", trip.start_date),
            "end_date": details.get("end_date", trip.end_date),
            "min_budget": details.get("min_budget", trip.min_budget),
            "max_budget": details.get("max_budget", trip.max_budget),
        }
        for key in ("adults", "destinations", "contact_info"):
            if key in details:
                merged[key] = details[key]
        validate_trip_details(merged, require_future="start_date" in details or "end_date" in details)

        if not self.store.update_if_status(trip.id, EDITABLE_STATUSES, details):
            self.db.rollback()
            fresh = self.store.reload(trip.id)
            raise EditNotAllowed(
                f"Only pending or under review trip requests can be edited (status is {fresh.status.value})"
            )

        changed = ", ".join(sorted(details))
        message = f"{actor_tag(actor)} Trip details updated ({changed})"
        if note:
            message = f"{message}: {note}"
        self.store.append_communication(trip.id, actor.id, message)
        self.db.commit()
        self.db.refresh(trip)
        logger.info(f"Trip request {trip.id} edited by {actor.id}: {changed}")
        return trip

    def assign(self, trip_id: str, actor: User, assignee_id: str, priority=None) -> TripRequest:
        trip = self.store.get_or_404(trip_id)
        authorize(actor, Action.ASSIGN, trip)

        assignee = self.users.get(assignee_id)
        if not assignee or not assignee.is_active or not assignee.is_staff:
            raise ValidationError("Invalid staff member for assignment")

        values = {"assigned_to": assignee.id}
        if priority is not None:
            try:
                values["priority"] = priority if isinstance(priority, Priority) else Priority(priority)
            except ValueError:
                raise ValidationError(f"Unknown priority '{priority}'")

        self.store.update_fields(trip, values)
        message = f"{actor_tag(actor)} Assigned to {assignee.name}"
        if "priority" in values:
            message = f"{message} with {values['priority'].value} priority"
        self.store.append_communication(trip.id, actor.id, message)
        self.db.commit()
        self.db.refresh(trip)
        logger.info(f"Trip request {trip.id} assigned to {assignee.id} by {actor.id}")
        return trip

    def add_communication(
        self,
        trip_id: str,
        actor: User,
        message: str,
        type=CommunicationType.INTERNAL_NOTE,
        recipient: Optional[str] = None,
    ) -> TripRequest:
        trip = self.store.get_or_404(trip_id)
        authorize(actor, Action.ADD_COMMUNICATION, trip)

        if not message or not message.strip():
            raise ValidationError("Message is required")
        if len(message) > 1000:
            raise ValidationError("Message cannot be more than 1000 characters")
        try:
            type = type if isinstance(type, CommunicationType) else CommunicationType(type)
        except ValueError:
            raise ValidationError(f"Unknown communication type '{type}'")

        self.store.append_communication(trip.id, actor.id, message.strip(), type=type, recipient=recipient)
        self.db.commit()
        self.db.refresh(trip)
        return trip

    def delete(self, trip_id: str, actor: User) -> None:
        trip = self.store.get_or_404(trip_id)
        authorize(actor, Action.DELETE_TRIP_REQUEST, trip)
        if trip.status not in DELETABLE_STATUSES:
            raise DeleteNotAllowed("Only pending or cancelled trip requests can be deleted")

        self.store.delete(trip)
        self.db.commit()
        logger.info(f"Trip request {trip_id} deleted by {actor.id}")
