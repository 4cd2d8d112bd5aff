import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, List

from sqlalchemy.orm import Session

from app.models.notification import NotificationType, Priority
from app.models.trip_request import TripRequest, TripRequestStatus
from app.models.user import User
from app.services.errors import InvalidApprovalCost, ValidationError
from app.services.notification import NotificationDispatcher
from app.services.permissions import Action, authorize
from app.services.state_machine import TripRequestStateMachine

logger = logging.getLogger(__name__)


@dataclass
class LifecycleResult:
    """A committed trip request change plus any best-effort dispatch warnings."""
    trip_request: TripRequest
    warnings: List[str] = field(default_factory=list)


def parse_approved_cost(value: Any) -> float:
    """Parse a staff-entered cost; must be a finite number greater than zero."""
    if value is None or isinstance(value, bool):
        raise InvalidApprovalCost("Approved cost is required and must be greater than 0")
    try:
        cost = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidApprovalCost(f"Approved cost '{value}' is not a number")
    if not cost.is_finite():
        raise InvalidApprovalCost("Approved cost must be a finite number")
    cost = float(cost)
    if not math.isfinite(cost) or cost <= 0:
        raise InvalidApprovalCost("Approved cost is required and must be greater than 0")
    return cost


def format_amount(amount: float, currency: str) -> str:
    return f"{amount:,.2f} {currency}".replace(".00 ", " ")


class ApprovalEngine:
    """
    Staff pricing decisions on trip requests.

    Approval writes the review block and the status in one conditional
    update, then notifies the owner. Notification happens after the commit
    and is best-effort, so a failed dispatch shows up as a warning on the
    result rather than undoing the decision.
    """

    def __init__(self, db: Session, state_machine: Optional[TripRequestStateMachine] = None,
                 dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.state_machine = state_machine or TripRequestStateMachine(db)
        self.dispatcher = dispatcher or NotificationDispatcher(db)

    def approve(
        self,
        trip_id: str,
        actor: User,
        approved_cost: Any,
        approval_notes: Optional[str] = None,
        approved_itinerary: Optional[Any] = None,
    ) -> LifecycleResult:
        trip = self.state_machine.store.get_or_404(trip_id)
        authorize(actor, Action.APPROVE, trip)

        cost = parse_approved_cost(approved_cost)
        if approval_notes is not None and len(approval_notes) > 1000:
            raise ValidationError("Approval notes cannot be more than 1000 characters")

        review = {
            "approved_cost": cost,
            "approval_notes": approval_notes or None,
            "approved_itinerary": approved_itinerary,
            "reviewed_by": actor.id,
            "reviewed_at": datetime.utcnow(),
        }
        note = f"Approved at {format_amount(cost, trip.currency)}"
        if approval_notes:
            note = f"{note}. {approval_notes}"
        self.state_machine.transition(trip, TripRequestStatus.APPROVED, actor, note=note, values=review)

        warnings = []
        warning = self.dispatcher.dispatch_event(
            trip.user_id,
            NotificationType.TRIP_REQUEST,
            "Trip Request Approved",
            f"Your trip request '{trip.title}' has been approved. "
            f"Approved cost: {format_amount(cost, trip.currency)}. You can now proceed to booking.",
            data={
                "trip_request_id": trip.id,
                "status": TripRequestStatus.APPROVED.value,
                "approved_cost": cost,
                "currency": trip.currency,
            },
            priority=Priority.HIGH,
        )
        if warning:
            warnings.append(warning)
        return LifecycleResult(trip, warnings)

    def reject(self, trip_id: str, actor: User, reason: Optional[str]) -> LifecycleResult:
        trip = self.state_machine.store.get_or_404(trip_id)
        authorize(actor, Action.REJECT, trip)

        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to reject a trip request")
        if len(reason) > 1000:
            raise ValidationError("Rejection reason cannot be more than 1000 characters")

        self.state_machine.transition(
            trip, TripRequestStatus.REJECTED, actor, note=reason,
            values={"rejection_reason": reason},
        )

        warnings = []
        warning = self.dispatcher.dispatch_event(
            trip.user_id,
            NotificationType.TRIP_REQUEST,
            "Trip Request Not Approved",
            f"Your trip request '{trip.title}' could not be approved. Reason: {reason}"[:500],
            data={
                "trip_request_id": trip.id,
                "status": TripRequestStatus.REJECTED.value,
                "reason": reason,
            },
            priority=Priority.MEDIUM,
        )
        if warning:
            warnings.append(warning)
        return LifecycleResult(trip, warnings)
