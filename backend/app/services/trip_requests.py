from collections import Counter
from datetime import datetime
from typing import Optional, Iterable

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.trip_request import (
    TripRequest,
    TripRequestCommunication,
    TripRequestStatus,
    CommunicationType,
    RequestSource,
)
from app.models.notification import Priority
from app.models.user import User
from app.services.errors import NotFound, ValidationError

SORTABLE_FIELDS = {
    "created_at": TripRequest.created_at,
    "start_date": TripRequest.start_date,
    "priority": TripRequest.priority,
    "status": TripRequest.status,
    "updated_at": TripRequest.updated_at,
}


def validate_trip_details(details: dict, now: Optional[datetime] = None, require_future: bool = True) -> None:
    """
    Cross-field checks shared by submission and editing.

    Field-level rules (lengths, enum membership, counts) are enforced by the
    request schemas; this covers the rules that span several fields.
    """
    now = now or datetime.utcnow()
    start = details.get("start_date")
    end = details.get("end_date")

    if start is not None and end is not None and end <= start:
        raise ValidationError("End date must be after start date")
    if require_future:
        if start is not None and start < now:
            raise ValidationError("Start date cannot be in the past")
        if end is not None and end < now:
            raise ValidationError("End date cannot be in the past")

    min_budget = details.get("min_budget")
    max_budget = details.get("max_budget")
    for value in (min_budget, max_budget):
        if value is not None and value < 0:
            raise ValidationError("Budget cannot be negative")
    if min_budget and max_budget and min_budget > max_budget:
        raise ValidationError("Minimum budget cannot be greater than maximum budget")

    if "adults" in details and (details["adults"] or 0) < 1:
        raise ValidationError("At least 1 adult traveler is required")

    if "destinations" in details and not details["destinations"]:
        raise ValidationError("At least one destination is required")

    if "contact_info" in details:
        contact = details["contact_info"] or {}
        missing = [k for k in ("phone", "country_code", "preferred_contact_method", "timezone") if not contact.get(k)]
        if missing:
            raise ValidationError(f"Contact info is incomplete: missing {', '.join(missing)}")


def flatten_details(payload: dict) -> dict:
    """Map a nested request payload onto TripRequest column names.

    Only keys present in ``payload`` are returned, so partial edits stay partial.
    """
    details = {}
    for key in ("title", "description", "start_date", "end_date", "destinations",
                "preferences", "contact_info"):
        if payload.get(key) is not None:
            details[key] = payload[key]

    if payload.get("tags") is not None:
        details["tags"] = sorted({t.strip() for t in payload["tags"] if t and t.strip()})

    travelers = payload.get("travelers") or {}
    for key in ("adults", "children", "infants"):
        if key in travelers:
            details[key] = travelers[key]

    budget = payload.get("budget") or {}
    for key in ("min_budget", "max_budget"):
        if key in budget:
            details[key] = budget[key]
    if budget.get("currency"):
        details["currency"] = budget["currency"].upper()

    return details


class TripRequestStore:
    """Persistence for trip requests and their communication log."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, owner: User, details: dict, source: Optional[RequestSource] = None) -> TripRequest:
        contact = dict(details.get("contact_info") or {})
        if not contact.get("email"):
            contact["email"] = owner.email

        details = {"currency": get_settings().default_currency, **details}
        trip = TripRequest(
            user_id=owner.id,
            status=TripRequestStatus.PENDING,
            priority=Priority.MEDIUM,
            source=source or RequestSource.WEBSITE,
            **{**details, "contact_info": contact},
        )
        self.db.add(trip)
        return trip

    def get(self, trip_id: str) -> Optional[TripRequest]:
        return self.db.query(TripRequest).filter(TripRequest.id == trip_id).first()

    def get_or_404(self, trip_id: str) -> TripRequest:
        trip = self.get(trip_id)
        if not trip:
            raise NotFound("Trip request not found")
        return trip

    def reload(self, trip_id: str) -> Optional[TripRequest]:
        """Re-read a trip request, discarding anything cached in the session."""
        self.db.expire_all()
        return self.get(trip_id)

    def list_for_user(
        self,
        user_id: str,
        page: int,
        limit: int,
        status: Optional[TripRequestStatus] = None,
    ) -> tuple[list[TripRequest], int]:
        query = self.db.query(TripRequest).filter(TripRequest.user_id == user_id)
        if status is not None:
            query = query.filter(TripRequest.status == status)
        else:
            # Booked requests show up under the customer's bookings instead
            query = query.filter(TripRequest.status != TripRequestStatus.BOOKED)

        total = query.count()
        rows = query.order_by(TripRequest.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return rows, total

    def list_all(
        self,
        page: int,
        limit: int,
        status: Optional[TripRequestStatus] = None,
        priority: Optional[Priority] = None,
        assigned_to: Optional[str] = None,
        search: Optional[str] = None,
        start_from: Optional[datetime] = None,
        start_to: Optional[datetime] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> tuple[list[TripRequest], int]:
        query = self.db.query(TripRequest)
        if status is not None:
            query = query.filter(TripRequest.status == status)
        if priority is not None:
            query = query.filter(TripRequest.priority == priority)
        if assigned_to:
            query = query.filter(TripRequest.assigned_to == assigned_to)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                TripRequest.title.ilike(pattern),
                TripRequest.description.ilike(pattern),
            ))
        if start_from:
            query = query.filter(TripRequest.start_date >= start_from)
        if start_to:
            query = query.filter(TripRequest.start_date <= start_to)

        column = SORTABLE_FIELDS.get(sort_by)
        if column is None:
            raise ValidationError(f"Cannot sort by '{sort_by}'")
        ordering = column.asc() if sort_order == "asc" else column.desc()

        total = query.count()
        rows = query.order_by(ordering, TripRequest.id).offset((page - 1) * limit).limit(limit).all()
        return rows, total

    def stats(self, months: int = 12) -> dict:
        by_status = dict(
            self.db.query(TripRequest.status, func.count(TripRequest.id)).group_by(TripRequest.status).all()
        )
        by_priority = dict(
            self.db.query(TripRequest.priority, func.count(TripRequest.id)).group_by(TripRequest.priority).all()
        )
        monthly = Counter(
            (created.year, created.month)
            for (created,) in self.db.query(TripRequest.created_at).all()
            if created is not None
        )
        recent_months = sorted(monthly.items(), reverse=True)[:months]

        return {
            "total": sum(by_status.values()),
            "by_status": {s.value: by_status.get(s, 0) for s in TripRequestStatus},
            "by_priority": {p.value: by_priority.get(p, 0) for p in Priority},
            "monthly": [
                {"year": year, "month": month, "count": count}
                for (year, month), count in recent_months
            ],
        }

    def compare_and_set_status(
        self,
        trip_id: str,
        expected: TripRequestStatus,
        target: TripRequestStatus,
        values: Optional[dict] = None,
        unbooked_only: bool = False,
    ) -> bool:
        """Move ``trip_id`` to ``target`` only if it is still in ``expected``.

        Returns False when another writer got there first.
        """
        query = self.db.query(TripRequest).filter(
            TripRequest.id == trip_id,
            TripRequest.status == expected,
        )
        if unbooked_only:
            query = query.filter(TripRequest.booking_id.is_(None))

        changes = {"status": target, "updated_at": datetime.utcnow()}
        changes.update(values or {})
        updated = query.update(
            {getattr(TripRequest, k): v for k, v in changes.items()},
            synchronize_session=False,
        )
        return updated == 1

    def update_if_status(self, trip_id: str, statuses: Iterable[TripRequestStatus], values: dict) -> bool:
        changes = dict(values)
        changes["updated_at"] = datetime.utcnow()
        updated = self.db.query(TripRequest).filter(
            TripRequest.id == trip_id,
            TripRequest.status.in_(list(statuses)),
        ).update(
            {getattr(TripRequest, k): v for k, v in changes.items()},
            synchronize_session=False,
        )
        return updated == 1

    def update_fields(self, trip: TripRequest, values: dict) -> TripRequest:
        for key, value in values.items():
            setattr(trip, key, value)
        return trip

    def append_communication(
        self,
        trip_id: str,
        sent_by: str,
        message: str,
        type: CommunicationType = CommunicationType.INTERNAL_NOTE,
        recipient: Optional[str] = None,
    ) -> TripRequestCommunication:
        entry = TripRequestCommunication(
            trip_request_id=trip_id,
            sent_by=sent_by,
            message=message[:1000],
            type=type,
            recipient=recipient,
        )
        self.db.add(entry)
        return entry

    def delete(self, trip: TripRequest) -> None:
        self.db.query(TripRequestCommunication).filter(
            TripRequestCommunication.trip_request_id == trip.id
        ).delete(synchronize_session=False)
        self.db.delete(trip)
