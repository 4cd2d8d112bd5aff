from sqlalchemy import (
    Column, Integer, String, DateTime, Float, Text, JSON, ForeignKey, Index,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from datetime import datetime
from app.database import Base
from app.models.notification import Priority
import enum
import math
import uuid


class TripRequestStatus(enum.Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    PENDING_PAYMENT = "pending_payment"
    BOOKED = "booked"


EDITABLE_STATUSES = {TripRequestStatus.PENDING, TripRequestStatus.UNDER_REVIEW}
DELETABLE_STATUSES = {TripRequestStatus.PENDING, TripRequestStatus.CANCELLED}


class CommunicationType(enum.Enum):
    EMAIL = "email"
    PHONE = "phone"
    WHATSAPP = "whatsapp"
    INTERNAL_NOTE = "internal_note"


class RequestSource(enum.Enum):
    WEBSITE = "website"
    PHONE = "phone"
    EMAIL = "email"
    WALK_IN = "walk-in"
    REFERRAL = "referral"


class TripRequest(Base):
    __tablename__ = "trip_requests"

    id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    tags = Column(JSON, default=list)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)

    adults = Column(Integer, nullable=False, default=1)
    children = Column(Integer, nullable=False, default=0)
    infants = Column(Integer, nullable=False, default=0)

    min_budget = Column(Float, nullable=True)
    max_budget = Column(Float, nullable=True)
    currency = Column(String(3), default="LKR")

    # [{name, duration, activities, accommodation, budget}]
    destinations = Column(JSON, default=list)
    # {accommodation, transportation, meal_plan, special_requirements, interests}
    preferences = Column(JSON, default=dict)
    # {phone, country_code, email, preferred_contact_method, timezone}
    contact_info = Column(JSON, default=dict)

    status = Column(SQLEnum(TripRequestStatus), nullable=False, default=TripRequestStatus.PENDING)
    priority = Column(SQLEnum(Priority), nullable=False, default=Priority.MEDIUM)
    source = Column(SQLEnum(RequestSource), default=RequestSource.WEBSITE)

    assigned_to = Column(String(32), ForeignKey("users.id"), nullable=True)

    # Review block, populated on approval only
    approved_cost = Column(Float, nullable=True)
    approval_notes = Column(String(1000), nullable=True)
    approved_itinerary = Column(JSON, nullable=True)
    reviewed_by = Column(String(32), ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    rejection_reason = Column(String(1000), nullable=True)

    booking_id = Column(String(32), nullable=True, unique=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    communications = relationship(
        "TripRequestCommunication",
        order_by="TripRequestCommunication.id",
        viewonly=True,
    )

    __table_args__ = (
        Index("ix_trip_requests_status_priority", "status", "priority", "created_at"),
        Index("ix_trip_requests_assigned_status", "assigned_to", "status"),
    )

    @property
    def review(self) -> dict | None:
        if self.approved_cost is None:
            return None
        return {
            "approved_cost": self.approved_cost,
            "approval_notes": self.approval_notes,
            "approved_itinerary": self.approved_itinerary,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at,
        }

    @property
    def total_travelers(self) -> int:
        return (self.adults or 0) + (self.children or 0) + (self.infants or 0)

    @property
    def trip_duration_days(self) -> int:
        return math.ceil((self.end_date - self.start_date).total_seconds() / 86400)


class TripRequestCommunication(Base):
    """One entry of a trip request's communication log.

    Entries are only ever inserted; the log doubles as the audit trail for
    status changes and edits.
    """
    __tablename__ = "trip_request_communications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_request_id = Column(
        String(32), ForeignKey("trip_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )

    type = Column(SQLEnum(CommunicationType), nullable=False, default=CommunicationType.INTERNAL_NOTE)
    message = Column(String(1000), nullable=False)
    recipient = Column(String(256), nullable=True)
    sent_by = Column(String(32), ForeignKey("users.id"), nullable=False)
    sent_at = Column(DateTime, default=datetime.utcnow)
