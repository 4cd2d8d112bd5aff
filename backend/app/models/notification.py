from sqlalchemy import Column, String, DateTime, Boolean, JSON, ForeignKey, Index, Enum as SQLEnum
from datetime import datetime
from app.database import Base
import enum
import uuid


class NotificationType(enum.Enum):
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_REMINDER = "booking_reminder"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    REVIEW_RECEIVED = "review_received"
    MESSAGE_RECEIVED = "message_received"
    TRIP_REQUEST = "trip_request"
    VEHICLE_APPROVED = "vehicle_approved"
    VEHICLE_REJECTED = "vehicle_rejected"
    GUIDE_APPROVED = "guide_approved"
    GUIDE_REJECTED = "guide_rejected"
    SYSTEM_ANNOUNCEMENT = "system_announcement"
    PROMOTION = "promotion"
    SECURITY_ALERT = "security_alert"


class Priority(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


TITLE_MAX_LENGTH = 100
MESSAGE_MAX_LENGTH = 500


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    type = Column(SQLEnum(NotificationType), nullable=False, index=True)
    title = Column(String(TITLE_MAX_LENGTH), nullable=False)
    message = Column(String(MESSAGE_MAX_LENGTH), nullable=False)
    data = Column(JSON, default=dict)

    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime, nullable=True)

    priority = Column(SQLEnum(Priority), default=Priority.MEDIUM, nullable=False)

    # Eligible for removal by the cleanup job once passed
    expires_at = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )
