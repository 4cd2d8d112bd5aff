from sqlalchemy import Column, Integer, String, DateTime, Float, Text, ForeignKey, Enum as SQLEnum
from datetime import datetime
from app.database import Base
import enum


class BookingStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentStatus(enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class Booking(Base):
    """Payable reservation owned by the booking/payment subsystem."""
    __tablename__ = "bookings"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)

    # One booking per trip request
    trip_request_id = Column(String(32), ForeignKey("trip_requests.id"), nullable=True, unique=True)

    participants = Column(Integer, nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)

    total_amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False, default="LKR")

    special_requests = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(SQLEnum(BookingStatus), nullable=False, default=BookingStatus.PENDING)
    payment_status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    paid_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
