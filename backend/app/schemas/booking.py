from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from app.models.booking import BookingStatus, PaymentStatus


class BookingResponse(BaseModel):
    id: str
    user_id: str
    trip_request_id: Optional[str] = None
    participants: int
    start_date: datetime
    end_date: datetime
    total_amount: float
    currency: str
    special_requests: Optional[str] = None
    notes: Optional[str] = None
    status: BookingStatus
    payment_status: PaymentStatus
    paid_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
