from pydantic import BaseModel, Field, field_validator
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from app.models.notification import Priority
from app.models.trip_request import TripRequestStatus, CommunicationType, RequestSource

Currency = Literal["LKR", "USD", "EUR", "GBP"]
Interest = Literal[
    "culture", "nature", "adventure", "beach", "history",
    "food", "photography", "wildlife", "spiritual", "shopping",
]


def _unique(values: list[str]) -> list[str]:
    seen = []
    for v in values:
        v = v.strip()
        if v and v not in seen:
            seen.append(v)
    return seen


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class TravelersSchema(BaseModel):
    adults: int = Field(1, ge=1, le=20)
    children: int = Field(0, ge=0, le=10)
    infants: int = Field(0, ge=0, le=5)


class BudgetSchema(BaseModel):
    min_budget: Optional[float] = Field(None, ge=0)
    max_budget: Optional[float] = Field(None, ge=0)
    currency: Currency = "LKR"


class DestinationSchema(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    duration: int = Field(..., ge=1)
    activities: list[str] = []
    accommodation: Literal["hotel", "guesthouse", "resort", "homestay", "any"] = "any"
    budget: Optional[float] = Field(None, ge=0)

    @field_validator("activities")
    @classmethod
    def activities_as_set(cls, v):
        return _unique(v)


class PreferencesSchema(BaseModel):
    accommodation: Literal["budget", "mid-range", "luxury", "any"] = "any"
    transportation: Literal["public", "private", "mixed", "any"] = "any"
    meal_plan: Literal[
        "bed-breakfast", "half-board", "full-board", "breakfast-only", "all-inclusive", "any"
    ] = "any"
    special_requirements: list[str] = []
    interests: list[Interest] = []


class ContactInfoSchema(BaseModel):
    phone: str = Field(..., min_length=3, max_length=32)
    country_code: str = Field(..., min_length=1, max_length=8)
    email: Optional[str] = None
    preferred_contact_method: Literal["phone", "email", "whatsapp"] = "email"
    timezone: str = "Asia/Colombo"


class TripRequestCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=2000)
    start_date: datetime
    end_date: datetime
    travelers: TravelersSchema
    budget: BudgetSchema
    destinations: list[DestinationSchema] = Field(..., min_length=1)
    preferences: PreferencesSchema = PreferencesSchema()
    contact_info: ContactInfoSchema
    tags: list[str] = []
    source: RequestSource = RequestSource.WEBSITE

    @field_validator("start_date", "end_date")
    @classmethod
    def to_naive_utc(cls, v):
        return _naive_utc(v)


class TripRequestEdit(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    travelers: Optional[TravelersSchema] = None
    budget: Optional[BudgetSchema] = None
    destinations: Optional[list[DestinationSchema]] = Field(None, min_length=1)
    preferences: Optional[PreferencesSchema] = None
    contact_info: Optional[ContactInfoSchema] = None
    tags: Optional[list[str]] = None
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("start_date", "end_date")
    @classmethod
    def to_naive_utc(cls, v):
        return _naive_utc(v)


class StatusUpdate(BaseModel):
    status: TripRequestStatus
    notes: Optional[str] = Field(None, max_length=1000)
    reason: Optional[str] = Field(None, max_length=1000)


class ApprovalRequest(BaseModel):
    # Parsed by the approval engine so non-numeric input gets its own error kind
    approved_cost: Any = None
    approval_notes: Optional[str] = None
    approved_itinerary: Optional[Any] = None


class RejectionRequest(BaseModel):
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class AssignRequest(BaseModel):
    assigned_to: str
    priority: Optional[Priority] = None


class CommunicationCreate(BaseModel):
    type: CommunicationType = CommunicationType.INTERNAL_NOTE
    message: str = Field(..., min_length=1, max_length=1000)
    recipient: Optional[str] = None


class CommunicationResponse(BaseModel):
    id: int
    type: CommunicationType
    message: str
    recipient: Optional[str] = None
    sent_by: str
    sent_at: datetime

    class Config:
        from_attributes = True


class ReviewResponse(BaseModel):
    approved_cost: float
    approval_notes: Optional[str] = None
    approved_itinerary: Optional[Any] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class TripRequestSummary(BaseModel):
    id: str
    user_id: str
    title: str
    description: str
    tags: list[str] = []
    start_date: datetime
    end_date: datetime
    adults: int
    children: int
    infants: int
    total_travelers: int
    trip_duration_days: int
    min_budget: Optional[float] = None
    max_budget: Optional[float] = None
    currency: str
    destinations: list[dict] = []
    preferences: dict = {}
    contact_info: dict = {}
    status: TripRequestStatus
    priority: Priority
    source: Optional[RequestSource] = None
    assigned_to: Optional[str] = None
    review: Optional[ReviewResponse] = None
    rejection_reason: Optional[str] = None
    booking_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TripRequestResponse(TripRequestSummary):
    communications: list[CommunicationResponse] = []
