from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime

from app.api.deps import get_current_user, Pagination
from app.database import get_db
from app.models.booking import PaymentStatus
from app.models.notification import Priority
from app.models.trip_request import TripRequestStatus
from app.models.user import User
from app.schemas.booking import BookingResponse
from app.schemas.trip_request import (
    ApprovalRequest,
    AssignRequest,
    CancelRequest,
    CommunicationCreate,
    RejectionRequest,
    StatusUpdate,
    TripRequestCreate,
    TripRequestEdit,
    TripRequestResponse,
    TripRequestSummary,
)
from app.services.approval import ApprovalEngine
from app.services.booking_bridge import BookingBridge
from app.services.permissions import Action, authorize
from app.services.state_machine import TripRequestStateMachine
from app.services.trip_requests import TripRequestStore, flatten_details

router = APIRouter()


def _detail(trip, warnings: Optional[list] = None) -> dict:
    body = {"trip_request": TripRequestResponse.model_validate(trip)}
    if warnings is not None:
        body["meta"] = {"warnings": warnings}
    return body


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_trip_request(
    payload: TripRequestCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    machine = TripRequestStateMachine(db)
    trip = machine.submit(user, flatten_details(payload.model_dump()), source=payload.source)
    return {
        "message": "Trip request submitted successfully! Our team will review it and get back to you soon.",
        **_detail(trip),
    }


@router.get("/mine")
async def list_my_trip_requests(
    status_filter: Optional[TripRequestStatus] = Query(None, alias="status"),
    pagination: Pagination = Depends(),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows, total = TripRequestStore(db).list_for_user(
        user.id, pagination.page, pagination.limit, status=status_filter
    )
    return {
        "trip_requests": [TripRequestSummary.model_validate(t) for t in rows],
        "pagination": pagination.describe(total),
    }


@router.get("/stats")
async def trip_request_stats(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    authorize(user, Action.VIEW_STATS)
    return TripRequestStore(db).stats()


@router.get("")
async def list_trip_requests(
    status_filter: Optional[TripRequestStatus] = Query(None, alias="status"),
    priority: Optional[Priority] = Query(None),
    assigned_to: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    start_from: Optional[datetime] = Query(None),
    start_to: Optional[datetime] = Query(None),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    pagination: Pagination = Depends(),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    authorize(user, Action.LIST_ALL_TRIP_REQUESTS)
    rows, total = TripRequestStore(db).list_all(
        pagination.page,
        pagination.limit,
        status=status_filter,
        priority=priority,
        assigned_to=assigned_to,
        search=search,
        start_from=start_from,
        start_to=start_to,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {
        "trip_requests": [TripRequestSummary.model_validate(t) for t in rows],
        "pagination": pagination.describe(total),
    }


@router.get("/{trip_id}")
async def get_trip_request(
    trip_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    trip = TripRequestStateMachine(db).get_for(user, trip_id)
    return _detail(trip)


@router.put("/{trip_id}/status")
async def update_trip_request_status(
    trip_id: str,
    body: StatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if body.status == TripRequestStatus.REJECTED:
        # Rejection keeps its reason requirement on the generic path too
        result = ApprovalEngine(db).reject(trip_id, user, body.reason or body.notes)
        return _detail(result.trip_request, result.warnings)

    trip = TripRequestStateMachine(db).update_status(trip_id, user, body.status, note=body.notes)
    return _detail(trip)


@router.put("/{trip_id}/approve")
async def approve_trip_request(
    trip_id: str,
    body: ApprovalRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = ApprovalEngine(db).approve(
        trip_id,
        user,
        body.approved_cost,
        approval_notes=body.approval_notes,
        approved_itinerary=body.approved_itinerary,
    )
    return _detail(result.trip_request, result.warnings)


@router.put("/{trip_id}/reject")
async def reject_trip_request(
    trip_id: str,
    body: RejectionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = ApprovalEngine(db).reject(trip_id, user, body.reason)
    return _detail(result.trip_request, result.warnings)


@router.put("/{trip_id}/cancel")
async def cancel_trip_request(
    trip_id: str,
    body: CancelRequest = CancelRequest(),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    trip = TripRequestStateMachine(db).cancel(trip_id, user, reason=body.reason)
    return _detail(trip)


@router.put("/{trip_id}/edit")
async def edit_trip_request(
    trip_id: str,
    body: TripRequestEdit,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    changes = body.model_dump(exclude_unset=True, exclude={"notes"})
    if body.destinations is not None:
        changes["destinations"] = [d.model_dump() for d in body.destinations]
    trip =TripRequestStateMachine(db).edit(trip_id, user, flatten_details(changes), note=body.notes)
    return _detail(trip)


@router.put("/{trip_id}/assign")
async def assign_trip_request(
    trip_id: str,
    body: AssignRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    trip = TripRequestStateMachine(db).assign(trip_id, user, body.assigned_to, priority=body.priority)
    return _detail(trip)


@router.post("/{trip_id}/communications")
async def add_trip_request_communication(
    trip_id: str,
    body: CommunicationCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    trip = TripRequestStateMachine(db).add_communication(
        trip_id, user, body.message, type=body.type, recipient=body.recipient
    )
    return _detail(trip)


@router.delete("/{trip_id}")
async def delete_trip_request(
    trip_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    TripRequestStateMachine(db).delete(trip_id, user)
    return {"deleted": True}


@router.post("/{trip_id}/create-booking")
async def create_booking_from_trip_request(
    trip_id: str,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = BookingBridge(db).create_booking(trip_id, user)
    response.status_code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    trip = result.trip_request
    return {
        "message": (
            "Booking created successfully! Please complete payment to confirm your trip."
            if result.created else "Booking already exists for this trip request."
        ),
        "booking": BookingResponse.model_validate(result.booking),
        "trip_request": {"id": trip.id, "title": trip.title, "status": trip.status.value},
        "requires_payment": result.booking.payment_status != PaymentStatus.PAID,
        "meta": {"warnings": result.warnings},
    }
