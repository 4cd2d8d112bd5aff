from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Dict, Optional

from app.api.deps import get_current_user, Pagination
from app.database import get_db
from app.models.notification import NotificationType, Priority
from app.models.user import User
from app.schemas.notification import (
    MarkReadRequest,
    NotificationBroadcast,
    NotificationResponse,
    NotificationSend,
)
from app.services.notification import NotificationDispatcher
from app.services.permissions import Action, authorize

router = APIRouter()


@router.get("")
async def get_notifications(
    unread_only: bool = Query(False),
    type: Optional[NotificationType] = Query(None),
    priority: Optional[Priority] = Query(None),
    pagination: Pagination = Depends(),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict:
    """Caller's notifications, newest first."""
    result = NotificationDispatcher(db).list(
        user.id,
        page=pagination.page,
        limit=pagination.limit,
        unread_only=unread_only,
        type=type,
        priority=priority,
    )
    return {
        "notifications": [NotificationResponse.model_validate(n) for n in result.notifications],
        "pagination": pagination.describe(result.total),
        "unread_count": result.unread_count,
    }


@router.get("/unread-count")
async def get_unread_count(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict:
    return {"unread_count": NotificationDispatcher(db).unread_count(user.id)}


@router.put("/read")
async def mark_notifications_read(
    body: MarkReadRequest = MarkReadRequest(),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict:
    """Mark the given notifications (or every unread one) as read."""
    modified = NotificationDispatcher(db).mark_read(user.id, body.notification_ids)
    return {"message": "Notifications marked as read", "modified_count": modified}


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict:
    NotificationDispatcher(db).delete(user.id, notification_id)
    return {"deleted": True}


@router.post("/send", status_code=status.HTTP_201_CREATED)
async def send_notification(
    body: NotificationSend,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict:
    authorize(user, Action.SEND_NOTIFICATION)
    notification = NotificationDispatcher(db).notify(
        body.user_id,
        body.type,
        body.title,
        body.message,
        data=body.data,
        priority=body.priority,
        expires_at=body.expires_at,
    )
    return {"notification": NotificationResponse.model_validate(notification)}


@router.post("/broadcast", status_code=status.HTTP_201_CREATED)
async def broadcast_notification(
    body: NotificationBroadcast,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Dict:
    authorize(user, Action.BROADCAST_NOTIFICATION)
    result = NotificationDispatcher(db).broadcast(
        body.type,
        body.title,
        body.message,
        data=body.data,
        priority=body.priority,
        role_filter=body.user_roles,
    )
    return {
        "message": f"Notification sent to {result.sent_count} users",
        "sent_count": result.sent_count,
        "failed": [{"user_id": uid, "error": err} for uid, err in result.failures],
    }
