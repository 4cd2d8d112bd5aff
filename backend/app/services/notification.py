from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, List, Tuple
import logging
import math

from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.notification import (
    Notification,
    NotificationType,
    Priority,
    TITLE_MAX_LENGTH,
    MESSAGE_MAX_LENGTH,
)
from app.models.user import UserRole
from app.services.errors import NotFound, UnknownUser, NoRecipients, ValidationError
from app.services.users import UserDirectory

logger = logging.getLogger(__name__)


@dataclass
class NotificationPage:
    notifications: List[Notification]
    page: int
    limit: int
    total: int
    unread_count: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class BroadcastResult:
    sent_count: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)


def _coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field_name} '{value}'. Allowed: {allowed}")


class NotificationStore:
    """Persistence for per-user notification records."""

    def __init__(self, db: Session):
        self.db = db

    def add(self, notification: Notification) -> Notification:
        self.db.add(notification)
        return notification

    def get_for_user(self, user_id: str, notification_id: str) -> Optional[Notification]:
        return self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        ).first()

    def page_for_user(
        self,
        user_id: str,
        page: int,
        limit: int,
        unread_only: bool = False,
        type: Optional[NotificationType] = None,
        priority: Optional[Priority] = None,
    ) -> Tuple[List[Notification], int]:
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read == False)
        if type is not None:
            query = query.filter(Notification.type == type)
        if priority is not None:
            query = query.filter(Notification.priority == priority)

        total = query.count()
        rows = query.order_by(
            Notification.created_at.desc(), Notification.id.desc()
        ).offset((page - 1) * limit).limit(limit).all()
        return rows, total

    def count_unread(self, user_id: str) -> int:
        return self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False,
        ).count()

    def mark_read(self, user_id: str, notification_ids: Optional[List[str]], now: datetime) -> int:
        # Already-read rows are excluded so read_at is only ever set once
        query = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False,
        )
        if notification_ids is not None:
            if not notification_ids:
                return 0
            query = query.filter(Notification.id.in_(notification_ids))
        modified = query.update(
            {Notification.is_read: True, Notification.read_at: now},
            synchronize_session=False,
        )
        self.db.commit()
        return modified

    def delete(self, notification: Notification) -> None:
        self.db.delete(notification)
        self.db.commit()

    def delete_expired(self, now: datetime) -> int:
        removed = self.db.query(Notification).filter(
            Notification.expires_at.isnot(None),
            Notification.expires_at <= now,
        ).delete(synchronize_session=False)
        self.db.commit()
        return removed

    def delete_read_before(self, cutoff: datetime) -> int:
        removed = self.db.query(Notification).filter(
            Notification.is_read == True,
            Notification.created_at < cutoff,
        ).delete(synchronize_session=False)
        self.db.commit()
        return removed


class NotificationDispatcher:
    """
    Creates notifications for single users and role-filtered broadcasts.

    Delivery is poll based: a notification exists once its row is committed
    and clients fetch it through the notifications API.

    Lifecycle events (approval, rejection, booking, payment) go through
    ``dispatch_event``, which never raises: a failure is logged and returned
    as a warning string so the caller can surface it without undoing the
    state change that triggered it.
    """

    def __init__(self, db: Session, store: Optional[NotificationStore] = None,
                 users: Optional[UserDirectory] = None):
        self.db = db
        self.store = store or NotificationStore(db)
        self.users = users or UserDirectory(db)
        self.settings = get_settings()

    @staticmethod
    def _validate(type, title: str, message: str, priority) -> Tuple[NotificationType, Priority]:
        type = _coerce_enum(NotificationType, type, "notification type")
        priority = _coerce_enum(Priority, priority or Priority.MEDIUM, "priority")

        if not title or not title.strip():
            raise ValidationError("Notification title is required")
        if not message or not message.strip():
            raise ValidationError("Notification message is required")
        if len(title) > TITLE_MAX_LENGTH:
            raise ValidationError(f"Title cannot be more than {TITLE_MAX_LENGTH} characters")
        if len(message) > MESSAGE_MAX_LENGTH:
            raise ValidationError(f"Message cannot be more than {MESSAGE_MAX_LENGTH} characters")
        return type, priority

    def _build(self, user_id: str, type, title: str, message: str,
               data: Optional[dict], priority, expires_at: Optional[datetime]) -> Notification:
        type, priority = self._validate(type, title, message, priority)
        return Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=data or {},
            priority=priority,
            expires_at=expires_at,
        )

    def notify(
        self,
        user_id: str,
        type,
        title: str,
        message: str,
        data: Optional[dict] = None,
        priority=Priority.MEDIUM,
        expires_at: Optional[datetime] = None,
    ) -> Notification:
        if not self.users.exists(user_id):
            raise UnknownUser(f"User '{user_id}' not found")

        notification = self._build(user_id, type, title, message, data, priority, expires_at)
        self.store.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        logger.info(f"Notification {notification.id} ({notification.type.value}) created for user {user_id}")
        return notification

    def dispatch_event(
        self,
        user_id: str,
        type,
        title: str,
        message: str,
        data: Optional[dict] = None,
        priority=Priority.MEDIUM,
    ) -> Optional[str]:
        try:
            self.notify(user_id, type, title, message, data=data, priority=priority)
            return None
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Best-effort notification to user {user_id} failed: {e}")
            return f"Notification to user {user_id} could not be created: {e}"

    def broadcast(
        self,
        type,
        title: str,
        message: str,
        data: Optional[dict] = None,
        priority=Priority.MEDIUM,
        role_filter: Optional[List] = None,
    ) -> BroadcastResult:
        roles = [_coerce_enum(UserRole, r, "user role") for r in (role_filter or [])]
        # Validate once up front; a bad payload would fail for every recipient
        type, priority = self._validate(type, title, message, priority)

        user_ids = self.users.find_ids_by_roles(roles)
        if not user_ids:
            raise NoRecipients("No users found to send notification to")

        result = BroadcastResult()
        batch_size = max(1, self.settings.broadcast_batch_size)

        for start in range(0, len(user_ids), batch_size):
            batch = user_ids[start:start + batch_size]
            for user_id in batch:
                try:
                    with self.db.begin_nested():
                        self.store.add(self._build(user_id, type, title, message, data, priority, None))
                    result.sent_count += 1
                except Exception as e:
                    logger.warning(f"Broadcast to user {user_id} failed: {e}")
                    result.failures.append((user_id, str(e)))
            self.db.commit()

        logger.info(
            f"Broadcast '{title}' sent to {result.sent_count}/{len(user_ids)} users"
            + (f" ({result.failed_count} failed)" if result.failures else "")
        )
        return result

    def mark_read(self, user_id: str, notification_ids: Optional[List[str]] = None) -> int:
        return self.store.mark_read(user_id, notification_ids, datetime.utcnow())

    def unread_count(self, user_id: str) -> int:
        return self.store.count_unread(user_id)

    def list(
        self,
        user_id: str,
        page: int = 1,
        limit: Optional[int] = None,
        unread_only: bool = False,
        type=None,
        priority=None,
    ) -> NotificationPage:
        page = max(1, page)
        limit = limit or self.settings.default_page_size
        limit = max(1, min(limit, self.settings.max_page_size))
        type = _coerce_enum(NotificationType, type, "notification type") if type else None
        priority = _coerce_enum(Priority, priority, "priority") if priority else None

        rows, total = self.store.page_for_user(
            user_id, page, limit, unread_only=unread_only, type=type, priority=priority
        )
        return NotificationPage(
            notifications=rows,
            page=page,
            limit=limit,
            total=total,
            unread_count=self.store.count_unread(user_id),
        )

    def delete(self, user_id: str, notification_id: str) -> None:
        notification = self.store.get_for_user(user_id, notification_id)
        if not notification:
            raise NotFound("Notification not found")
        self.store.delete(notification)

    def cleanup(self, now: Optional[datetime] = None, days_old: Optional[int] = None) -> dict:
        """Remove expired notifications and read ones older than ``days_old``."""
        now = now or datetime.utcnow()
        days_old = days_old if days_old is not None else self.settings.notification_retention_days
        expired = self.store.delete_expired(now)
        old_read = self.store.delete_read_before(now - timedelta(days=days_old))
        if expired or old_read:
            logger.info(f"Notification cleanup removed {expired} expired and {old_read} old read")
        return {"expired": expired, "old_read": old_read}
