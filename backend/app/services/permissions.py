"""
Capability checks for trip desk operations.

Every state-changing service call goes through ``authorize`` before it
touches the database. Rules are keyed by action; each rule receives the
acting user and the resource (a TripRequest, Booking or Notification, or
None for collection-level actions).
"""
import logging
from enum import Enum
from typing import Callable

from app.models.user import User, UserRole
from app.services.errors import Forbidden

logger = logging.getLogger(__name__)


class Action(str, Enum):
    CREATE_TRIP_REQUEST = "create_trip_request"
    VIEW_TRIP_REQUEST = "view_trip_request"
    LIST_ALL_TRIP_REQUESTS = "list_all_trip_requests"
    VIEW_STATS = "view_stats"
    EDIT_TRIP_REQUEST = "edit_trip_request"
    UPDATE_STATUS = "update_status"
    ASSIGN = "assign"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    ADD_COMMUNICATION = "add_communication"
    DELETE_TRIP_REQUEST = "delete_trip_request"
    CREATE_BOOKING = "create_booking"
    VIEW_BOOKING = "view_booking"
    CONFIRM_PAYMENT = "confirm_payment"
    SEND_NOTIFICATION = "send_notification"
    BROADCAST_NOTIFICATION = "broadcast_notification"


def _is_staff(actor: User, resource=None) -> bool:
    return actor.is_staff


def _is_admin(actor: User, resource=None) -> bool:
    return actor.role == UserRole.ADMIN


def _is_owner(actor: User, resource) -> bool:
    return resource is not None and resource.user_id == actor.id


def _is_owner_or_staff(actor: User, resource) -> bool:
    return _is_staff(actor) or _is_owner(actor, resource)


def _is_owner_or_admin(actor: User, resource) -> bool:
    return _is_admin(actor) or _is_owner(actor, resource)


def _anyone(actor: User, resource=None) -> bool:
    return True


RULES: dict[Action, Callable[[User, object], bool]] = {
    Action.CREATE_TRIP_REQUEST: _anyone,
    Action.VIEW_TRIP_REQUEST: _is_owner_or_staff,
    Action.LIST_ALL_TRIP_REQUESTS: _is_staff,
    Action.VIEW_STATS: _is_staff,
    Action.EDIT_TRIP_REQUEST: _is_owner_or_staff,
    Action.UPDATE_STATUS: _is_staff,
    Action.ASSIGN: _is_staff,
    Action.APPROVE: _is_staff,
    Action.REJECT: _is_staff,
    Action.CANCEL: _is_owner_or_staff,
    Action.ADD_COMMUNICATION: _is_staff,
    Action.DELETE_TRIP_REQUEST: _is_owner_or_admin,
    Action.CREATE_BOOKING: _is_owner,
    Action.VIEW_BOOKING: _is_owner_or_staff,
    Action.CONFIRM_PAYMENT: _is_admin,
    Action.SEND_NOTIFICATION: _is_admin,
    Action.BROADCAST_NOTIFICATION: _is_admin,
}


def can(actor: User, action: Action, resource=None) -> bool:
    if actor is None or not actor.is_active:
        return False
    return RULES[action](actor, resource)


def authorize(actor: User, action: Action, resource=None) -> None:
    """Raise Forbidden unless ``actor`` may perform ``action`` on ``resource``."""
    if not can(actor, action, resource):
        logger.info(
            f"Denied {action.value} for user {getattr(actor, 'id', None)} "
            f"on {type(resource).__name__ if resource is not None else 'collection'}"
        )
        raise Forbidden(f"You are not allowed to {action.value.replace('_', ' ')}")
