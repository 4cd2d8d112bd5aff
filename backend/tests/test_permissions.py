"""Tests for the capability rules."""
import pytest

from app.models import TripRequest, User, UserRole
from app.services.errors import Forbidden
from app.services.permissions import Action, RULES, authorize, can


def _user(role, user_id="u1", active=True):
    return User(id=user_id, name=role.value, email=f"{user_id}@example.lk", role=role, is_active=active)


OWNER = _user(UserRole.CUSTOMER, "owner")
STRANGER = _user(UserRole.CUSTOMER, "stranger")
STAFF = _user(UserRole.STAFF, "staff")
ADMIN = _user(UserRole.ADMIN, "admin")
HOTEL_OWNER = _user(UserRole.HOTEL_OWNER, "hotel")
REQUEST = TripRequest(id="t1", user_id="owner")


def test_every_action_has_a_rule():
    assert set(RULES) == set(Action)


@pytest.mark.parametrize("action,allowed", [
    (Action.VIEW_TRIP_REQUEST, {"owner", "staff", "admin"}),
    (Action.EDIT_TRIP_REQUEST, {"owner", "staff", "admin"}),
    (Action.CANCEL, {"owner", "staff", "admin"}),
    (Action.DELETE_TRIP_REQUEST, {"owner", "admin"}),
    (Action.CREATE_BOOKING, {"owner"}),
    (Action.APPROVE, {"staff", "admin"}),
    (Action.REJECT, {"staff", "admin"}),
    (Action.ASSIGN, {"staff", "admin"}),
    (Action.ADD_COMMUNICATION, {"staff", "admin"}),
])
def test_resource_rules(action, allowed):
    for actor in (OWNER, STRANGER, STAFF, ADMIN, HOTEL_OWNER):
        assert can(actor, action, REQUEST) == (actor.id in allowed), (action, actor.id)


@pytest.mark.parametrize("action,allowed", [
    (Action.CREATE_TRIP_REQUEST, {"owner", "stranger", "staff", "admin", "hotel"}),
    (Action.LIST_ALL_TRIP_REQUESTS, {"staff", "admin"}),
    (Action.VIEW_STATS, {"staff", "admin"}),
    (Action.CONFIRM_PAYMENT, {"admin"}),
    (Action.SEND_NOTIFICATION, {"admin"}),
    (Action.BROADCAST_NOTIFICATION, {"admin"}),
])
def test_collection_rules(action, allowed):
    for actor in (OWNER, STRANGER, STAFF, ADMIN, HOTEL_OWNER):
        assert can(actor, action) == (actor.id in allowed), (action, actor.id)


def test_inactive_users_are_denied():
    inactive_admin = _user(UserRole.ADMIN, "admin2", active=False)
    assert not can(inactive_admin, Action.CREATE_TRIP_REQUEST)


def test_authorize_raises_forbidden():
    with pytest.raises(Forbidden) as exc:
        authorize(STRANGER, Action.VIEW_TRIP_REQUEST, REQUEST)
    assert exc.value.status_code == 403
    assert exc.value.message == "You are not allowed to view trip request"
