from sqlalchemy import Column, String, DateTime, Boolean, Enum as SQLEnum
from sqlalchemy.sql import func
from app.database import Base
import enum
import uuid


class UserRole(enum.Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    HOTEL_OWNER = "hotel_owner"
    ADMIN = "admin"


STAFF_ROLES = {UserRole.STAFF, UserRole.ADMIN}


class User(Base):
    """Directory entry for an account.

    Accounts are owned by the identity service; this table mirrors the
    fields the trip desk needs for role checks and notification targeting.
    """
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)

    name = Column(String(128), nullable=False)
    email = Column(String(256), nullable=False, unique=True)
    phone = Column(String(32), nullable=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.CUSTOMER, index=True)

    api_token = Column(String(128), nullable=True, unique=True, index=True)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, server_default=func.now())

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
