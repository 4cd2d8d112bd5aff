import math
from typing import Optional

from fastapi import Depends, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.models.user import User
from app.services.errors import Unauthenticated
from app.services.users import UserDirectory

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token against the user directory."""
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Access denied. No token provided.")

    user = UserDirectory(db).get_by_token(credentials.credentials)
    if user is None:
        raise Unauthenticated("Invalid token.")
    if not user.is_active:
        raise Unauthenticated("User account is deactivated.")
    return user


class Pagination:
    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: Optional[int] = Query(None, ge=1),
    ):
        settings = get_settings()
        self.page = page
        self.limit = min(limit or settings.default_page_size, settings.max_page_size)

    def describe(self, total: int) -> dict:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": total,
            "pages": math.ceil(total / self.limit),
        }
