from typing import Optional
from sqlalchemy.orm import Session

from app.models.user import User, UserRole


class UserDirectory:
    """Read-only lookups against the account directory."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        return self.db.query(User).filter(User.id == user_id).first()

    def get_by_token(self, token: str) -> Optional[User]:
        if not token:
            return None
        return self.db.query(User).filter(User.api_token == token).first()

    def exists(self, user_id: str) -> bool:
        return self.get(user_id) is not None

    def find_ids_by_roles(self, roles: Optional[list[UserRole]] = None) -> list[str]:
        """Ids of active users holding any of ``roles`` (all active users if empty)."""
        query = self.db.query(User.id).filter(User.is_active == True)
        if roles:
            query = query.filter(User.role.in_(roles))
        return [row[0] for row in query.order_by(User.created_at, User.id).all()]
