from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session

from raptor.models.base import utcnow
from raptor.models.user import User, Role, UserRole


class UserDirectory:
    """User and role lookups/upserts for the auth core."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.id == str(user_id)).first()

    def find_by_oidc_subject(self, subject: str) -> Optional[User]:
        return self.db.query(User).filter(User.oidc_subject == subject).first()

    def find_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def insert(self, user: User) -> User:
        self.db.add(user)
        self.db.flush()
        return user

    def update(self, user: User) -> User:
        user.updated_at = utcnow()
        self.db.add(user)
        self.db.flush()
        return user

    def update_last_login(self, user_id: str, at: datetime) -> None:
        self.db.query(User).filter(User.id == str(user_id)).update(
            {User.last_login_at: at}, synchronize_session="fetch"
        )

    def set_active(self, user_id: str, active: bool) -> bool:
        updated = self.db.query(User).filter(User.id == str(user_id)).update(
            {User.is_active: active, User.updated_at: utcnow()}, synchronize_session="fetch"
        )
        return updated == 1

    def find_roles_by_user_id(self, user_id: str) -> List[Role]:
        return (
            self.db.query(Role)
            .join(UserRole, UserRole.role_id == Role.id)
            .filter(UserRole.user_id == str(user_id))
            .order_by(Role.role_name)
            .all()
        )

    def find_role_by_name(self, role_name: str) -> Optional[Role]:
        return self.db.query(Role).filter(Role.role_name == role_name).first()

    def assign_role(self, user_id: str, role_id: str, granted_by: str) -> UserRole:
        user_role = UserRole(user_id=str(user_id), role_id=role_id, granted_by=granted_by)
        self.db.add(user_role)
        self.db.flush()
        return user_role

    def clear_roles(self, user_id: str) -> int:
        deleted = (
            self.db.query(UserRole)
            .filter(UserRole.user_id == str(user_id))
            .delete(synchronize_session="fetch")
        )
        self.db.flush()
        return deleted
