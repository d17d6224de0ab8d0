from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from raptor.core.database import Base
from raptor.models.base import IDMixin, TimestampMixin, utcnow


class User(IDMixin, TimestampMixin, Base):
    __tablename__ = "users"

    # 'sub' claim from the OIDC provider, never changes for a person
    oidc_subject = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)

    # Soft delete
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    last_login_at = Column(DateTime, nullable=True)

    roles = relationship(
        "UserRole",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<User {self.email}>"


class Role(IDMixin, Base):
    __tablename__ = "roles"

    role_name = Column(String(50), unique=True, index=True, nullable=False)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Role {self.role_name}>"


class UserRole(IDMixin, Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role_id", name="uq_user_role"),)

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)
    granted_at = Column(DateTime, default=utcnow, nullable=False)
    # Who granted the role, for audit
    granted_by = Column(String(255), nullable=True)

    user = relationship("User", back_populates="roles")
    role = relationship("Role")
