"""Blacklisted access tokens, kept until the token would have expired anyway."""
from sqlalchemy import Column, String, DateTime
from raptor.core.database import Base
from raptor.models.base import IDMixin, utcnow


class RevokedToken(IDMixin, Base):
    __tablename__ = "revoked_tokens"

    jti = Column(String(255), unique=True, index=True, nullable=False)
    # no FK: entries must outlive the user row
    user_id = Column(String(36), nullable=False, index=True)

    revoked_at = Column(DateTime, default=utcnow, nullable=False)
    # Original expiry of the access token
    expires_at = Column(DateTime, nullable=False, index=True)
    reason = Column(String(255), nullable=True)
    revoked_by = Column(String(255), nullable=True)
