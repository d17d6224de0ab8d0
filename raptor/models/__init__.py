"""SQLAlchemy models for users, roles and session tokens."""

__all__ = [
    "base",
    "user",
    "refresh_token",
    "revoked_token",
]
