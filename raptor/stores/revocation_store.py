"""Refresh-token table and access-token blacklist.

Revocations are first-write-wins: an update only touches rows that are not
revoked yet, so a second revoke never moves ``revoked_at`` or the reason.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from raptor.models.refresh_token import RefreshToken
from raptor.models.revoked_token import RevokedToken
from raptor.utils.errors import PersistenceError


class RevocationStore:
    def __init__(self, db: Session):
        self.db = db

    # Refresh tokens

    def store_refresh_token(
        self,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> RefreshToken:
        row = RefreshToken(
            user_id=str(user_id),
            token_hash=token_hash,
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
            is_revoked=False,
        )
        try:
            self.db.add(row)
            self.db.flush()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to insert refresh token") from e
        if row.id is None:
            raise PersistenceError("Failed to insert refresh token")
        return row

    def find_refresh_token_by_hash(self, token_hash: str) -> Optional[RefreshToken]:
        return self.db.query(RefreshToken).filter(RefreshToken.token_hash == token_hash).first()

    def revoke_refresh_token(self, token_id: str, at: datetime, reason: str = "LOGOUT") -> bool:
        updated = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.id == token_id, RefreshToken.is_revoked == False)  # noqa: E712
            .update(
                {
                    RefreshToken.is_revoked: True,
                    RefreshToken.revoked_at: at,
                    RefreshToken.revoked_reason: reason,
                },
                synchronize_session="fetch",
            )
        )
        return updated == 1

    def revoke_all_refresh_tokens_for_user(self, user_id: str, at: datetime, reason: str) -> int:
        return (
            self.db.query(RefreshToken)
            .filter(RefreshToken.user_id == str(user_id), RefreshToken.is_revoked == False)  # noqa: E712
            .update(
                {
                    RefreshToken.is_revoked: True,
                    RefreshToken.revoked_at: at,
                    RefreshToken.revoked_reason: reason,
                },
                synchronize_session="fetch",
            )
        )

    def touch_refresh_token(self, token_id: str, at: datetime) -> None:
        self.db.query(RefreshToken).filter(RefreshToken.id == token_id).update(
            {RefreshToken.last_used_at: at}, synchronize_session="fetch"
        )

    def purge_expired_refresh_tokens(self, before: datetime) -> int:
        return (
            self.db.query(RefreshToken)
            .filter(RefreshToken.expires_at < before)
            .delete(synchronize_session=False)
        )

    # Access-token blacklist

    def blacklist_access_token(
        self,
        jti: str,
        user_id: str,
        original_expiry: datetime,
        reason: str,
        revoked_by: Optional[str] = None,
    ) -> bool:
        if self.is_access_token_blacklisted(jti):
            return False
        row = RevokedToken(
            jti=jti,
            user_id=str(user_id),
            expires_at=original_expiry,
            reason=reason,
            revoked_by=revoked_by,
        )
        try:
            self.db.add(row)
            self.db.flush()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to insert revoked token") from e
        return True

    def is_access_token_blacklisted(self, jti: str) -> bool:
        return self.db.query(RevokedToken.id).filter(RevokedToken.jti == jti).first() is not None

    def purge_expired_blacklist_entries(self, before: datetime) -> int:
        return (
            self.db.query(RevokedToken)
            .filter(RevokedToken.expires_at < before)
            .delete(synchronize_session=False)
        )
