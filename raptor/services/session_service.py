"""Access/refresh token lifecycle.

Per token pair: ISSUED -> ACTIVE -> EXPIRED | REVOKED.
Access tokens expire by clock only and are revoked by blacklisting their jti.
Refresh tokens expire against their stored ``expires_at`` and are revoked by
flipping ``is_revoked``. Every public method that writes is its own transaction.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from raptor.core.config import SessionConfig
from raptor.core.constants import RevocationReason
from raptor.core.security import TokenCodec, hash_token
from raptor.models.refresh_token import RefreshToken
from raptor.stores.revocation_store import RevocationStore
from raptor.stores.user_directory import UserDirectory
from raptor.utils.errors import (
    InvalidTokenError, PersistenceError, SessionError, UserNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class UserPrincipal:
    """Authenticated caller derived from a valid access token."""

    user_id: str
    email: Optional[str]
    roles: List[str] = field(default_factory=list)
    jti: Optional[str] = None

    def has_role(self, role: str) -> bool:
        return role in self.roles


class SessionService:
    def __init__(
        self,
        db: Session,
        config: SessionConfig,
        codec: Optional[TokenCodec] = None,
        users: Optional[UserDirectory] = None,
        store: Optional[RevocationStore] = None,
    ):
        self.db = db
        self.config = config
        self.codec = codec or TokenCodec(config)
        self.users = users or UserDirectory(db)
        self.store = store or RevocationStore(db)

    def _now(self) -> datetime:
        return self.codec.clock().astimezone(timezone.utc).replace(tzinfo=None)

    def _access_token_for(self, user_id: str) -> str:
        user = self.users.find_by_id(user_id)
        if not user:
            raise UserNotFoundError("User not found")
        role_names = [role.role_name for role in self.users.find_roles_by_user_id(user.id)]
        return self.codec.issue_access_token(user.id, user.email, role_names)

    def _store_new_refresh_token(
        self, user_id: str, ip_address: Optional[str], user_agent: Optional[str]
    ) -> str:
        raw = self.codec.issue_refresh_token()
        self.store.store_refresh_token(
            user_id=user_id,
            token_hash=hash_token(raw),
            expires_at=self._now() + self.config.refresh_token_ttl,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return raw

    def generate_token_pair(
        self,
        user_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenPair:
        """Issue an access token and a persisted refresh token for the user.

        Nothing is returned unless the refresh token row is committed.
        """
        access_token = self._access_token_for(user_id)
        try:
            refresh_token = self._store_new_refresh_token(user_id, ip_address, user_agent)
            self.db.commit()
        except (PersistenceError, SQLAlchemyError) as e:
            self.db.rollback()
            logger.error(f"Failed to persist refresh token for user {user_id}: {e}")
            if isinstance(e, PersistenceError):
                raise
            raise PersistenceError("Failed to persist refresh token") from e

        logger.info(f"Issued token pair for user {user_id}")
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def check_refresh_token(self, raw_refresh_token: str) -> RefreshToken:
        """Return the stored row for a usable refresh token, without side effects."""
        if not raw_refresh_token:
            raise SessionError(SessionError.INVALID)

        stored = self.store.find_refresh_token_by_hash(hash_token(raw_refresh_token))
        if stored is None:
            raise SessionError(SessionError.INVALID)
        if stored.is_revoked:
            raise SessionError(SessionError.REVOKED)
        if self._now() >= stored.expires_at:
            raise SessionError(SessionError.EXPIRED)
        return stored

    def refresh_access_token(
        self,
        raw_refresh_token: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenPair:
        """Exchange a refresh token for a fresh access token.

        Roles and email are re-read so role changes apply on the next refresh.
        Without rotation the same refresh token comes back. With rotation the old
        row is revoked by a guarded update and only the caller that wins it gets
        a new refresh token.
        """
        stored = self.check_refresh_token(raw_refresh_token)
        owner = self.users.find_by_id(stored.user_id)
        if owner is not None and not owner.is_active:
            logger.warning(f"Refresh refused for deactivated user {owner.id}, revoking their sessions")
            self.revoke_all_refresh_tokens_for_user(owner.id, RevocationReason.ADMIN_ACTION.value)
            raise SessionError(SessionError.REVOKED, "User account is deactivated")
        try:
            access_token = self._access_token_for(stored.user_id)
        except UserNotFoundError:
            raise SessionError(SessionError.INVALID, "Refresh token owner no longer exists")

        now = self._now()
        refresh_token = raw_refresh_token
        try:
            self.store.touch_refresh_token(stored.id, now)
            if self.config.rotate_refresh_tokens:
                if not self.store.revoke_refresh_token(stored.id, now, RevocationReason.ROTATED.value):
                    self.db.rollback()
                    raise SessionError(SessionError.REVOKED)
                refresh_token = self._store_new_refresh_token(stored.user_id, ip_address, user_agent)
            self.db.commit()
        except (PersistenceError, SQLAlchemyError) as e:
            self.db.rollback()
            logger.error(f"Failed to record refresh for token {stored.id}: {e}")
            if isinstance(e, PersistenceError):
                raise
            raise PersistenceError("Failed to record refresh") from e

        logger.info(f"Refreshed access token for user {stored.user_id}")
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def validate_access_token(self, access_token: str) -> bool:
        """True only for a well-signed, unexpired, non-blacklisted token. Never raises."""
        return self.authenticate(access_token) is not None

    def authenticate(self, access_token: Optional[str]) -> Optional[UserPrincipal]:
        if not access_token:
            return None
        try:
            claims = self.codec.verify_and_parse(access_token)
            if self.store.is_access_token_blacklisted(claims["jti"]):
                logger.info(f"Rejected blacklisted access token {claims['jti']}")
                return None
        except InvalidTokenError as e:
            logger.debug(f"Access token rejected: {e}")
            return None
        except SQLAlchemyError as e:
            logger.error(f"Blacklist lookup failed, treating token as invalid: {e}")
            return None

        return UserPrincipal(
            user_id=claims["sub"],
            email=claims.get("email"),
            roles=list(claims.get("roles") or []),
            jti=claims["jti"],
        )

    def revoke_access_token(
        self,
        access_token: str,
        reason: str = RevocationReason.LOGOUT.value,
        revoked_by: Optional[str] = None,
    ) -> bool:
        """Blacklist the token's jti until its original expiry. Best effort."""
        try:
            claims = self.codec.verify_and_parse(access_token)
        except InvalidTokenError as e:
            logger.warning(f"Failed to revoke access token: {e}")
            return False

        original_expiry = datetime.fromtimestamp(claims["exp"], tz=timezone.utc).replace(tzinfo=None)
        try:
            inserted = self.store.blacklist_access_token(
                jti=claims["jti"],
                user_id=claims["sub"],
                original_expiry=original_expiry,
                reason=reason,
                revoked_by=revoked_by,
            )
            self.db.commit()
        except (PersistenceError, SQLAlchemyError) as e:
            self.db.rollback()
            logger.error(f"Failed to blacklist access token {claims['jti']}: {e}")
            return False

        if inserted:
            logger.info(f"Revoked access token {claims['jti']} for user {claims['sub']} ({reason})")
        return inserted

    def revoke_refresh_token(
        self, raw_refresh_token: str, reason: str = RevocationReason.LOGOUT.value
    ) -> bool:
        """Revoke one refresh token. Returns True only if this call revoked it."""
        if not raw_refresh_token:
            return False
        try:
            stored = self.store.find_refresh_token_by_hash(hash_token(raw_refresh_token))
            if stored is None:
                return False
            flipped = self.store.revoke_refresh_token(stored.id, self._now(), reason)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to revoke refresh token: {e}")
            return False

        if flipped:
            logger.info(f"Revoked refresh token {stored.id} for user {stored.user_id} ({reason})")
        return flipped

    def revoke_all_refresh_tokens_for_user(
        self, user_id: str, reason: str = RevocationReason.ADMIN_ACTION.value
    ) -> int:
        try:
            count = self.store.revoke_all_refresh_tokens_for_user(user_id, self._now(), reason)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to revoke refresh tokens for user {user_id}") from e

        logger.info(f"Revoked {count} refresh token(s) for user {user_id} ({reason})")
        return count

    def deactivate_user(self, user_id: str) -> int:
        """Soft-delete the user and revoke their refresh tokens in one transaction.

        Returns the number of refresh tokens revoked. Access tokens already out
        stay valid until they expire.
        """
        try:
            if not self.users.set_active(user_id, False):
                raise UserNotFoundError("User not found")
            count = self.store.revoke_all_refresh_tokens_for_user(
                user_id, self._now(), RevocationReason.ADMIN_ACTION.value
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to deactivate user {user_id}") from e

        logger.info(f"Deactivated user {user_id}, revoked {count} refresh token(s)")
        return count

    def activate_user(self, user_id: str) -> None:
        try:
            if not self.users.set_active(user_id, True):
                raise UserNotFoundError("User not found")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to activate user {user_id}") from e
        logger.info(f"Activated user {user_id}")

    def cleanup_expired_tokens(self, now: Optional[datetime] = None) -> dict:
        """Delete refresh tokens and blacklist rows that are past expiry."""
        cutoff = now or self._now()
        if cutoff.tzinfo is not None:
            cutoff = cutoff.astimezone(timezone.utc).replace(tzinfo=None)
        try:
            refresh_deleted = self.store.purge_expired_refresh_tokens(cutoff)
            blacklist_deleted = self.store.purge_expired_blacklist_entries(cutoff)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("Token cleanup failed") from e

        logger.info(
            f"Token cleanup removed {refresh_deleted} refresh token(s) "
            f"and {blacklist_deleted} blacklist entr(ies)"
        )
        return {"refresh_tokens": refresh_deleted, "revoked_tokens": blacklist_deleted}
