"""Maps verified ID-token claims to a principal and a provisioned local user.

The identity provider's role claims are the source of truth: on every login
the user's role assignments are cleared and re-inserted from the claims, inside
the same transaction as the user upsert.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from raptor.core.config import settings
from raptor.core.constants import GrantedBy, ROLE_PREFIX
from raptor.models.base import utcnow
from raptor.models.user import User
from raptor.stores.user_directory import UserDirectory
from raptor.utils.errors import ProvisioningError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OidcPrincipal:
    subject: Optional[str]
    email: Optional[str]
    preferred_username: Optional[str]
    name: Optional[str]
    authorities: List[str] = field(default_factory=list)
    claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def role_names(self) -> List[str]:
        """Authorities without the ROLE_ prefix, as stored in the roles table."""
        return [
            a[len(ROLE_PREFIX):] if a.startswith(ROLE_PREFIX) else a
            for a in self.authorities
        ]

    @property
    def display_name(self) -> Optional[str]:
        for candidate in (self.name, self.preferred_username, self.email):
            if candidate and candidate.strip():
                return candidate.strip()
        return None


def _as_role_list(value) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [r for r in value if isinstance(r, str) and r.strip()]


def extract_authorities(claims: Dict[str, Any], fallback_role: Optional[str] = None) -> List[str]:
    """Read realm roles and per-client roles; upper-case and ROLE_-prefix them.

    Falls back to a single configured role when the token carries none.
    """
    found: List[str] = []

    realm_access = claims.get("realm_access")
    if isinstance(realm_access, dict):
        found.extend(_as_role_list(realm_access.get("roles")))

    resource_access = claims.get("resource_access")
    if isinstance(resource_access, dict):
        for client, access in resource_access.items():
            if isinstance(access, dict):
                client_roles = _as_role_list(access.get("roles"))
                logger.debug(f"Client {client} granted roles {client_roles}")
                found.extend(client_roles)

    authorities: List[str] = []
    for role in found:
        authority = ROLE_PREFIX + role.strip().upper()
        if authority not in authorities:
            authorities.append(authority)

    if not authorities:
        fallback = (fallback_role or settings.OIDC_FALLBACK_ROLE).upper()
        logger.warning(f"No role claims in ID token, assigning fallback role {fallback}")
        authorities.append(ROLE_PREFIX + fallback)
    return authorities


def load_principal(claims: Dict[str, Any], fallback_role: Optional[str] = None) -> OidcPrincipal:
    logger.info(
        f"Loading OIDC principal from ID token claims "
        f"(sub={claims.get('sub')}, preferred_username={claims.get('preferred_username')})"
    )
    return OidcPrincipal(
        subject=claims.get("sub"),
        email=claims.get("email"),
        preferred_username=claims.get("preferred_username"),
        name=claims.get("name"),
        authorities=extract_authorities(claims, fallback_role),
        claims=dict(claims),
    )


class OidcService:
    def __init__(self, db: Session, users: Optional[UserDirectory] = None):
        self.db = db
        self.users = users or UserDirectory(db)

    def provision_user(self, principal: OidcPrincipal) -> Optional[User]:
        """Create or update the local user for ``principal`` and sync its roles.

        Raises ProvisioningError when the subject is missing, or when a new user
        would be created without an email. Database failures are logged and do
        not raise: the previously stored user is returned if it can still be
        read, otherwise None.
        """
        if not principal.subject:
            raise ProvisioningError("ID token is missing the required 'sub' claim")

        try:
            user = self._upsert_user(principal)
            self._sync_roles(user, principal.role_names)
            self.db.commit()
        except ProvisioningError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"User provisioning failed for subject {principal.subject}: {e}")
            return self._stale_user(principal.subject)

        logger.info(f"User provisioned: {user.email} (ID: {user.id})")
        return user

    def _upsert_user(self, principal: OidcPrincipal) -> User:
        now = utcnow()
        user = self.users.find_by_oidc_subject(principal.subject)

        if user is None:
            if not principal.email:
                raise ProvisioningError("ID token has no email claim; cannot create user")
            user = User(
                oidc_subject=principal.subject,
                email=principal.email,
                full_name=principal.display_name,
                is_active=True,
                last_login_at=now,
            )
            self.users.insert(user)
            logger.info(f"Created user for OIDC subject {principal.subject}")
            return user

        self.users.update_last_login(user.id, now)
        user.last_login_at = now

        name = principal.display_name
        email_changed = principal.email is not None and principal.email != user.email
        name_changed = name is not None and name != user.full_name
        if email_changed or name_changed:
            if email_changed:
                user.email = principal.email
            if name_changed:
                user.full_name = name
            self.users.update(user)
            logger.info(f"Updated profile for user {user.id} from OIDC claims")
        return user

    def _sync_roles(self, user: User, role_names: List[str]) -> None:
        self.users.clear_roles(user.id)
        for role_name in dict.fromkeys(role_names):
            role = self.users.find_role_by_name(role_name)
            if role is None:
                logger.warning(f"Role '{role_name}' from ID token not found in database, skipping")
                continue
            self.users.assign_role(user.id, role.id, GrantedBy.OIDC_SYNC.value)

    def _stale_user(self, subject: str) -> Optional[User]:
        try:
            return self.users.find_by_oidc_subject(subject)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not load existing user for subject {subject}: {e}")
            return None
