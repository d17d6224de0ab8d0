from fastapi import Depends, Request
from sqlalchemy.orm import Session

from raptor.core.config import SessionConfig
from raptor.core.constants import RoleName
from raptor.core.database import get_db
from raptor.services.oidc_client import OidcClient
from raptor.services.oidc_service import OidcService
from raptor.services.session_service import SessionService, UserPrincipal
from raptor.utils.errors import Forbidden, Unauthorized


def get_session_config(request: Request) -> SessionConfig:
    return request.app.state.session_config


def get_oidc_client(request: Request) -> OidcClient:
    return request.app.state.oidc_client


def get_session_service(
    db: Session = Depends(get_db),
    config: SessionConfig = Depends(get_session_config),
) -> SessionService:
    return SessionService(db, config)


def get_oidc_service(db: Session = Depends(get_db)) -> OidcService:
    return OidcService(db)


def get_optional_principal(request: Request) -> UserPrincipal | None:
    return getattr(request.state, "principal", None)


async def get_current_principal(
    principal: UserPrincipal | None = Depends(get_optional_principal),
) -> UserPrincipal:
    """Authenticated principal set by JWTMiddleware, or 401 with a login hint."""
    if principal is None:
        raise Unauthorized("Not authenticated")
    return principal


def require_role(role: str):
    async def dependency(principal: UserPrincipal = Depends(get_current_principal)) -> UserPrincipal:
        if not principal.has_role(role):
            raise Forbidden(f"{role} role required")
        return principal

    return dependency


get_current_admin = require_role(RoleName.ADMIN.value)
