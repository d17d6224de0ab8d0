from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from raptor.core.config import SessionConfig, settings
from raptor.core.constants import (
    ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, LOGIN_URL, RevocationReason,
)
from raptor.dependencies.auth import (
    get_current_principal, get_optional_principal, get_session_config, get_session_service,
)
from raptor.dependencies.rate_limit import rate_limit
from raptor.schemas.auth import (
    LoginInfoResponse, ReauthRequiredResponse, RefreshResponse,
    SessionCheckResponse, UserInfoResponse,
)
from raptor.schemas.common import SuccessResponse
from raptor.services.session_service import SessionService, UserPrincipal
from raptor.utils.errors import SessionError, UserNotFoundError
from raptor.utils.helpers import (
    clear_auth_cookies, get_access_token, get_client_ip, get_refresh_token,
    get_user_agent, set_auth_cookie,
)
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _reauth_response(message: str, reason: str | None = None) -> JSONResponse:
    body = ReauthRequiredResponse(message=message, login_url=LOGIN_URL, reason=reason)
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


def _user_info(sessions: SessionService, principal: UserPrincipal) -> UserInfoResponse:
    user = sessions.users.find_by_id(principal.user_id)
    if user is None:
        raise UserNotFoundError("User not found")
    return UserInfoResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        oidc_subject=user.oidc_subject,
        roles=principal.roles,
        is_active=user.is_active,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
    )


@router.get("/login", response_model=LoginInfoResponse)
async def login():
    """
    Where to send the browser to start the OIDC authorization code flow.
    The redirect itself is served by /oauth2/authorization/{registration_id}.
    """
    return LoginInfoResponse(
        authorization_url=f"/oauth2/authorization/{settings.OIDC_REGISTRATION_ID}",
    )


@router.post("/refresh", response_model=RefreshResponse, responses={401: {"model": ReauthRequiredResponse}})
async def refresh_token(
    request: Request,
    config: SessionConfig = Depends(get_session_config),
    sessions: SessionService = Depends(get_session_service),
    _: None = Depends(rate_limit),
):
    """
    Exchange the refresh-token cookie for a new access-token cookie.

    With ALLOW_SILENT_REFRESH disabled this always answers 401 with
    requiresReauth=true so the user goes back through the OIDC provider.
    """
    if not config.allow_silent_refresh:
        return _reauth_response("Session expired. Please login again.")

    raw_refresh_token = get_refresh_token(request)
    if not raw_refresh_token:
        return _reauth_response("Refresh token not found. Please login again.", SessionError.INVALID)

    try:
        tokens = sessions.refresh_access_token(
            raw_refresh_token,
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
        )
    except SessionError as e:
        logger.info(f"Refresh rejected: {e.reason}")
        return _reauth_response(str(e), e.reason)

    response = JSONResponse(
        content=RefreshResponse(expires_in=config.access_token_max_age).model_dump(by_alias=True)
    )
    set_auth_cookie(response, ACCESS_TOKEN_COOKIE, tokens.access_token, config.access_token_max_age)
    if tokens.refresh_token != raw_refresh_token:
        set_auth_cookie(response, REFRESH_TOKEN_COOKIE, tokens.refresh_token, config.refresh_token_max_age)
    return response


@router.post("/logout", response_model=SuccessResponse)
async def logout(
    request: Request,
    principal: UserPrincipal | None = Depends(get_optional_principal),
    sessions: SessionService = Depends(get_session_service),
    _: None = Depends(rate_limit),
):
    """Revoke both tokens (best effort) and clear the auth cookies."""
    access_token = get_access_token(request)
    raw_refresh_token = get_refresh_token(request)
    revoked_by = principal.user_id if principal else None

    if access_token:
        sessions.revoke_access_token(access_token, RevocationReason.LOGOUT.value, revoked_by=revoked_by)
    if raw_refresh_token:
        sessions.revoke_refresh_token(raw_refresh_token, RevocationReason.LOGOUT.value)

    response = JSONResponse(content=SuccessResponse(message="Logout successful").model_dump(exclude_none=True))
    clear_auth_cookies(response)
    return response


@router.get("/user", response_model=UserInfoResponse)
async def current_user(
    principal: UserPrincipal = Depends(get_current_principal),
    sessions: SessionService = Depends(get_session_service),
):
    """Current user from the access-token cookie."""
    return _user_info(sessions, principal)


@router.get("/check", response_model=SessionCheckResponse, responses={401: {"model": SessionCheckResponse}})
async def check_session(
    request: Request,
    principal: UserPrincipal | None = Depends(get_optional_principal),
    config: SessionConfig = Depends(get_session_config),
    sessions: SessionService = Depends(get_session_service),
):
    """
    Session status for the frontend:
    - access token valid -> carry on
    - access token invalid, refresh token usable -> call /auth/refresh, or
      re-authenticate when silent refresh is disabled
    - neither -> go to the OIDC login
    """
    if principal is not None:
        try:
            user = _user_info(sessions, principal)
        except UserNotFoundError:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"authenticated": False, "error": "User not found"},
            )
        return SessionCheckResponse(
            authenticated=True,
            access_token_valid=True,
            requires_reauth=False,
            user=user,
        )

    raw_refresh_token = get_refresh_token(request)
    if raw_refresh_token:
        try:
            sessions.check_refresh_token(raw_refresh_token)
            body = SessionCheckResponse(
                authenticated=False,
                access_token_valid=False,
                refresh_token_valid=True,
                requires_reauth=not config.allow_silent_refresh,
                message=(
                    "Access token expired. Please refresh."
                    if config.allow_silent_refresh
                    else "Access token expired. Please re-authenticate."
                ),
                login_url=LOGIN_URL,
            )
        except SessionError as e:
            body = SessionCheckResponse(
                authenticated=False,
                access_token_valid=False,
                refresh_token_valid=False,
                requires_reauth=True,
                message=f"Session expired ({e.reason}). Please login.",
                login_url=LOGIN_URL,
            )
    else:
        body = SessionCheckResponse(
            authenticated=False,
            access_token_valid=False,
            refresh_token_valid=False,
            requires_reauth=True,
            message="Not authenticated. Please login.",
            login_url=LOGIN_URL,
        )

    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )
