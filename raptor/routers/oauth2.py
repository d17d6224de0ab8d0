"""OIDC authorization code flow: redirect to the provider and handle the callback.

Errors never surface as JSON here; the browser is always redirected back to the
frontend, to ``/login?error=<code>`` on failure.
"""
import hmac
import logging
import secrets
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse

from raptor.core.config import SessionConfig, settings
from raptor.core.constants import (
    ACCESS_TOKEN_COOKIE, OAUTH_NONCE_COOKIE, OAUTH_STATE_COOKIE, OAUTH_STATE_MAX_AGE,
    REFRESH_TOKEN_COOKIE,
)
from raptor.dependencies.auth import (
    get_oidc_client, get_oidc_service, get_session_config, get_session_service,
)
from raptor.dependencies.rate_limit import rate_limit
from raptor.services.oidc_client import OidcClient
from raptor.services.oidc_service import OidcService, load_principal
from raptor.services.session_service import SessionService
from raptor.utils.errors import (
    InvalidTokenError, OidcProviderError, OidcStateError, PersistenceError, ProvisioningError,
)
from raptor.utils.helpers import get_client_ip, get_user_agent, set_auth_cookie

logger = logging.getLogger(__name__)

router = APIRouter(tags=["authentication"])


def _frontend_redirect(path: str, **params) -> RedirectResponse:
    url = settings.FRONTEND_URL.rstrip("/") + path
    if params:
        url = f"{url}?{urlencode(params)}"
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


def _login_error(code: str) -> RedirectResponse:
    response = _frontend_redirect("/login", error=code)
    _clear_flow_cookies(response)
    return response


def _set_flow_cookie(response: RedirectResponse, name: str, value: str) -> None:
    response.set_cookie(
        key=name,
        value=value,
        max_age=OAUTH_STATE_MAX_AGE,
        path="/",
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite="lax",
    )


def _clear_flow_cookies(response: RedirectResponse) -> None:
    for name in (OAUTH_STATE_COOKIE, OAUTH_NONCE_COOKIE):
        response.delete_cookie(name, path="/")


def _check_registration(registration_id: str, client: OidcClient) -> None:
    if registration_id != settings.OIDC_REGISTRATION_ID or not client.configured:
        raise HTTPException(status_code=404, detail=f"Unknown OIDC registration '{registration_id}'")


def _verify_state(request: Request, state: str | None) -> str | None:
    """Return the nonce bound to this login attempt."""
    expected = request.cookies.get(OAUTH_STATE_COOKIE)
    if not state or not expected or not hmac.compare_digest(state, expected):
        raise OidcStateError("OAuth state mismatch")
    return request.cookies.get(OAUTH_NONCE_COOKIE)


@router.get("/oauth2/authorization/{registration_id}")
async def start_authorization(
    registration_id: str,
    client: OidcClient = Depends(get_oidc_client),
    _: None = Depends(rate_limit),
):
    _check_registration(registration_id, client)

    state = secrets.token_urlsafe(32)
    nonce = secrets.token_urlsafe(32)
    try:
        url = await client.authorization_url(state, nonce)
    except OidcProviderError:
        return _login_error("provider_unavailable")

    response = RedirectResponse(url, status_code=status.HTTP_302_FOUND)
    _set_flow_cookie(response, OAUTH_STATE_COOKIE, state)
    _set_flow_cookie(response, OAUTH_NONCE_COOKIE, nonce)
    return response


@router.get("/login/oauth2/code/{registration_id}")
async def authorization_callback(
    registration_id: str,
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    client: OidcClient = Depends(get_oidc_client),
    oidc_service: OidcService = Depends(get_oidc_service),
    sessions: SessionService = Depends(get_session_service),
    config: SessionConfig = Depends(get_session_config),
):
    """
    Finish the login:
    1. check state and exchange the code
    2. validate the ID token and map its claims to a principal
    3. provision the user and sync roles
    4. issue the token pair as http-only cookies and redirect to the frontend
    """
    _check_registration(registration_id, client)

    if error:
        logger.warning(f"OIDC provider returned error on callback: {error}")
        return _login_error("authentication_failed")

    try:
        nonce = _verify_state(request, state)
    except OidcStateError as e:
        logger.warning(f"OIDC callback rejected: {e}")
        return _login_error("invalid_state")
    if not code:
        return _login_error("authentication_failed")

    try:
        token_response = await client.exchange_code(code)
        claims = await client.verify_id_token(
            token_response["id_token"],
            nonce=nonce,
            access_token=token_response.get("access_token"),
        )
    except OidcProviderError as e:
        logger.error(f"OIDC provider unavailable during callback: {e}")
        return _login_error("provider_unavailable")
    except InvalidTokenError as e:
        logger.warning(f"ID token rejected: {e}")
        return _login_error("invalid_id_token")

    principal = load_principal(claims)
    try:
        user = oidc_service.provision_user(principal)
    except ProvisioningError as e:
        logger.error(f"User provisioning rejected: {e}")
        return _login_error("provisioning_failed")

    if user is None:
        logger.error(f"No local user available for OIDC subject {principal.subject}")
        return _login_error("provisioning_failed")
    if not user.is_active:
        logger.warning(f"Login refused for disabled user {user.id}")
        return _login_error("account_disabled")

    try:
        tokens = sessions.generate_token_pair(
            user.id,
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
        )
    except (PersistenceError, HTTPException) as e:
        logger.error(f"Could not issue tokens for user {user.id}: {e}")
        return _login_error("authentication_failed")

    logger.info(f"OIDC login successful for user {user.email} (ID: {user.id})")
    response = _frontend_redirect("/auth-callback")
    set_auth_cookie(response, ACCESS_TOKEN_COOKIE, tokens.access_token, config.access_token_max_age)
    set_auth_cookie(response, REFRESH_TOKEN_COOKIE, tokens.refresh_token, config.refresh_token_max_age)
    _clear_flow_cookies(response)
    return response
