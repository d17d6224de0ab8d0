"""Admin endpoints."""
from fastapi import APIRouter, Depends, HTTPException
from raptor.dependencies.auth import get_current_admin, get_session_service
from raptor.dependencies.rate_limit import rate_limit
from raptor.schemas.auth import RevokeAccessTokenRequest, RevokeSessionsResponse, UserStatusResponse
from raptor.schemas.common import SuccessResponse
from raptor.services.session_service import SessionService, UserPrincipal
from raptor.utils.errors import PersistenceError, UserNotFoundError

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/users/{user_id}/revoke-sessions", response_model=RevokeSessionsResponse)
async def revoke_user_sessions(
    user_id: str,
    current_admin: UserPrincipal = Depends(get_current_admin),
    sessions: SessionService = Depends(get_session_service),
    _: None = Depends(rate_limit),
):
    """Revoke every refresh token the user holds; their access tokens run out on their own."""
    if sessions.users.find_by_id(user_id) is None:
        raise UserNotFoundError()
    try:
        count = sessions.revoke_all_refresh_tokens_for_user(user_id)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return RevokeSessionsResponse(user_id=user_id, revoked_refresh_tokens=count)


@router.post("/tokens/revoke", response_model=SuccessResponse)
async def revoke_access_token(
    payload: RevokeAccessTokenRequest,
    current_admin: UserPrincipal = Depends(get_current_admin),
    sessions: SessionService = Depends(get_session_service),
):
    if not sessions.revoke_access_token(payload.token, payload.reason, revoked_by=current_admin.user_id):
        raise HTTPException(status_code=400, detail="Token is invalid or already revoked")
    return SuccessResponse(message="Access token revoked")


@router.put("/users/{user_id}/deactivate", response_model=UserStatusResponse)
async def deactivate_user(
    user_id: str,
    current_admin: UserPrincipal = Depends(get_current_admin),
    sessions: SessionService = Depends(get_session_service),
):
    """Soft-delete the user. Their refresh tokens are revoked; new logins are refused."""
    if user_id == current_admin.user_id:
        raise HTTPException(status_code=400, detail="Admins cannot deactivate themselves")
    try:
        count = sessions.deactivate_user(user_id)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return UserStatusResponse(user_id=user_id, is_active=False, revoked_refresh_tokens=count)


@router.put("/users/{user_id}/activate", response_model=UserStatusResponse)
async def activate_user(
    user_id: str,
    current_admin: UserPrincipal = Depends(get_current_admin),
    sessions: SessionService = Depends(get_session_service),
):
    try:
        sessions.activate_user(user_id)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return UserStatusResponse(user_id=user_id, is_active=True)
