from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional
from datetime import datetime


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginInfoResponse(CamelModel):
    """Where the browser should go to start the OIDC flow"""
    message: str = "Redirecting to OIDC provider..."
    authorization_url: str


class UserInfoResponse(CamelModel):
    id: str
    email: str
    full_name: Optional[str] = None
    oidc_subject: str
    roles: List[str] = []
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class SessionCheckResponse(CamelModel):
    authenticated: bool
    access_token_valid: bool
    refresh_token_valid: Optional[bool] = None
    requires_reauth: bool
    message: Optional[str] = None
    login_url: Optional[str] = None
    user: Optional[UserInfoResponse] = None


class RefreshResponse(CamelModel):
    success: bool = True
    message: str = "Token refreshed successfully"
    expires_in: int  # seconds


class ReauthRequiredResponse(CamelModel):
    """401 body telling the frontend to send the user back through OIDC"""
    success: bool = False
    message: str
    requires_reauth: bool = True
    login_url: str
    reason: Optional[str] = None


class RevokeAccessTokenRequest(CamelModel):
    token: str = Field(..., min_length=1)
    reason: str = Field("ADMIN_ACTION", pattern="^(ADMIN_ACTION|SECURITY_BREACH)$")


class RevokeSessionsResponse(CamelModel):
    success: bool = True
    user_id: str
    revoked_refresh_tokens: int


class UserStatusResponse(CamelModel):
    success: bool = True
    user_id: str
    is_active: bool
    revoked_refresh_tokens: int = 0
