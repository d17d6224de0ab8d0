"""Application constants such as role names, cookie names and revocation reasons."""
from enum import Enum


ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"
OAUTH_STATE_COOKIE = "oauth_state"
OAUTH_NONCE_COOKIE = "oauth_nonce"
OAUTH_STATE_MAX_AGE = 600

LOGIN_URL = "/auth/login"
ROLE_PREFIX = "ROLE_"


class RoleName(str, Enum):
    USER = "USER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"
    EXTERNAL_USER = "EXTERNAL_USER"


class RevocationReason(str, Enum):
    LOGOUT = "LOGOUT"
    ADMIN_ACTION = "ADMIN_ACTION"
    SECURITY_BREACH = "SECURITY_BREACH"
    ROTATED = "ROTATED"


class GrantedBy(str, Enum):
    OIDC_SYNC = "OIDC_SYNC"
