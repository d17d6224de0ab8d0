"""Custom error definitions for the auth core and API layer."""
from fastapi import HTTPException
from starlette import status

from raptor.core.constants import LOGIN_URL


class InvalidTokenError(Exception):
    """Token is malformed, badly signed, from another issuer, or expired."""


class SessionError(Exception):
    """Refresh token cannot be used. ``reason`` is one of invalid/revoked/expired."""

    INVALID = "invalid"
    REVOKED = "revoked"
    EXPIRED = "expired"

    _messages = {
        INVALID: "Invalid refresh token",
        REVOKED: "Refresh token has been revoked",
        EXPIRED: "Refresh token has expired",
    }

    def __init__(self, reason: str, message: str | None = None):
        if reason not in self._messages:
            raise ValueError(f"Unknown session error reason: {reason}")
        self.reason = reason
        super().__init__(message or self._messages[reason])


class PersistenceError(Exception):
    """Storage failure while issuing or revoking a credential."""


class ProvisioningError(Exception):
    """Identity claims are missing something authentication cannot proceed without."""


class OidcProviderError(Exception):
    """The identity provider was unreachable or returned an unusable response."""


class OidcStateError(Exception):
    """Callback state/nonce did not match the login attempt."""


class Unauthorized(HTTPException):
    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"success": False, "message": detail, "loginUrl": LOGIN_URL},
        )


class Forbidden(HTTPException):
    def __init__(self, detail: str = "Insufficient role"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class UserNotFoundError(HTTPException):
    def __init__(self, detail: str = "User not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
