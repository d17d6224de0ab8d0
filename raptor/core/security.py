from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from jose import JWTError, jwt
from jose.utils import base64url_decode, base64url_encode
import hashlib
import secrets
import uuid

from raptor.core.config import SessionConfig
from raptor.utils.errors import InvalidTokenError


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Creates and verifies signed access tokens and mints opaque refresh tokens.

    Pure: no persistence, no network. Revocation is the caller's business.
    ``clock`` returns an aware UTC datetime and exists so expiry can be tested.
    """

    def __init__(self, config: SessionConfig, clock: Optional[Callable[[], datetime]] = None):
        self.config = config
        self.clock = clock or utc_now

    def issue_access_token(self, user_id: str, email: Optional[str], roles: List[str]) -> str:
        now = int(self.clock().timestamp())
        expires = now + int(self.config.access_token_ttl.total_seconds())
        payload: Dict[str, Any] = {
            "jti": str(uuid.uuid4()),
            "sub": str(user_id),
            "iss": self.config.issuer,
            "iat": now,
            "exp": expires,
            "email": email,
            "roles": list(roles),
        }
        return jwt.encode(payload, self.config.secret, algorithm=self.config.algorithm)

    def issue_refresh_token(self) -> str:
        return secrets.token_urlsafe(48)

    def verify_and_parse(self, token: str) -> Dict[str, Any]:
        if not token or not isinstance(token, str):
            raise InvalidTokenError("Token is empty")

        try:
            claims = jwt.decode(
                token,
                self.config.secret,
                algorithms=[self.config.algorithm],
                issuer=self.config.issuer,
                # expiry is checked below against our own clock
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError as e:
            raise InvalidTokenError(f"Invalid token: {e}") from e

        # Reject signatures that only decode the same because of base64 slack bits.
        signature = token.rsplit(".", 1)[-1].encode("ascii", "ignore")
        if base64url_encode(base64url_decode(signature)) != signature:
            raise InvalidTokenError("Invalid token: non-canonical signature encoding")

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            raise InvalidTokenError("Invalid token: missing expiry")
        if self.clock().timestamp() >= exp:
            raise InvalidTokenError("Token expired")

        if not claims.get("sub") or not claims.get("jti"):
            raise InvalidTokenError("Invalid token: missing subject or jti")
        return claims

    def get_user_id(self, token: str) -> str:
        return self.verify_and_parse(token)["sub"]

    def get_jti(self, token: str) -> str:
        return self.verify_and_parse(token)["jti"]

    def get_email(self, token: str) -> Optional[str]:
        return self.verify_and_parse(token).get("email")

    def get_roles(self, token: str) -> List[str]:
        return list(self.verify_and_parse(token).get("roles") or [])

    def get_expiration(self, token: str) -> datetime:
        exp = self.verify_and_parse(token)["exp"]
        return datetime.fromtimestamp(exp, tz=timezone.utc)
