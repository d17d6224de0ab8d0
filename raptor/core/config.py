import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Dict
from dotenv import load_dotenv

load_dotenv()

ADDITIONAL_PARAM_PREFIX = "OIDC_ADDL_REQ_PARAM_"


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.lower() in ("1", "true", "yes", "on")


def load_additional_oidc_params(environ=None) -> Dict[str, str]:
    """Collect OIDC_ADDL_REQ_PARAM_<NAME>=<value> into {"<name>": value}.

    OIDC_ADDL_REQ_PARAM_ACR_VALUES=http://idmanagement.gov/ns/assurance/ial/2
    becomes {"acr_values": "http://idmanagement.gov/ns/assurance/ial/2"}.
    Blank values are ignored.
    """
    environ = os.environ if environ is None else environ
    params = {}
    for key, value in environ.items():
        if not key.startswith(ADDITIONAL_PARAM_PREFIX):
            continue
        name = key[len(ADDITIONAL_PARAM_PREFIX):].lower()
        if name and value and value.strip():
            params[name] = value.strip()
    return params


class Settings:
    ENV: str = os.getenv("ENV", "local")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
    DATABASE_ECHO: bool = os.getenv("DATABASE_ECHO", "False").lower() == "true"
    DATABASE_POOL_SIZE: int = int(os.getenv("DATABASE_POOL_SIZE", 20))
    DATABASE_MAX_OVERFLOW: int = int(os.getenv("DATABASE_MAX_OVERFLOW", 10))

    # JWT / Session
    JWT_SECRET: Optional[str] = os.getenv("JWT_SECRET")
    JWT_ISSUER: str = os.getenv("JWT_ISSUER", "raptor-app")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 15))
    REFRESH_TOKEN_EXPIRE_DAYS: int = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", 7))
    ALLOW_SILENT_REFRESH: bool = _as_bool(os.getenv("ALLOW_SILENT_REFRESH"), False)
    ROTATE_REFRESH_TOKENS: bool = _as_bool(os.getenv("ROTATE_REFRESH_TOKENS"), False)

    # OIDC provider
    OIDC_REGISTRATION_ID: str = os.getenv("OIDC_REGISTRATION_ID", "oidc-provider")
    OIDC_ISSUER_URI: Optional[str] = os.getenv("OIDC_ISSUER_URI")
    # Server-side base URL when the backend cannot reach the browser-facing issuer
    OIDC_INTERNAL_ISSUER_URI: Optional[str] = os.getenv("OIDC_INTERNAL_ISSUER_URI")
    OIDC_CLIENT_ID: Optional[str] = os.getenv("OIDC_CLIENT_ID")
    OIDC_CLIENT_SECRET: Optional[str] = os.getenv("OIDC_CLIENT_SECRET")
    OIDC_REDIRECT_URI: Optional[str] = os.getenv("OIDC_REDIRECT_URI")
    OIDC_SCOPES: str = os.getenv("OIDC_SCOPES", "openid profile email")
    OIDC_HTTP_TIMEOUT_SECONDS: float = float(os.getenv("OIDC_HTTP_TIMEOUT_SECONDS", 10))
    OIDC_FALLBACK_ROLE: str = os.getenv("OIDC_FALLBACK_ROLE", "EXTERNAL_USER")
    OIDC_ADDITIONAL_PARAMS: Dict[str, str] = load_additional_oidc_params()

    # Frontend / cookies
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:4200")
    COOKIE_SECURE: bool = _as_bool(
        os.getenv("COOKIE_SECURE"), os.getenv("ENV", "local") not in ("local", "test")
    )
    COOKIE_SAMESITE: str = os.getenv("COOKIE_SAMESITE", "lax").lower()
    COOKIE_DOMAIN: Optional[str] = os.getenv("COOKIE_DOMAIN") or None

    # CORS
    BACKEND_CORS_ORIGINS: Optional[str] = os.getenv("BACKEND_CORS_ORIGINS", "http://localhost:4200")

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "True").lower() == "true"
    RATE_LIMIT_REQUESTS: int = int(os.getenv("RATE_LIMIT_REQUESTS", 100))
    RATE_LIMIT_PERIOD_SECONDS: int = int(os.getenv("RATE_LIMIT_PERIOD_SECONDS", 60))

    # Redis / Celery
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    TOKEN_CLEANUP_INTERVAL_MINUTES: int = int(os.getenv("TOKEN_CLEANUP_INTERVAL_MINUTES", 60))


settings = Settings()


@dataclass(frozen=True)
class SessionConfig:
    """Token settings, read once at startup and never mutated."""

    secret: str
    issuer: str = "raptor-app"
    access_token_ttl: timedelta = timedelta(minutes=15)
    refresh_token_ttl: timedelta = timedelta(days=7)
    allow_silent_refresh: bool = False
    rotate_refresh_tokens: bool = False
    algorithm: str = field(default="HS256")

    def __post_init__(self):
        if not self.secret:
            raise ValueError("JWT secret must be configured")
        if len(self.secret.encode("utf-8")) < 32:
            raise ValueError("JWT secret must be at least 32 bytes for HS256")

    @classmethod
    def from_settings(cls, source: Settings = settings) -> "SessionConfig":
        return cls(
            secret=source.JWT_SECRET,
            issuer=source.JWT_ISSUER,
            access_token_ttl=timedelta(minutes=source.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_token_ttl=timedelta(days=source.REFRESH_TOKEN_EXPIRE_DAYS),
            allow_silent_refresh=source.ALLOW_SILENT_REFRESH,
            rotate_refresh_tokens=source.ROTATE_REFRESH_TOKENS,
        )

    @property
    def access_token_max_age(self) -> int:
        return int(self.access_token_ttl.total_seconds())

    @property
    def refresh_token_max_age(self) -> int:
        return int(self.refresh_token_ttl.total_seconds())
