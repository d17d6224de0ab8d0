from fastapi import FastAPI
from fastapi.exceptions import HTTPException as FastAPIHTTPException

from raptor.core.config import SessionConfig
from raptor.core.logger import setup_logging
from raptor.middleware.cors import configure_cors
from raptor.middleware.logging import RequestLoggerMiddleware
from raptor.middleware.auth import JWTMiddleware
from raptor.middleware import error_handler
from raptor.services.oidc_client import OidcClient
from raptor.utils.errors import InvalidTokenError, PersistenceError, SessionError

# Routers
from raptor.routers import auth as auth_router
from raptor.routers import oauth2 as oauth2_router
from raptor.routers import admin as admin_router
from raptor.routers import health as health_router


def create_app(
    session_config: SessionConfig | None = None,
    oidc_client: OidcClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Token settings are validated here, so a missing or short JWT_SECRET stops
    the process at startup instead of at the first login.
    """
    setup_logging()
    description = (
        "Raptor session backend.\n\n"
        "Authenticates users against an OpenID Connect provider and keeps them signed in "
        "with short-lived access tokens and revocable refresh tokens in http-only cookies."
    )

    openapi_tags = [
        {"name": "authentication", "description": "OIDC login, token refresh, logout and session checks."},
        {"name": "admin", "description": "Session revocation for administrators."},
        {"name": "health", "description": "Health checks and service status endpoints."},
    ]

    app = FastAPI(
        title="Raptor Session API",
        version="0.1.0",
        description=description,
        openapi_tags=openapi_tags,
    )

    app.state.session_config = session_config or SessionConfig.from_settings()
    app.state.oidc_client = oidc_client or OidcClient.from_settings()

    # Middleware
    app.add_middleware(JWTMiddleware)
    app.add_middleware(RequestLoggerMiddleware)
    configure_cors(app)

    # Exception handlers
    app.add_exception_handler(FastAPIHTTPException, error_handler.http_exception_handler)
    app.add_exception_handler(SessionError, error_handler.session_error_handler)
    app.add_exception_handler(InvalidTokenError, error_handler.invalid_token_handler)
    app.add_exception_handler(PersistenceError, error_handler.persistence_error_handler)

    # Include routers
    app.include_router(health_router.router)
    app.include_router(auth_router.router)
    app.include_router(oauth2_router.router)
    app.include_router(admin_router.router)

    return app


app = create_app()
