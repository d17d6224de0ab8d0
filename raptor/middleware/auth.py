"""Access-token authentication middleware.

Reads the access token (cookie first, then Bearer header), validates it through
SessionService, and attaches a ``UserPrincipal`` to ``request.state.principal``.
Invalid or missing tokens never short-circuit the request: the principal is
simply None and route dependencies decide whether that is acceptable.
"""
import logging
from starlette.requests import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.concurrency import run_in_threadpool

from raptor.core.database import SessionLocal
from raptor.services.session_service import SessionService
from raptor.utils.helpers import get_access_token

logger = logging.getLogger(__name__)


def _authenticate(token: str, config):
    db = SessionLocal()
    try:
        return SessionService(db, config).authenticate(token)
    finally:
        db.close()


class JWTMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request.state.principal = None

        token = get_access_token(request)
        if token:
            config = request.app.state.session_config
            try:
                request.state.principal = await run_in_threadpool(_authenticate, token, config)
            except Exception as e:
                # e.g. the database is unreachable; treat the caller as anonymous
                logger.error(f"JWT authentication error: {e}")

        return await call_next(request)
