"""Global error handlers for the application."""
import logging
from fastapi import Request
from fastapi.responses import JSONResponse

from raptor.core.constants import LOGIN_URL
from raptor.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


async def http_exception_handler(request: Request, exc):
    # structured details (e.g. the 401 login hint) are returned as the body itself
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


async def session_error_handler(request: Request, exc):
    return JSONResponse(
        status_code=401,
        content={
            "success": False,
            "message": str(exc),
            "requiresReauth": True,
            "loginUrl": LOGIN_URL,
            "reason": exc.reason,
        },
    )


async def invalid_token_handler(request: Request, exc):
    return JSONResponse(
        status_code=401,
        content={"success": False, "message": "Invalid token", "loginUrl": LOGIN_URL},
    )


async def persistence_error_handler(request: Request, exc):
    logger.error(f"Persistence failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=ErrorResponse(error="Internal storage error").model_dump())
