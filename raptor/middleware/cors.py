"""CORS configuration. Credentials are allowed so the auth cookies reach the API."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from raptor.core.config import settings


def _origins() -> list[str]:
    raw = settings.BACKEND_CORS_ORIGINS or ""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def configure_cors(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
