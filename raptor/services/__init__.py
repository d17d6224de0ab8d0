"""Service layer package."""

__all__ = [
    "session_service",
    "oidc_client",
    "oidc_service",
]
