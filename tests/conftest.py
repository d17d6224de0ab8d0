"""Pytest fixtures for async FastAPI testing.

Loads `.env.test` before any `raptor` module reads settings, builds a clean
in-memory schema with the default roles, and provides an `AsyncClient` bound to
the app. The identity provider is never contacted: OIDC tests hand the app an
`OidcClient` backed by `httpx.MockTransport`.
"""
import pathlib
from datetime import datetime, timedelta, timezone

import pytest
from dotenv import load_dotenv

ROOT = pathlib.Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=str(ROOT / ".env.test"), override=True)

DEFAULT_ROLES = ["USER", "MANAGER", "ADMIN", "EXTERNAL_USER"]
TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


class FrozenClock:
    """Settable clock for TokenCodec/SessionService."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(scope="session")
def prepare_database():
    """Create clean schema for the test session."""
    from raptor.core.database import engine, Base, SessionLocal
    from raptor.models.user import Role

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        for name in DEFAULT_ROLES:
            db.add(Role(role_name=name, description=f"{name.title()} role"))
        db.commit()
    finally:
        db.close()

    yield

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(prepare_database):
    """Yield a SQLAlchemy session; rows created by the test are removed afterwards."""
    from raptor.core.database import SessionLocal
    from raptor.models.refresh_token import RefreshToken
    from raptor.models.revoked_token import RevokedToken
    from raptor.models.user import User, UserRole

    db = SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        for model in (RevokedToken, RefreshToken, UserRole, User):
            db.query(model).delete(synchronize_session=False)
        db.commit()
        db.close()


@pytest.fixture
def session_config():
    from raptor.core.config import SessionConfig

    return SessionConfig(secret=TEST_SECRET, issuer="raptor-app")


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def make_user(db_session):
    """Factory for committed users with the given role names."""
    import uuid
    from raptor.models.user import User
    from raptor.stores.user_directory import UserDirectory

    users = UserDirectory(db_session)

    def _make(email=None, roles=("USER",), is_active=True):
        suffix = uuid.uuid4().hex[:8]
        user = users.insert(
            User(
                oidc_subject=f"sub-{suffix}",
                email=email or f"user-{suffix}@example.com",
                full_name="Test User",
                is_active=is_active,
            )
        )
        for name in roles:
            users.assign_role(user.id, users.find_role_by_name(name).id, "SYSTEM")
        db_session.commit()
        return user

    return _make


@pytest.fixture
def client_for(prepare_database):
    """Async context manager factory: an AsyncClient over an app built with the given config."""
    from contextlib import asynccontextmanager
    from httpx import ASGITransport, AsyncClient
    from raptor.main import create_app

    @asynccontextmanager
    async def _client(config, oidc_client=None):
        app = create_app(session_config=config, oidc_client=oidc_client)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
            yield client

    return _client


@pytest.fixture
async def async_client(client_for, session_config):
    """Provide an httpx AsyncClient configured with the FastAPI app."""
    async with client_for(session_config) as client:
        yield client


class FakeIdentityProvider:
    """In-process OIDC provider served through httpx.MockTransport."""

    def __init__(self, private_pem: str, public_jwk: dict, issuer: str, client_id: str):
        self.private_pem = private_pem
        self.jwks = {"keys": [public_jwk]}
        self.issuer = issuer
        self.client_id = client_id
        self.id_token_claims = {}
        self.requests = []
        self.token_forms = []
        self.available = True

    def metadata(self) -> dict:
        return {
            "issuer": self.issuer,
            "authorization_endpoint": f"{self.issuer}/protocol/openid-connect/auth",
            "token_endpoint": f"{self.issuer}/protocol/openid-connect/token",
            "jwks_uri": f"{self.issuer}/protocol/openid-connect/certs",
        }

    def sign(self, **overrides) -> str:
        import time
        from jose import jwt

        now = int(time.time())
        claims = {
            "iss": self.issuer,
            "aud": self.client_id,
            "sub": "idp-subject-1",
            "iat": now,
            "exp": now + 300,
            "email": "jane.doe@example.com",
            "preferred_username": "jdoe",
            "name": "Jane Doe",
            "realm_access": {"roles": ["user"]},
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, self.private_pem, algorithm="RS256", headers={"kid": "test-key"})

    def handler(self, request):
        import httpx
        from urllib.parse import parse_qs

        self.requests.append(request)
        if not self.available:
            return httpx.Response(503, json={"error": "unavailable"})

        path = request.url.path
        if path.endswith("/.well-known/openid-configuration"):
            return httpx.Response(200, json=self.metadata())
        if path.endswith("/certs"):
            return httpx.Response(200, json=self.jwks)
        if path.endswith("/token"):
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            self.token_forms.append(form)
            return httpx.Response(
                200,
                json={
                    "access_token": "provider-access-token",
                    "token_type": "Bearer",
                    "id_token": self.sign(**self.id_token_claims),
                },
            )
        return httpx.Response(404)

    def client(self, **kwargs):
        import httpx
        from raptor.core.config import settings
        from raptor.services.oidc_client import OidcClient

        options = dict(
            issuer_uri=self.issuer,
            client_id=self.client_id,
            client_secret=settings.OIDC_CLIENT_SECRET,
            redirect_uri=settings.OIDC_REDIRECT_URI,
            transport=httpx.MockTransport(self.handler),
        )
        options.update(kwargs)
        return OidcClient(**options)


@pytest.fixture(scope="session")
def rsa_signing_key():
    from cryptography.hazmat.primitives import serialization
    from cryptography.hazmat.primitives.asymmetric import rsa
    from jose import jwk

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_jwk = jwk.construct(pem, "RS256").public_key().to_dict()
    public_jwk.update({"kid": "test-key", "use": "sig"})
    return pem, public_jwk


@pytest.fixture
def oidc_provider(rsa_signing_key):
    from raptor.core.config import settings

    pem, public_jwk = rsa_signing_key
    return FakeIdentityProvider(pem, public_jwk, settings.OIDC_ISSUER_URI, settings.OIDC_CLIENT_ID)
