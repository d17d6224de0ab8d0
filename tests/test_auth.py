"""Integration tests for the authentication, OIDC callback and admin routes.

The app runs against the in-memory database configured by `.env.test`; the
identity provider is the in-process fake from conftest.
"""
from dataclasses import replace
from urllib.parse import parse_qs, urlparse

import pytest

from raptor.core.security import hash_token
from raptor.models.refresh_token import RefreshToken
from raptor.models.user import User
from raptor.services.session_service import SessionService
from raptor.utils.errors import SessionError


def _login_as(client, db, config, user):
    pair = SessionService(db, config).generate_token_pair(user.id)
    client.cookies.set("access_token", pair.access_token)
    client.cookies.set("refresh_token", pair.refresh_token)
    return pair


def _set_cookie_headers(response, name):
    return [h for h in response.headers.get_list("set-cookie") if h.startswith(f"{name}=")]


async def test_health(async_client):
    r = await async_client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "database": "ok"}


async def test_login_points_at_authorization_endpoint(async_client):
    r = await async_client.get("/auth/login")
    assert r.status_code == 200
    assert r.json()["authorizationUrl"] == "/oauth2/authorization/oidc-provider"


async def test_user_requires_authentication(async_client):
    r = await async_client.get("/auth/user")
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Not authenticated", "loginUrl": "/auth/login"}


async def test_user_from_cookie(async_client, db_session, session_config, make_user):
    user = make_user(email="cookie@example.com", roles=("USER", "MANAGER"))
    _login_as(async_client, db_session, session_config, user)

    r = await async_client.get("/auth/user")
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == user.id
    assert body["email"] == "cookie@example.com"
    assert body["oidcSubject"] == user.oidc_subject
    assert body["roles"] == ["MANAGER", "USER"]
    assert body["isActive"] is True


async def test_user_from_bearer_header(async_client, db_session, session_config, make_user):
    user = make_user()
    pair = SessionService(db_session, session_config).generate_token_pair(user.id)

    r = await async_client.get("/auth/user", headers={"Authorization": f"Bearer {pair.access_token}"})
    assert r.status_code == 200
    assert r.json()["id"] == user.id


async def test_user_row_missing_returns_404(async_client, db_session, session_config, make_user):
    user = make_user()
    _login_as(async_client, db_session, session_config, user)
    db_session.query(RefreshToken).filter(RefreshToken.user_id == user.id).delete()
    db_session.query(User).filter(User.id == user.id).delete()
    db_session.commit()

    r = await async_client.get("/auth/user")
    assert r.status_code == 404


async def test_refresh_requires_reauth_when_silent_refresh_disabled(async_client, db_session, session_config, make_user):
    user = make_user()
    _login_as(async_client, db_session, session_config, user)

    r = await async_client.post("/auth/refresh")
    assert r.status_code == 401
    assert r.json() == {
        "success": False,
        "message": "Session expired. Please login again.",
        "requiresReauth": True,
        "loginUrl": "/auth/login",
    }


async def test_silent_refresh_sets_new_access_cookie(client_for, db_session, session_config, make_user):
    config = replace(session_config, allow_silent_refresh=True)
    user = make_user()

    async with client_for(config) as client:
        pair = _login_as(client, db_session, config, user)
        r = await client.post("/auth/refresh")

    assert r.status_code == 200
    assert r.json()["expiresIn"] == 15 * 60
    new_access = r.cookies.get("access_token")
    assert new_access and new_access != pair.access_token
    assert _set_cookie_headers(r, "refresh_token") == []
    assert SessionService(db_session, config).validate_access_token(new_access)


async def test_silent_refresh_with_rotation_sets_new_refresh_cookie(client_for, db_session, session_config, make_user):
    config = replace(session_config, allow_silent_refresh=True, rotate_refresh_tokens=True)
    user = make_user()

    async with client_for(config) as client:
        pair = _login_as(client, db_session, config, user)
        r = await client.post("/auth/refresh")

    assert r.status_code == 200
    new_refresh = r.cookies.get("refresh_token")
    assert new_refresh and new_refresh != pair.refresh_token


async def test_silent_refresh_reports_reason(client_for, db_session, session_config, make_user):
    config = replace(session_config, allow_silent_refresh=True)
    user = make_user()

    async with client_for(config) as client:
        r = await client.post("/auth/refresh")
        assert r.status_code == 401
        assert r.json()["reason"] == "invalid"

        pair = _login_as(client, db_session, config, user)
        SessionService(db_session, config).revoke_refresh_token(pair.refresh_token)
        r = await client.post("/auth/refresh")

    assert r.status_code == 401
    body = r.json()
    assert body["reason"] == "revoked"
    assert body["requiresReauth"] is True


async def test_check_with_valid_access_token(async_client, db_session, session_config, make_user):
    user = make_user(email="check@example.com")
    _login_as(async_client, db_session, session_config, user)

    r = await async_client.get("/auth/check")
    assert r.status_code == 200
    body = r.json()
    assert body["authenticated"] is True
    assert body["accessTokenValid"] is True
    assert body["requiresReauth"] is False
    assert body["user"]["email"] == "check@example.com"


async def test_check_with_only_refresh_token(client_for, db_session, session_config, make_user):
    user = make_user()
    pair = SessionService(db_session, session_config).generate_token_pair(user.id)

    async with client_for(session_config) as client:
        client.cookies.set("refresh_token", pair.refresh_token)
        r = await client.get("/auth/check")
    assert r.status_code == 401
    body = r.json()
    assert body["refreshTokenValid"] is True
    assert body["requiresReauth"] is True
    assert body["loginUrl"] == "/auth/login"

    async with client_for(replace(session_config, allow_silent_refresh=True)) as client:
        client.cookies.set("refresh_token", pair.refresh_token)
        r = await client.get("/auth/check")
    assert r.status_code == 401
    assert r.json()["requiresReauth"] is False


async def test_check_without_tokens(async_client):
    r = await async_client.get("/auth/check")
    assert r.status_code == 401
    body = r.json()
    assert body["authenticated"] is False
    assert body["refreshTokenValid"] is False
    assert body["requiresReauth"] is True


async def test_logout_revokes_both_tokens_and_clears_cookies(async_client, db_session, session_config, make_user):
    user = make_user()
    pair = _login_as(async_client, db_session, session_config, user)

    r = await async_client.post("/auth/logout")
    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "Logout successful"}
    for name in ("access_token", "refresh_token"):
        headers = _set_cookie_headers(r, name)
        assert headers and "Max-Age=0" in headers[0]
        assert "HttpOnly" in headers[0]

    sessions = SessionService(db_session, session_config)
    assert sessions.validate_access_token(pair.access_token) is False
    db_session.expire_all()
    row = db_session.query(RefreshToken).filter(RefreshToken.token_hash == hash_token(pair.refresh_token)).one()
    assert row.is_revoked is True
    assert row.revoked_reason == "LOGOUT"

    async_client.cookies.clear()
    r = await async_client.get("/auth/user", headers={"Authorization": f"Bearer {pair.access_token}"})
    assert r.status_code == 401


async def test_logout_without_tokens_still_succeeds(async_client):
    r = await async_client.post("/auth/logout")
    assert r.status_code == 200
    assert r.json()["success"] is True


async def test_admin_revokes_all_sessions_of_a_user(async_client, db_session, session_config, make_user):
    admin = make_user(roles=("ADMIN",))
    target = make_user()
    sessions = SessionService(db_session, session_config)
    target_pairs = [sessions.generate_token_pair(target.id) for _ in range(2)]
    _login_as(async_client, db_session, session_config, admin)

    r = await async_client.post(f"/admin/users/{target.id}/revoke-sessions")
    assert r.status_code == 200
    assert r.json() == {"success": True, "userId": target.id, "revokedRefreshTokens": 2}

    db_session.expire_all()
    for pair in target_pairs:
        row = db_session.query(RefreshToken).filter(RefreshToken.token_hash == hash_token(pair.refresh_token)).one()
        assert row.revoked_reason == "ADMIN_ACTION"

    r = await async_client.post("/admin/users/00000000-0000-0000-0000-000000000000/revoke-sessions")
    assert r.status_code == 404


async def test_admin_deactivates_and_activates_a_user(async_client, db_session, session_config, make_user):
    admin = make_user(roles=("ADMIN",))
    target = make_user()
    sessions = SessionService(db_session, session_config)
    target_pairs = [sessions.generate_token_pair(target.id) for _ in range(2)]
    _login_as(async_client, db_session, session_config, admin)

    r = await async_client.put(f"/admin/users/{target.id}/deactivate")
    assert r.status_code == 200
    assert r.json() == {"success": True, "userId": target.id, "isActive": False, "revokedRefreshTokens": 2}

    db_session.expire_all()
    assert db_session.query(User).filter(User.id == target.id).one().is_active is False
    for pair in target_pairs:
        row = db_session.query(RefreshToken).filter(RefreshToken.token_hash == hash_token(pair.refresh_token)).one()
        assert row.is_revoked is True
        assert row.revoked_reason == "ADMIN_ACTION"
        with pytest.raises(SessionError) as exc:
            sessions.refresh_access_token(pair.refresh_token)
        assert exc.value.reason == SessionError.REVOKED

    r = await async_client.put(f"/admin/users/{target.id}/activate")
    assert r.status_code == 200
    assert r.json()["isActive"] is True
    db_session.expire_all()
    assert db_session.query(User).filter(User.id == target.id).one().is_active is True


async def test_admin_deactivate_rejects_unknown_user_and_self(async_client, db_session, session_config, make_user):
    admin = make_user(roles=("ADMIN",))
    _login_as(async_client, db_session, session_config, admin)

    r = await async_client.put("/admin/users/00000000-0000-0000-0000-000000000000/deactivate")
    assert r.status_code == 404
    r = await async_client.put("/admin/users/00000000-0000-0000-0000-000000000000/activate")
    assert r.status_code == 404

    r = await async_client.put(f"/admin/users/{admin.id}/deactivate")
    assert r.status_code == 400
    db_session.expire_all()
    assert db_session.query(User).filter(User.id == admin.id).one().is_active is True


async def test_admin_endpoints_require_admin_role(async_client, db_session, session_config, make_user):
    user = make_user(roles=("USER",))
    _login_as(async_client, db_session, session_config, user)

    r = await async_client.post(f"/admin/users/{user.id}/revoke-sessions")
    assert r.status_code == 403
    r = await async_client.put(f"/admin/users/{user.id}/deactivate")
    assert r.status_code == 403


async def test_admin_blacklists_an_access_token(async_client, db_session, session_config, make_user):
    admin = make_user(roles=("ADMIN",))
    target = make_user()
    target_pair = SessionService(db_session, session_config).generate_token_pair(target.id)
    _login_as(async_client, db_session, session_config, admin)

    r = await async_client.post(
        "/admin/tokens/revoke", json={"token": target_pair.access_token, "reason": "SECURITY_BREACH"}
    )
    assert r.status_code == 200
    assert SessionService(db_session, session_config).validate_access_token(target_pair.access_token) is False

    r = await async_client.post("/admin/tokens/revoke", json={"token": target_pair.access_token})
    assert r.status_code == 400


# OIDC authorization code flow

async def _start_login(client):
    r = await client.get("/oauth2/authorization/oidc-provider")
    assert r.status_code == 302
    query = {k: v[0] for k, v in parse_qs(urlparse(r.headers["location"]).query).items()}
    return query["state"], query["nonce"]


async def test_oidc_login_flow_sets_session_cookies(client_for, session_config, oidc_provider, db_session):
    async with client_for(session_config, oidc_client=oidc_provider.client()) as client:
        state, nonce = await _start_login(client)
        oidc_provider.id_token_claims = {"nonce": nonce, "realm_access": {"roles": ["admin", "user"]}}

        r = await client.get("/login/oauth2/code/oidc-provider", params={"code": "abc", "state": state})
        assert r.status_code == 302
        assert r.headers["location"] == "http://frontend.test/auth-callback"
        assert r.cookies.get("access_token")
        assert r.cookies.get("refresh_token")

        r = await client.get("/auth/user")

    assert r.status_code == 200
    body = r.json()
    assert body["email"] == "jane.doe@example.com"
    assert body["fullName"] == "Jane Doe"
    assert body["roles"] == ["ADMIN", "USER"]
    assert oidc_provider.token_forms[0]["code"] == "abc"


async def test_oidc_callback_rejects_state_mismatch(client_for, session_config, oidc_provider):
    async with client_for(session_config, oidc_client=oidc_provider.client()) as client:
        await _start_login(client)
        r = await client.get("/login/oauth2/code/oidc-provider", params={"code": "abc", "state": "forged"})

    assert r.status_code == 302
    assert r.headers["location"] == "http://frontend.test/login?error=invalid_state"
    assert oidc_provider.token_forms == []


async def test_oidc_callback_without_subject_fails_provisioning(client_for, session_config, oidc_provider, db_session):
    async with client_for(session_config, oidc_client=oidc_provider.client()) as client:
        state, nonce = await _start_login(client)
        oidc_provider.id_token_claims = {"nonce": nonce, "sub": None}
        r = await client.get("/login/oauth2/code/oidc-provider", params={"code": "abc", "state": state})

    assert r.status_code == 302
    assert r.headers["location"] == "http://frontend.test/login?error=provisioning_failed"
    assert r.cookies.get("access_token") is None
    assert db_session.query(User).filter(User.email == "jane.doe@example.com").count() == 0


async def test_oidc_callback_rejects_wrong_nonce(client_for, session_config, oidc_provider):
    async with client_for(session_config, oidc_client=oidc_provider.client()) as client:
        state, _ = await _start_login(client)
        oidc_provider.id_token_claims = {"nonce": "replayed"}
        r = await client.get("/login/oauth2/code/oidc-provider", params={"code": "abc", "state": state})

    assert r.headers["location"] == "http://frontend.test/login?error=invalid_id_token"


async def test_oidc_callback_refuses_disabled_user(client_for, session_config, oidc_provider, db_session):
    db_session.add(User(oidc_subject="idp-subject-1", email="jane.doe@example.com", is_active=False))
    db_session.commit()

    async with client_for(session_config, oidc_client=oidc_provider.client()) as client:
        state, nonce = await _start_login(client)
        oidc_provider.id_token_claims = {"nonce": nonce}
        r = await client.get("/login/oauth2/code/oidc-provider", params={"code": "abc", "state": state})

    assert r.headers["location"] == "http://frontend.test/login?error=account_disabled"


async def test_provider_outage_redirects_to_login_error(client_for, session_config, oidc_provider):
    oidc_provider.available = False
    async with client_for(session_config, oidc_client=oidc_provider.client()) as client:
        r = await client.get("/oauth2/authorization/oidc-provider")

    assert r.status_code == 302
    assert r.headers["location"] == "http://frontend.test/login?error=provider_unavailable"


async def test_unknown_registration_is_404(async_client):
    r = await async_client.get("/oauth2/authorization/github")
    assert r.status_code == 404
