"""End-to-end tests through the HTTP API.

Requests run through the real FastAPI app (error handler, middleware,
dependency chain) against the in-memory repository.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from src.venuin.api.deps import require_permission
from src.venuin.auth.permissions import resolve_permissions
from src.venuin.auth.principal import Principal, SubjectKind
from src.venuin.core.errors import PermissionDenied


async def _login(client, email, password, tenant_slug=None, subject_kind="tenant_user"):
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password, "tenant_slug": tenant_slug, "subject_kind": subject_kind},
    )
    assert response.status_code == 200, response.text
    return response.json()


def _bearer(session: dict) -> dict:
    return {"Authorization": f"Bearer {session['access_token']}"}


@pytest.fixture
def alpha_headers(client, tenant_alpha, alpha_admin, password):
    async def login():
        return _bearer(await _login(client, alpha_admin.email, password, tenant_alpha.slug))

    return login


# ── Health ───────────────────────────────────────────────────────────────────


async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# ── Auth ─────────────────────────────────────────────────────────────────────


async def test_login_and_me(client, tenant_alpha, alpha_admin, password):
    session = await _login(client, alpha_admin.email, password, tenant_alpha.slug)

    assert session["token_type"] == "bearer"
    assert session["principal"]["tenant_id"] == tenant_alpha.id

    response = await client.get("/api/v1/auth/me", headers=_bearer(session))
    assert response.status_code == 200
    me = response.json()
    assert me["subject_id"] == alpha_admin.id
    assert me["roles"] == ["tenant_admin"]
    assert "manage_users" in me["permissions"]

    response = await client.get("/api/v1/auth/me", headers={"X-Session-Token": session["session_token"]})
    assert response.status_code == 200


async def test_bad_login_returns_invalid_credentials(client, tenant_alpha, alpha_admin):
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": alpha_admin.email, "password": "wrong-password", "tenant_slug": tenant_alpha.slug},
    )
    assert response.status_code == 401
    assert response.json() == {"code": "INVALID_CREDENTIALS", "message": "Invalid email or password"}
    assert response.headers["WWW-Authenticate"] == "Bearer"


async def test_missing_credentials(client):
    response = await client.get("/api/v1/auth/me")
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHENTICATED"


async def test_refresh_and_logout(client, tenant_alpha, alpha_admin, password):
    session = await _login(client, alpha_admin.email, password, tenant_alpha.slug)

    response = await client.post("/api/v1/auth/refresh", json={"session_token": session["session_token"]})
    assert response.status_code == 200
    refreshed = response.json()

    response = await client.get("/api/v1/auth/me", headers=_bearer(session))
    assert response.status_code == 401

    response = await client.post("/api/v1/auth/logout", json={"session_token": refreshed["session_token"]})
    assert response.status_code == 204
    response = await client.post("/api/v1/auth/logout", json={"session_token": refreshed["session_token"]})
    assert response.status_code == 204

    response = await client.get("/api/v1/auth/me", headers=_bearer(refreshed))
    assert response.status_code == 401


async def test_dev_override_header_rejected_when_disabled(client):
    response = await client.get("/api/v1/auth/me", headers={"X-Dev-Override": "super_admin"})
    assert response.status_code == 401


async def test_store_unavailable(app, client):
    app.state.access_repository = None
    response = await client.get("/api/v1/auth/me", headers={"X-Session-Token": "anything"})
    assert response.status_code == 503


async def test_failed_commit_is_not_reported_as_success(app, repo, tenant_alpha, alpha_admin, password):
    """The transaction commits before the response is sent, so a failed commit surfaces as a 5xx."""

    class FailingCommitRepository:
        @asynccontextmanager
        async def transaction(self):
            async with repo.transaction() as store:
                yield store
                raise RuntimeError("commit failed")

    app.state.access_repository = FailingCommitRepository()
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as failing_client:
        response = await failing_client.post(
            "/api/v1/auth/login",
            json={"email": alpha_admin.email, "password": password, "tenant_slug": tenant_alpha.slug},
        )

    assert response.status_code >= 500
    assert repo.sessions == {}


# ── Tenant isolation and plan gating ─────────────────────────────────────────


async def test_cross_tenant_access_denied(client, tenant_beta, alpha_headers):
    headers = await alpha_headers()

    response = await client.get(f"/api/v1/tenants/{tenant_beta.id}/users", headers=headers)

    assert response.status_code == 403
    assert response.json()["code"] == "CROSS_TENANT_DENIED"


async def test_venue_of_other_tenant_denied(client, repo, tenant_beta, alpha_headers):
    async with repo.transaction() as store:
        venue = await store.create_venue(tenant_beta.id, "Beta Hall")

    response = await client.get(f"/api/v1/venues/{venue.id}", headers=await alpha_headers())

    assert response.status_code == 403
    assert response.json()["code"] == "CROSS_TENANT_DENIED"


async def test_venue_limit_returns_402(client, repo, tenant_alpha, alpha_headers):
    headers = await alpha_headers()
    url = f"/api/v1/tenants/{tenant_alpha.id}/venues"

    response = await client.post(url, json={"name": "Main Hall"}, headers=headers)
    assert response.status_code == 201

    response = await client.post(url, json={"name": "Second Hall"}, headers=headers)
    assert response.status_code == 402
    body = response.json()
    assert body["code"] == "PLAN_LIMIT_EXCEEDED"
    assert (body["limit"], body["current"], body["maximum"]) == ("max_venues", 1, 1)
    assert body["upgrade_required"] is True
    assert len(repo.venues) == 1


async def test_failed_booking_rolls_back(client, repo, tenant_alpha, alpha_headers):
    response = await client.post(
        f"/api/v1/tenants/{tenant_alpha.id}/bookings",
        json={"venue_id": "no-such-venue", "title": "Wedding"},
        headers=await alpha_headers(),
    )
    assert response.status_code == 404
    assert repo.bookings == {}
    assert not repo.tenant_lock(tenant_alpha.id).locked()


async def test_feature_gate_dry_run(client, tenant_alpha, alpha_headers):
    headers = await alpha_headers()

    response = await client.get(f"/api/v1/tenants/{tenant_alpha.id}/capabilities/voice_booking", headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["allowed"] is False
    assert body["reason"] == "feature_not_in_plan"
    assert body["upgrade_required"] is True

    response = await client.get(
        f"/api/v1/tenants/{tenant_alpha.id}/capabilities/manage_venues", params={"quantity": 1}, headers=headers
    )
    assert response.json()["allowed"] is True
    assert response.json()["maximum"] == 1


async def test_features_endpoint(client, tenant_alpha, alpha_headers):
    response = await client.get(f"/api/v1/tenants/{tenant_alpha.id}/features", headers=await alpha_headers())
    assert response.status_code == 200
    body = response.json()
    assert body["plan_slug"] == "starter"
    assert body["limits"]["max_users"] == 3


# ── Super-admin console ──────────────────────────────────────────────────────


async def test_console_requires_super_admin(client, alpha_headers):
    response = await client.get("/api/v1/admin/tenants", headers=await alpha_headers())
    assert response.status_code == 403
    assert response.json()["code"] == "PERMISSION_DENIED"


async def test_super_admin_assumes_tenant(client, repo, tenant_alpha, super_admin, password):
    admin = await _login(client, super_admin.email, password, subject_kind="super_admin")

    response = await client.post(
        f"/api/v1/admin/tenants/{tenant_alpha.id}/assume",
        json={"reason": "Support ticket 4411"},
        headers=_bearer(admin),
    )
    assert response.status_code == 200
    assumed = response.json()
    assert assumed["principal"]["assumed"] is True
    assert assumed["principal"]["tenant_id"] == tenant_alpha.id

    response = await client.get(f"/api/v1/tenants/{tenant_alpha.id}/users", headers=_bearer(assumed))
    assert response.status_code == 200

    response = await client.get(
        "/api/v1/admin/audit-events", params={"tenant_id": tenant_alpha.id}, headers=_bearer(admin)
    )
    assert [e["action"] for e in response.json()] == ["tenant.assumed"]


async def test_suspend_tenant_ends_member_sessions(client, tenant_alpha, alpha_admin, super_admin, password):
    member = await _login(client, alpha_admin.email, password, tenant_alpha.slug)
    admin = await _login(client, super_admin.email, password, subject_kind="super_admin")

    response = await client.patch(
        f"/api/v1/admin/tenants/{tenant_alpha.id}/status", json={"status": "suspended"}, headers=_bearer(admin)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "suspended"

    response = await client.get("/api/v1/auth/me", headers=_bearer(member))
    assert response.status_code == 401


# ── Onboarding ───────────────────────────────────────────────────────────────


async def test_signup_then_create_tenant(client, password):
    response = await client.post(
        "/api/v1/auth/signup", json={"email": "founder@venue.com", "password": password, "name": "Founder"}
    )
    assert response.status_code == 201

    platform = await _login(client, "founder@venue.com", password, subject_kind="platform_user")
    response = await client.post(
        "/api/v1/onboarding/tenant", json={"name": "Founder Venue", "slug": "founder-venue"}, headers=_bearer(platform)
    )
    assert response.status_code == 201
    tenant = response.json()
    assert tenant["slug"] == "founder-venue"

    member = await _login(client, "founder@venue.com", password, "founder-venue")
    assert member["principal"]["roles"] == ["tenant_admin"]
    assert member["principal"]["tenant_id"] == tenant["id"]


# ── Privilege escalation ─────────────────────────────────────────────────────


async def test_tenant_admin_cannot_grant_platform_permissions(client, repo, tenant_alpha, alpha_headers):
    response = await client.post(
        f"/api/v1/tenants/{tenant_alpha.id}/users",
        json={"email": "ops@alpha.com", "password": "ops-password-1", "explicit_permissions": ["manage_tenants"]},
        headers=await alpha_headers(),
    )
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "INVALID_REQUEST"
    assert body["field"] == "explicit_permissions"
    assert all(a.email != "ops@alpha.com" for a in repo.accounts.values())


async def test_stored_platform_grant_does_not_open_console(
    client, repo, tenant_alpha, tenant_beta, make_account, password
):
    """A tenant user row carrying a platform grant still cannot reach the console."""
    await make_account(
        SubjectKind.tenant_user,
        "ops@alpha.com",
        tenant_id=tenant_alpha.id,
        roles=["tenant_user"],
        explicit_permissions=["manage_tenants", "view_audit_log"],
    )
    session = await _login(client, "ops@alpha.com", password, tenant_alpha.slug)
    assert "manage_tenants" not in session["principal"]["permissions"]

    response = await client.patch(
        f"/api/v1/admin/tenants/{tenant_beta.id}/status", json={"status": "suspended"}, headers=_bearer(session)
    )
    assert response.status_code == 403
    assert response.json()["code"] == "PERMISSION_DENIED"
    assert repo.tenants[tenant_beta.id].status == "active"


async def test_console_dependency_requires_super_admin(tenant_alpha):
    now = datetime.now(timezone.utc)
    forged = Principal(
        subject_id="forged-user",
        subject_kind=SubjectKind.tenant_user,
        tenant_id=tenant_alpha.id,
        roles=frozenset(["tenant_admin"]),
        permissions=resolve_permissions(["super_admin"]),
        issued_at=now,
        expires_at=now + timedelta(hours=1),
    )
    with pytest.raises(PermissionDenied):
        await require_permission("manage_tenants")(principal=forged)
