"""Tests for the tenant-scoping guard."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from src.venuin.auth.guard import authorize_tenant_access
from src.venuin.auth.permissions import resolve_permissions
from src.venuin.auth.principal import Principal, SubjectKind
from src.venuin.core.errors import CrossTenantDenied

TENANT_A = str(uuid.uuid4())
TENANT_B = str(uuid.uuid4())


def _principal(kind: SubjectKind, tenant_id: str | None, roles: list[str]) -> Principal:
    now = datetime.now(timezone.utc)
    return Principal(
        subject_id=str(uuid.uuid4()),
        subject_kind=kind,
        tenant_id=tenant_id,
        roles=frozenset(roles),
        permissions=resolve_permissions(roles),
        issued_at=now,
        expires_at=now + timedelta(hours=1),
    )


def test_same_tenant_allowed():
    principal = _principal(SubjectKind.tenant_user, TENANT_A, ["tenant_admin"])
    authorize_tenant_access(principal, TENANT_A)


def test_other_tenant_denied():
    principal = _principal(SubjectKind.tenant_user, TENANT_A, ["tenant_admin"])
    with pytest.raises(CrossTenantDenied) as exc_info:
        authorize_tenant_access(principal, TENANT_B)
    assert exc_info.value.status_code == 403
    assert exc_info.value.code == "CROSS_TENANT_DENIED"


def test_customer_bound_like_tenant_user():
    customer = _principal(SubjectKind.customer, TENANT_A, ["customer"])
    authorize_tenant_access(customer, TENANT_A)
    with pytest.raises(CrossTenantDenied):
        authorize_tenant_access(customer, TENANT_B)


def test_resource_without_tenant_is_not_global():
    principal = _principal(SubjectKind.tenant_user, TENANT_A, ["tenant_admin"])
    with pytest.raises(CrossTenantDenied):
        authorize_tenant_access(principal, None)


def test_principal_without_tenant_denied():
    """Platform users own no tenant data until they sign in to one."""
    platform_user = _principal(SubjectKind.platform_user, None, ["platform_user"])
    with pytest.raises(CrossTenantDenied):
        authorize_tenant_access(platform_user, TENANT_A)


def test_super_admin_allowed_everywhere():
    admin = _principal(SubjectKind.super_admin, None, ["super_admin"])
    authorize_tenant_access(admin, TENANT_A)
    authorize_tenant_access(admin, TENANT_B)
    authorize_tenant_access(admin, None)


def test_assumed_super_admin_still_allowed_everywhere():
    admin = _principal(SubjectKind.super_admin, TENANT_A, ["super_admin"])
    authorize_tenant_access(admin, TENANT_B)


def test_super_admin_role_on_tenant_user_does_not_bypass():
    """Bypass depends on the subject kind, not on a role string."""
    principal = _principal(SubjectKind.tenant_user, TENANT_A, ["super_admin"])
    with pytest.raises(CrossTenantDenied):
        authorize_tenant_access(principal, TENANT_B)


def test_dev_override_super_admin_bypasses():
    principal = _principal(SubjectKind.dev_override, None, ["super_admin"])
    authorize_tenant_access(principal, TENANT_B)


def test_dev_override_tenant_role_is_scoped():
    principal = _principal(SubjectKind.dev_override, TENANT_A, ["tenant_admin"])
    authorize_tenant_access(principal, TENANT_A)
    with pytest.raises(CrossTenantDenied):
        authorize_tenant_access(principal, TENANT_B)
