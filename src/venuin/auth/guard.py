"""Tenant-scoping guard and platform-permission check."""

from __future__ import annotations

import structlog

from src.venuin.auth.permissions import PLATFORM_PERMISSIONS
from src.venuin.auth.principal import Principal
from src.venuin.core.errors import CrossTenantDenied, PermissionDenied
from src.venuin.core.monitoring import record_decision

logger = structlog.get_logger(__name__)


def authorize_tenant_access(principal: Principal, resource_tenant_id: str | None) -> None:
    """Allow the principal to touch a resource owned by ``resource_tenant_id``.

    Super admins pass for every tenant. Everyone else passes only when both
    tenant ids are present and equal; a resource without a tenant is not
    treated as global.

    Raises:
        CrossTenantDenied: On any mismatch.
    """
    if principal.is_super_admin:
        record_decision("tenant_guard", "allow", "super_admin")
        return

    if (
        principal.tenant_id is None
        or resource_tenant_id is None
        or str(principal.tenant_id) != str(resource_tenant_id)
    ):
        record_decision("tenant_guard", "deny", principal.subject_kind.value)
        logger.warning(
            "authz.cross_tenant_denied",
            subject_id=principal.subject_id,
            subject_kind=principal.subject_kind.value,
            principal_tenant_id=principal.tenant_id,
            resource_tenant_id=resource_tenant_id,
        )
        raise CrossTenantDenied()

    record_decision("tenant_guard", "allow", principal.subject_kind.value)


def authorize_permission(principal: Principal, permission: str) -> None:
    """Require ``permission``; platform permissions also require a super admin.

    Raises:
        PermissionDenied: The permission is missing, or it is a platform
            permission held by anyone other than a super admin.
    """
    if not principal.has_permission(permission) or (
        permission in PLATFORM_PERMISSIONS and not principal.is_super_admin
    ):
        record_decision("permission", "deny", permission)
        logger.warning(
            "authz.permission_denied",
            subject_id=principal.subject_id,
            subject_kind=principal.subject_kind.value,
            permission=permission,
        )
        raise PermissionDenied(permission)
    record_decision("permission", "allow", permission)
