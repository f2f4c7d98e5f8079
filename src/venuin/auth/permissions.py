"""Role catalog and permission-set resolution.

A principal's permissions are the union of what its roles grant and its
explicit grants. Explicit grants only ever add. Legacy single-word grants
still stored on older accounts (``venues``, ``use_ai_features``, ...) are
expanded to the permissions they stood for.
"""

from __future__ import annotations

from collections.abc import Iterable

# ── Roles ────────────────────────────────────────────────────────────────────

SUPER_ADMIN = "super_admin"
TENANT_ADMIN = "tenant_admin"
MANAGER = "manager"
TENANT_USER = "tenant_user"
CUSTOMER = "customer"
PLATFORM_USER = "platform_user"

# Roles a tenant admin may hand out to the tenant's own users
TENANT_ROLES = frozenset({TENANT_ADMIN, MANAGER, TENANT_USER})

# ── Permissions ──────────────────────────────────────────────────────────────

AI_PERMISSIONS = frozenset({
    "voice_booking",
    "ai_scheduling",
    "ai_email_replies",
    "ai_lead_scoring",
    "ai_analytics",
    "ai_proposal_generation",
})

TENANT_PERMISSIONS = frozenset({
    "view_dashboard",
    "manage_events",
    "view_events",
    "manage_customers",
    "view_customers",
    "manage_venues",
    "view_venues",
    "manage_payments",
    "view_payments",
    "manage_proposals",
    "view_proposals",
    "manage_settings",
    "view_reports",
    "manage_leads",
    "manage_users",
    "view_users",
}) | AI_PERMISSIONS

PLATFORM_PERMISSIONS = frozenset({
    "manage_tenants",
    "manage_plans",
    "assume_tenant",
    "view_audit_log",
})

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    SUPER_ADMIN: TENANT_PERMISSIONS | PLATFORM_PERMISSIONS,
    TENANT_ADMIN: TENANT_PERMISSIONS,
    MANAGER: TENANT_PERMISSIONS - {"manage_users", "manage_settings", "manage_payments"},
    TENANT_USER: frozenset({
        "view_dashboard",
        "view_events",
        "manage_events",
        "view_customers",
        "manage_customers",
        "view_venues",
        "view_proposals",
        "manage_proposals",
    }),
    CUSTOMER: frozenset({"view_events", "view_proposals", "view_payments"}),
    PLATFORM_USER: frozenset({"create_tenant"}),
}

LEGACY_PERMISSIONS: dict[str, frozenset[str]] = {
    "dashboard": frozenset({"view_dashboard"}),
    "users": frozenset({"view_users", "manage_users"}),
    "venues": frozenset({"view_venues", "manage_venues"}),
    "bookings": frozenset({"view_events", "manage_events"}),
    "customers": frozenset({"view_customers", "manage_customers"}),
    "proposals": frozenset({"view_proposals", "manage_proposals"}),
    "tasks": frozenset({"manage_events"}),
    "payments": frozenset({"view_payments", "manage_payments"}),
    "settings": frozenset({"manage_settings"}),
    "use_ai_features": AI_PERMISSIONS,
}


def expand_grants(grants: Iterable[str]) -> frozenset[str]:
    """Replace legacy grants with the permissions they stand for."""
    expanded: set[str] = set()
    for grant in grants:
        expanded |= LEGACY_PERMISSIONS.get(grant, frozenset({grant}))
    return frozenset(expanded)


def resolve_permissions(roles: Iterable[str], explicit: Iterable[str] = ()) -> frozenset[str]:
    """Union of role-derived permissions and explicit grants.

    Unknown roles grant nothing. Explicit grants are clamped to
    ``TENANT_PERMISSIONS``; platform permissions come only from the
    super-admin role.
    """
    permissions: set[str] = set()
    for role in roles:
        permissions |= ROLE_PERMISSIONS.get(role, frozenset())
    return frozenset(permissions) | (expand_grants(explicit) & TENANT_PERMISSIONS)


def ungrantable(grants: Iterable[str]) -> list[str]:
    """Explicit grants that do not expand to tenant permissions only."""
    return sorted(grant for grant in set(grants) if not expand_grants([grant]) <= TENANT_PERMISSIONS)
