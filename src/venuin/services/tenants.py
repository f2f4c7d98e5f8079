"""Tenant administration service.

Super-admin console operations (tenants, plan catalog) and tenant-admin
user management. Every mutation writes an audit event in the same unit of
work as the change itself.
"""

from __future__ import annotations

import re
from typing import Any

import structlog

from src.venuin.auth.gate import CapabilityGate
from src.venuin.auth.guard import authorize_permission, authorize_tenant_access
from src.venuin.auth.permissions import TENANT_ADMIN, TENANT_ROLES, ungrantable
from src.venuin.auth.plans import (
    DEFAULT_PLANS,
    FEATURES,
    LIMIT_KEYS,
    MAX_BOOKINGS_PER_MONTH,
    MAX_USERS,
    MAX_VENUES,
    feature_enabled,
    limit_for,
    usage_period_start,
    validate_plan_maps,
)
from src.venuin.auth.principal import Principal, SubjectKind
from src.venuin.auth.sessions import SessionManager, normalize_email
from src.venuin.core.errors import Conflict, InvalidRequest, NotFound
from src.venuin.core.security import hash_password
from src.venuin.storage.records import AccountRecord, AuditRecord, PlanRecord, TenantRecord
from src.venuin.storage.repository import AccessStore

logger = structlog.get_logger(__name__)

# Lowercase alphanumeric + hyphens, 3-30 chars, alphanumeric at both ends
SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{1,28}[a-z0-9]$")

TENANT_STATUSES = ("pending", "active", "suspended", "cancelled")
# Statuses that end every session bound to the tenant
REVOKING_STATUSES = frozenset({"suspended", "cancelled"})
# Limits backed by a usage count
COUNTED_LIMITS = (MAX_USERS, MAX_VENUES, MAX_BOOKINGS_PER_MONTH)


def validate_slug(slug: str) -> str:
    if not SLUG_PATTERN.match(slug):
        raise InvalidRequest(
            "Slug must be 3-30 chars, lowercase alphanumeric and hyphens only, "
            "and must start and end with an alphanumeric character.",
            field="slug",
        )
    return slug


async def _active_plan(store: AccessStore, plan_slug: str) -> PlanRecord:
    plan = await store.get_plan_by_slug(plan_slug)
    if plan is None:
        raise NotFound(f"Plan '{plan_slug}' not found")
    if plan.status != "active":
        raise InvalidRequest(f"Plan '{plan_slug}' is not available", field="plan_slug")
    return plan


# ── Tenants ─────────────────────────────────────────────────────────────────


async def create_tenant(
    store: AccessStore,
    actor: Principal,
    name: str,
    slug: str,
    plan_slug: str,
    admin_email: str,
    admin_password: str,
    admin_name: str | None = None,
) -> tuple[TenantRecord, AccountRecord]:
    """Create an active tenant together with its first tenant admin.

    Raises:
        PermissionDenied: The actor is not a super admin holding ``manage_tenants``.
        InvalidRequest: Bad slug, or the plan is not active.
        NotFound: Unknown plan.
        Conflict: The slug is taken.
    """
    authorize_permission(actor, "manage_tenants")
    validate_slug(slug)
    plan = await _active_plan(store, plan_slug)
    if await store.get_tenant_by_slug(slug) is not None:
        raise Conflict(f"Tenant with slug '{slug}' already exists")

    tenant = await store.create_tenant(name=name, slug=slug, plan_id=plan.id, status="active")
    admin = await store.create_account(
        SubjectKind.tenant_user,
        normalize_email(admin_email),
        password_hash=hash_password(admin_password),
        tenant_id=tenant.id,
        name=admin_name,
        roles=[TENANT_ADMIN],
    )
    await store.add_audit_event(
        "tenant.created",
        tenant_id=tenant.id,
        actor_id=actor.subject_id,
        actor_kind=actor.subject_kind.value,
        target_id=tenant.id,
        details={"slug": slug, "plan": plan.slug, "admin_id": admin.id},
    )
    logger.info("tenant.created", tenant_id=tenant.id, slug=slug, plan=plan.slug)
    return tenant, admin


async def list_tenants(store: AccessStore, actor: Principal) -> list[TenantRecord]:
    authorize_permission(actor, "manage_tenants")
    return await store.list_tenants()


async def set_tenant_status(store: AccessStore, actor: Principal, tenant_id: str, status: str) -> TenantRecord:
    """Change a tenant's lifecycle status.

    Suspending or cancelling revokes every session bound to the tenant,
    including assumed super-admin sessions.
    """
    authorize_permission(actor, "manage_tenants")
    if status not in TENANT_STATUSES:
        raise InvalidRequest(f"Unknown tenant status '{status}'", field="status")
    previous = await store.get_tenant(tenant_id)
    if previous is None:
        raise NotFound("Tenant not found")

    tenant = await store.set_tenant_status(tenant_id, status)
    revoked = 0
    if status in REVOKING_STATUSES:
        revoked = await SessionManager(store).revoke_tenant_sessions(tenant_id, cause=f"tenant_{status}")

    await store.add_audit_event(
        "tenant.status_changed",
        tenant_id=tenant_id,
        actor_id=actor.subject_id,
        actor_kind=actor.subject_kind.value,
        target_id=tenant_id,
        details={"from": previous.status, "to": status, "sessions_revoked": revoked},
    )
    logger.info("tenant.status_changed", tenant_id=tenant_id, status=status, sessions_revoked=revoked)
    return tenant


async def change_tenant_plan(store: AccessStore, actor: Principal, tenant_id: str, plan_slug: str) -> TenantRecord:
    """Swap the tenant's plan. Only active plans may be assigned."""
    authorize_permission(actor, "manage_tenants")
    plan = await _active_plan(store, plan_slug)
    previous = await store.get_tenant(tenant_id)
    if previous is None:
        raise NotFound("Tenant not found")

    tenant = await store.set_tenant_plan(tenant_id, plan.id)
    await store.add_audit_event(
        "tenant.plan_changed",
        tenant_id=tenant_id,
        actor_id=actor.subject_id,
        actor_kind=actor.subject_kind.value,
        target_id=tenant_id,
        details={"from_plan_id": previous.plan_id, "to_plan": plan.slug},
    )
    logger.info("tenant.plan_changed", tenant_id=tenant_id, plan=plan.slug)
    return tenant


async def revoke_tenant_sessions(store: AccessStore, actor: Principal, tenant_id: str) -> int:
    """Forced sign-out of everyone bound to a tenant."""
    authorize_permission(actor, "manage_tenants")
    if await store.get_tenant(tenant_id) is None:
        raise NotFound("Tenant not found")
    revoked = await SessionManager(store).revoke_tenant_sessions(tenant_id, cause="forced")
    await store.add_audit_event(
        "tenant.sessions_revoked",
        tenant_id=tenant_id,
        actor_id=actor.subject_id,
        actor_kind=actor.subject_kind.value,
        target_id=tenant_id,
        details={"count": revoked},
    )
    return revoked


# ── Plan catalog ────────────────────────────────────────────────────────────


def _check_plan_maps(features: dict[str, Any], limits: dict[str, Any]) -> None:
    problems = validate_plan_maps(features, limits)
    if problems:
        raise InvalidRequest("Invalid plan definition", problems=problems)


async def list_plans(store: AccessStore) -> list[PlanRecord]:
    return await store.list_plans()


async def create_plan(store: AccessStore, actor: Principal, **fields: Any) -> PlanRecord:
    authorize_permission(actor, "manage_plans")
    _check_plan_maps(fields.get("features") or {}, fields.get("limits") or {})
    plan = await store.create_plan(**fields)
    await store.add_audit_event(
        "plan.created",
        actor_id=actor.subject_id,
        actor_kind=actor.subject_kind.value,
        target_id=plan.id,
        details={"slug": plan.slug},
    )
    return plan


async def update_plan(store: AccessStore, actor: Principal, slug: str, **fields: Any) -> PlanRecord:
    """Update a plan. ``features`` and ``limits`` replace the stored maps."""
    authorize_permission(actor, "manage_plans")
    changes = {key: value for key, value in fields.items() if value is not None}
    if not changes:
        raise InvalidRequest("No changes given")
    existing = await store.get_plan_by_slug(slug)
    if existing is None:
        raise NotFound(f"Plan '{slug}' not found")
    _check_plan_maps(
        changes.get("features", existing.features),
        changes.get("limits", existing.limits),
    )
    plan = await store.update_plan(slug, **changes)
    await store.add_audit_event(
        "plan.updated",
        actor_id=actor.subject_id,
        actor_kind=actor.subject_kind.value,
        target_id=plan.id,
        details={"slug": slug, "fields": sorted(changes)},
    )
    logger.info("plan.updated", slug=slug, fields=sorted(changes))
    return plan


async def seed_default_plans(store: AccessStore) -> list[PlanRecord]:
    """Insert the Starter / Professional / Enterprise catalog where missing."""
    created = []
    for definition in DEFAULT_PLANS:
        if await store.get_plan_by_slug(definition["slug"]) is not None:
            continue
        created.append(await store.create_plan(**definition, status="active"))
        logger.info("plan.seeded", slug=definition["slug"])
    return created


# ── Tenant users ────────────────────────────────────────────────────────────


async def create_tenant_user(
    store: AccessStore,
    actor: Principal,
    tenant_id: str,
    email: str,
    password: str,
    name: str | None = None,
    roles: list[str] | None = None,
    explicit_permissions: list[str] | None = None,
) -> AccountRecord:
    """Add a user to a tenant; reserves one unit of ``max_users``."""
    authorize_tenant_access(actor, tenant_id)
    roles = list(roles or ["tenant_user"])
    unknown = sorted(set(roles) - TENANT_ROLES)
    if unknown:
        raise InvalidRequest(f"Roles not assignable to tenant users: {', '.join(unknown)}", field="roles")
    explicit_permissions = list(explicit_permissions or [])
    rejected = ungrantable(explicit_permissions)
    if rejected:
        raise InvalidRequest(
            f"Permissions not grantable to tenant users: {', '.join(rejected)}",
            field="explicit_permissions",
        )

    await CapabilityGate(store).authorize_capability(actor, "manage_users", 1, tenant_id=tenant_id)
    user = await store.create_account(
        SubjectKind.tenant_user,
        normalize_email(email),
        password_hash=hash_password(password),
        tenant_id=tenant_id,
        name=name,
        roles=roles,
        explicit_permissions=explicit_permissions,
    )
    await store.add_audit_event(
        "tenant_user.created",
        tenant_id=tenant_id,
        actor_id=actor.subject_id,
        actor_kind=actor.subject_kind.value,
        target_id=user.id,
        details={"roles": roles},
    )
    return user


async def create_customer(
    store: AccessStore,
    actor: Principal,
    tenant_id: str,
    email: str,
    password: str,
    name: str | None = None,
) -> AccountRecord:
    authorize_tenant_access(actor, tenant_id)
    await CapabilityGate(store).authorize_capability(actor, "manage_customers", tenant_id=tenant_id)
    customer = await store.create_account(
        SubjectKind.customer,
        normalize_email(email),
        password_hash=hash_password(password),
        tenant_id=tenant_id,
        name=name,
    )
    await store.add_audit_event(
        "customer.created",
        tenant_id=tenant_id,
        actor_id=actor.subject_id,
        actor_kind=actor.subject_kind.value,
        target_id=customer.id,
    )
    return customer


async def deactivate_tenant_user(store: AccessStore, actor: Principal, tenant_id: str, user_id: str) -> AccountRecord:
    """Deactivate a tenant user and sign them out everywhere."""
    authorize_tenant_access(actor, tenant_id)
    await CapabilityGate(store).authorize_capability(actor, "manage_users", tenant_id=tenant_id)

    user = await store.get_account(SubjectKind.tenant_user, user_id)
    if user is None or user.tenant_id != tenant_id:
        raise NotFound("User not found")
    if user.id == actor.subject_id:
        raise InvalidRequest("You cannot deactivate your own account")

    user = await store.set_account_active(SubjectKind.tenant_user, user_id, False)
    revoked = await SessionManager(store).revoke_subject_sessions(
        SubjectKind.tenant_user, user_id, cause="deactivated"
    )
    await store.add_audit_event(
        "tenant_user.deactivated",
        tenant_id=tenant_id,
        actor_id=actor.subject_id,
        actor_kind=actor.subject_kind.value,
        target_id=user_id,
        details={"sessions_revoked": revoked},
    )
    return user


async def list_tenant_users(store: AccessStore, actor: Principal, tenant_id: str) -> list[AccountRecord]:
    authorize_tenant_access(actor, tenant_id)
    await CapabilityGate(store).check_capability(actor, "view_users", tenant_id=tenant_id)
    return await store.list_tenant_users(tenant_id)


async def list_audit_events(
    store: AccessStore, actor: Principal, tenant_id: str | None = None, limit: int = 100
) -> list[AuditRecord]:
    authorize_permission(actor, "view_audit_log")
    return await store.list_audit_events(tenant_id=tenant_id, limit=limit)


async def tenant_features(store: AccessStore, actor: Principal, tenant_id: str) -> dict[str, Any]:
    """Plan features, limits and current usage for a tenant."""
    authorize_tenant_access(actor, tenant_id)
    tenant = await store.get_tenant(tenant_id)
    if tenant is None:
        raise NotFound("Tenant not found")
    plan = await store.get_plan(tenant.plan_id) if tenant.plan_id else None
    features = {key: feature_enabled(plan.features if plan else None, key) for key in FEATURES}
    limits = {key: limit_for(plan.limits if plan else None, key) for key in LIMIT_KEYS}
    since = usage_period_start()
    usage = {}
    for key in COUNTED_LIMITS:
        usage[key] = {"current": await store.count_usage(tenant_id, key, since), "maximum": limits[key]}
    return {
        "tenant_id": tenant_id,
        "plan_slug": plan.slug if plan else None,
        "features": features,
        "limits": limits,
        "usage": usage,
    }
