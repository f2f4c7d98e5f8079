"""Self-service onboarding: public signup and first-tenant creation."""

from __future__ import annotations

import structlog

from src.venuin.auth.gate import CapabilityGate
from src.venuin.auth.permissions import TENANT_ADMIN
from src.venuin.auth.principal import Principal, SubjectKind
from src.venuin.auth.sessions import normalize_email
from src.venuin.config import Settings, get_settings
from src.venuin.core.errors import Conflict, InvalidRequest, NotFound, PermissionDenied
from src.venuin.core.security import hash_password
from src.venuin.services.tenants import validate_slug
from src.venuin.storage.records import AccountRecord, TenantRecord
from src.venuin.storage.repository import AccessStore

logger = structlog.get_logger(__name__)


async def signup(store: AccessStore, email: str, password: str, name: str | None = None) -> AccountRecord:
    """Create a platform user. Platform users belong to no tenant."""
    email = normalize_email(email)
    if await store.find_account(SubjectKind.platform_user, email) is not None:
        raise Conflict("An account with this email already exists")
    account = await store.create_account(
        SubjectKind.platform_user,
        email,
        password_hash=hash_password(password),
        name=name,
    )
    await store.add_audit_event(
        "platform_user.signup",
        actor_id=account.id,
        actor_kind=SubjectKind.platform_user.value,
        target_id=account.id,
    )
    logger.info("onboarding.signup", subject_id=account.id)
    return account


async def create_own_tenant(
    store: AccessStore,
    principal: Principal,
    name: str,
    slug: str,
    settings: Settings | None = None,
) -> tuple[TenantRecord, AccountRecord]:
    """Create the caller's tenant on the default plan.

    The platform user becomes the tenant's first ``tenant_admin`` with the
    same email and password. Each platform user can own one tenant.

    Raises:
        PermissionDenied: Not a platform user, or lacking ``create_tenant``.
        Conflict: The caller already owns a tenant, or the slug is taken.
        NotFound: The default plan has not been seeded.
    """
    settings = settings or get_settings()
    if principal.subject_kind != SubjectKind.platform_user:
        raise PermissionDenied("create_tenant")
    await CapabilityGate(store).authorize_capability(principal, "create_tenant")
    validate_slug(slug)

    owner = await store.get_account(SubjectKind.platform_user, principal.subject_id)
    if owner is None or not owner.is_active:
        raise PermissionDenied("create_tenant")
    if not owner.password_hash:
        raise InvalidRequest("Set a password before creating an organization")
    if await store.get_tenant_by_owner(owner.id) is not None:
        raise Conflict("You already own an organization")
    if await store.get_tenant_by_slug(slug) is not None:
        raise Conflict(f"Tenant with slug '{slug}' already exists")

    plan = await store.get_plan_by_slug(settings.DEFAULT_PLAN_SLUG)
    if plan is None or plan.status != "active":
        raise NotFound(f"Default plan '{settings.DEFAULT_PLAN_SLUG}' is not available")

    tenant = await store.create_tenant(
        name=name,
        slug=slug,
        plan_id=plan.id,
        status="active",
        owner_id=owner.id,
    )
    admin = await store.create_account(
        SubjectKind.tenant_user,
        owner.email,
        password_hash=owner.password_hash,
        tenant_id=tenant.id,
        name=owner.name,
        roles=[TENANT_ADMIN],
    )
    await store.add_audit_event(
        "tenant.onboarded",
        tenant_id=tenant.id,
        actor_id=owner.id,
        actor_kind=SubjectKind.platform_user.value,
        target_id=tenant.id,
        details={"slug": slug, "plan": plan.slug, "admin_id": admin.id},
    )
    logger.info("onboarding.tenant_created", tenant_id=tenant.id, slug=slug, owner_id=owner.id)
    return tenant, admin
