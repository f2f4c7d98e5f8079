"""Super-admin console endpoints.

Tenant lifecycle, plan catalog, tenant assumption and forced sign-out.
Each route requires the matching platform permission; tenant assumption
additionally requires a persisted super-admin account.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from src.venuin.api.deps import get_principal, get_session_manager, get_store, require_permission
from src.venuin.auth.principal import Principal
from src.venuin.auth.sessions import SessionManager
from src.venuin.schemas.auth import SessionResponse
from src.venuin.schemas.tenant import (
    AssumeTenantRequest,
    AuditEventResponse,
    PlanCreate,
    PlanResponse,
    PlanUpdate,
    RevokedSessionsResponse,
    TenantCreate,
    TenantPlanUpdate,
    TenantResponse,
    TenantStatusUpdate,
)
from src.venuin.services import tenants as tenant_service
from src.venuin.storage.repository import AccessStore

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


def _tenant_response(tenant) -> TenantResponse:
    return TenantResponse(**tenant.model_dump(include=set(TenantResponse.model_fields)))


def _plan_response(plan) -> PlanResponse:
    return PlanResponse(**plan.model_dump(include=set(PlanResponse.model_fields)))


# ── Tenants ─────────────────────────────────────────────────────────────────


@router.post("/tenants", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    body: TenantCreate,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_permission("manage_tenants")),
):
    """Create a tenant on a plan together with its first tenant admin."""
    tenant, _ = await tenant_service.create_tenant(
        store,
        principal,
        name=body.name,
        slug=body.slug,
        plan_slug=body.plan_slug,
        admin_email=body.admin_email,
        admin_password=body.admin_password,
        admin_name=body.admin_name,
    )
    return _tenant_response(tenant)


@router.get("/tenants", response_model=list[TenantResponse])
async def list_tenants(
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_permission("manage_tenants")),
):
    tenants = await tenant_service.list_tenants(store, principal)
    return [_tenant_response(t) for t in tenants]


@router.patch("/tenants/{tenant_id}/status", response_model=TenantResponse)
async def set_tenant_status(
    tenant_id: str,
    body: TenantStatusUpdate,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_permission("manage_tenants")),
):
    """Suspending or cancelling a tenant signs out everyone bound to it."""
    tenant = await tenant_service.set_tenant_status(store, principal, tenant_id, body.status)
    return _tenant_response(tenant)


@router.put("/tenants/{tenant_id}/plan", response_model=TenantResponse)
async def change_tenant_plan(
    tenant_id: str,
    body: TenantPlanUpdate,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_permission("manage_tenants")),
):
    tenant = await tenant_service.change_tenant_plan(store, principal, tenant_id, body.plan_slug)
    return _tenant_response(tenant)


@router.post("/tenants/{tenant_id}/assume", response_model=SessionResponse)
async def assume_tenant(
    tenant_id: str,
    body: AssumeTenantRequest,
    principal: Principal = Depends(get_principal),
    sessions: SessionManager = Depends(get_session_manager),
):
    """Issue a short-lived, audited session scoped to one tenant."""
    issued = await sessions.assume_tenant(principal, tenant_id, body.reason)
    return SessionResponse.from_issued(issued)


@router.post("/tenants/{tenant_id}/sessions/revoke", response_model=RevokedSessionsResponse)
async def revoke_tenant_sessions(
    tenant_id: str,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_permission("manage_tenants")),
):
    revoked = await tenant_service.revoke_tenant_sessions(store, principal, tenant_id)
    return RevokedSessionsResponse(revoked=revoked)


# ── Plans ───────────────────────────────────────────────────────────────────


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans(
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_permission("manage_plans")),
):
    plans = await tenant_service.list_plans(store)
    return [_plan_response(p) for p in plans]


@router.post("/plans", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def create_plan(
    body: PlanCreate,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_permission("manage_plans")),
):
    plan = await tenant_service.create_plan(store, principal, **body.model_dump())
    return _plan_response(plan)


@router.put("/plans/{slug}", response_model=PlanResponse)
async def update_plan(
    slug: str,
    body: PlanUpdate,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_permission("manage_plans")),
):
    """Update a plan; ``features`` and ``limits`` replace the stored maps."""
    plan = await tenant_service.update_plan(store, principal, slug, **body.model_dump(exclude_unset=True))
    return _plan_response(plan)


# ── Audit ───────────────────────────────────────────────────────────────────


@router.get("/audit-events", response_model=list[AuditEventResponse])
async def list_audit_events(
    tenant_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_permission("view_audit_log")),
):
    events = await tenant_service.list_audit_events(store, principal, tenant_id=tenant_id, limit=limit)
    return [AuditEventResponse(**e.model_dump()) for e in events]
