"""Tenant-scoped administration endpoints.

Every route carries the tenant in its path and runs the tenant guard
before anything else, so a caller from another tenant gets
CROSS_TENANT_DENIED without learning whether the resource exists.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.venuin.api.deps import get_gate, get_store, require_tenant_access
from src.venuin.auth.gate import CapabilityGate
from src.venuin.auth.principal import Principal
from src.venuin.core.errors import PermissionDenied, PlanLimitExceeded
from src.venuin.schemas.tenant import (
    CapabilityCheckResponse,
    CustomerCreate,
    CustomerResponse,
    TenantFeaturesResponse,
    TenantUserCreate,
    TenantUserResponse,
)
from src.venuin.services import tenants as tenant_service
from src.venuin.storage.records import AccountRecord
from src.venuin.storage.repository import AccessStore

router = APIRouter(prefix="/api/v1/tenants", tags=["tenants"])


def _user_response(user: AccountRecord) -> TenantUserResponse:
    return TenantUserResponse(
        id=user.id,
        tenant_id=user.tenant_id,
        email=user.email,
        name=user.name,
        roles=user.roles,
        explicit_permissions=user.explicit_permissions,
        is_active=user.is_active,
    )


@router.get("/{tenant_id}/users", response_model=list[TenantUserResponse])
async def list_users(
    tenant_id: str,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_tenant_access),
):
    users = await tenant_service.list_tenant_users(store, principal, tenant_id)
    return [_user_response(u) for u in users]


@router.post("/{tenant_id}/users", response_model=TenantUserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    tenant_id: str,
    body: TenantUserCreate,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_tenant_access),
):
    """Add a user; counts against the plan's ``max_users``."""
    user = await tenant_service.create_tenant_user(
        store,
        principal,
        tenant_id,
        email=body.email,
        password=body.password,
        name=body.name,
        roles=body.roles,
        explicit_permissions=body.explicit_permissions,
    )
    return _user_response(user)


@router.post("/{tenant_id}/users/{user_id}/deactivate", response_model=TenantUserResponse)
async def deactivate_user(
    tenant_id: str,
    user_id: str,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_tenant_access),
):
    """Deactivate a user and revoke all of their sessions."""
    user = await tenant_service.deactivate_tenant_user(store, principal, tenant_id, user_id)
    return _user_response(user)


@router.post("/{tenant_id}/customers", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    tenant_id: str,
    body: CustomerCreate,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_tenant_access),
):
    customer = await tenant_service.create_customer(
        store, principal, tenant_id, email=body.email, password=body.password, name=body.name
    )
    return CustomerResponse(
        id=customer.id,
        tenant_id=customer.tenant_id,
        email=customer.email,
        name=customer.name,
        is_active=customer.is_active,
    )


@router.get("/{tenant_id}/features", response_model=TenantFeaturesResponse)
async def get_features(
    tenant_id: str,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(require_tenant_access),
):
    """Plan features, limits and usage, for rendering upgrade prompts."""
    return await tenant_service.tenant_features(store, principal, tenant_id)


@router.get("/{tenant_id}/capabilities/{capability}", response_model=CapabilityCheckResponse)
async def check_capability(
    tenant_id: str,
    capability: str,
    quantity: int = 0,
    principal: Principal = Depends(require_tenant_access),
    gate: CapabilityGate = Depends(get_gate),
):
    """Dry-run the gate. Nothing is reserved."""
    try:
        grant = await gate.check_capability(principal, capability, quantity, tenant_id=tenant_id)
    except PermissionDenied as e:
        return CapabilityCheckResponse(
            capability=capability,
            allowed=False,
            code=e.code,
            reason=e.reason,
            message=e.message,
            upgrade_required=e.details["upgrade_required"],
        )
    except PlanLimitExceeded as e:
        return CapabilityCheckResponse(
            capability=capability,
            allowed=False,
            code=e.code,
            reason="limit_reached",
            message=e.message,
            upgrade_required=True,
            limit=e.details["limit"],
            current=e.details["current"],
            maximum=e.details["maximum"],
        )
    return CapabilityCheckResponse(
        capability=capability,
        allowed=True,
        limit=grant.limit,
        current=grant.current,
        maximum=grant.maximum,
    )
