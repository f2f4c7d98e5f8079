"""Self-service onboarding endpoints for platform users."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.venuin.api.deps import get_principal, get_store
from src.venuin.auth.principal import Principal
from src.venuin.config import Settings, get_settings
from src.venuin.schemas.tenant import OnboardingTenantCreate, TenantResponse
from src.venuin.services import onboarding
from src.venuin.storage.repository import AccessStore

router = APIRouter(prefix="/api/v1/onboarding", tags=["onboarding"])


@router.post("/tenant", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_own_tenant(
    body: OnboardingTenantCreate,
    store: AccessStore = Depends(get_store, scope="function"),
    principal: Principal = Depends(get_principal),
    settings: Settings = Depends(get_settings),
):
    """Create the caller's organization on the default plan.

    The caller then signs in to it as tenant admin with the same email and
    password.
    """
    tenant, _ = await onboarding.create_own_tenant(store, principal, body.name, body.slug, settings=settings)
    return TenantResponse(**tenant.model_dump(include=set(TenantResponse.model_fields)))
