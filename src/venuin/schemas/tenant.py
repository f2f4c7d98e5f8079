"""Pydantic schemas for tenant administration, plans, onboarding and venues."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, EmailStr, Field

TenantStatus = Literal["pending", "active", "suspended", "cancelled"]
PlanStatus = Literal["active", "draft", "archived"]


# ── Tenants ──────────────────────────────────────────────────────────────────


class TenantCreate(BaseModel):
    """Super-admin request to create a tenant with its first admin."""

    name: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., description="3-30 chars, lowercase alphanumeric and hyphens")
    plan_slug: str = Field(..., min_length=1)
    admin_email: EmailStr
    admin_password: str = Field(..., min_length=8)
    admin_name: str | None = None


class TenantResponse(BaseModel):
    id: str
    name: str
    slug: str
    status: str
    plan_id: str | None = None
    created_at: datetime | None = None


class TenantStatusUpdate(BaseModel):
    status: TenantStatus


class TenantPlanUpdate(BaseModel):
    plan_slug: str = Field(..., min_length=1)


class AssumeTenantRequest(BaseModel):
    reason: str = Field(..., description="Why the tenant is being accessed (min 10 chars)")


class RevokedSessionsResponse(BaseModel):
    revoked: int


# ── Plans ────────────────────────────────────────────────────────────────────


class PlanCreate(BaseModel):
    slug: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    price_monthly: int = Field(0, ge=0)
    price_yearly: int = Field(0, ge=0)
    status: PlanStatus = "active"
    features: dict[str, bool] = Field(default_factory=dict)
    limits: dict[str, int] = Field(default_factory=dict)


class PlanUpdate(BaseModel):
    """Partial update. ``features`` and ``limits`` replace the whole map."""

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    price_monthly: int | None = Field(None, ge=0)
    price_yearly: int | None = Field(None, ge=0)
    status: PlanStatus | None = None
    features: dict[str, bool] | None = None
    limits: dict[str, int] | None = None


class PlanResponse(BaseModel):
    id: str
    slug: str
    name: str
    description: str | None = None
    price_monthly: int
    price_yearly: int
    status: str
    features: dict[str, Any]
    limits: dict[str, int]


# ── Tenant users ─────────────────────────────────────────────────────────────


class TenantUserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    name: str | None = Field(None, max_length=200)
    roles: list[str] = Field(default_factory=lambda: ["tenant_user"])
    explicit_permissions: list[str] = Field(default_factory=list)


class TenantUserResponse(BaseModel):
    id: str
    tenant_id: str
    email: str
    name: str | None = None
    roles: list[str]
    explicit_permissions: list[str]
    is_active: bool


class CustomerCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    name: str | None = Field(None, max_length=200)


class CustomerResponse(BaseModel):
    id: str
    tenant_id: str
    email: str
    name: str | None = None
    is_active: bool


# ── Features / capabilities ──────────────────────────────────────────────────


class UsageEntry(BaseModel):
    current: int
    maximum: int


class TenantFeaturesResponse(BaseModel):
    tenant_id: str
    plan_slug: str | None = None
    features: dict[str, bool]
    limits: dict[str, int]
    usage: dict[str, UsageEntry]


class CapabilityCheckResponse(BaseModel):
    capability: str
    allowed: bool
    code: str | None = None
    reason: str | None = None
    message: str | None = None
    upgrade_required: bool = False
    limit: str | None = None
    current: int | None = None
    maximum: int | None = None


# ── Onboarding ───────────────────────────────────────────────────────────────


class OnboardingTenantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    slug: str


# ── Venues / bookings ────────────────────────────────────────────────────────


class VenueCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class VenueResponse(BaseModel):
    id: str
    tenant_id: str
    name: str
    created_at: datetime | None = None


class BookingCreate(BaseModel):
    venue_id: str
    title: str = Field(..., min_length=1, max_length=200)


class BookingResponse(BaseModel):
    id: str
    tenant_id: str
    venue_id: str
    title: str
    created_at: datetime | None = None


# ── Audit ────────────────────────────────────────────────────────────────────


class AuditEventResponse(BaseModel):
    id: str
    tenant_id: str | None = None
    actor_id: str | None = None
    actor_kind: str | None = None
    action: str
    target_id: str | None = None
    reason: str | None = None
    details: dict[str, Any]
    created_at: datetime | None = None
