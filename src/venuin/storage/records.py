"""Read models returned by access stores.

Stores hand these Pydantic records to the auth core instead of ORM rows, so
the resolver, guard, gate and session manager never hold a live SQLAlchemy
object and a test double can return the same types.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from src.venuin.auth.principal import SubjectKind


class PlanRecord(BaseModel):
    id: str
    slug: str
    name: str
    description: str | None = None
    price_monthly: int = 0
    price_yearly: int = 0
    status: str = "active"
    features: dict[str, Any] = Field(default_factory=dict)
    limits: dict[str, int] = Field(default_factory=dict)
    created_at: datetime | None = None


class TenantRecord(BaseModel):
    id: str
    name: str
    slug: str
    status: str
    plan_id: str | None = None
    owner_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class AccountRecord(BaseModel):
    """Any subject that can hold a session: tenant user, customer,
    platform user or super admin."""

    id: str
    kind: SubjectKind
    tenant_id: str | None = None
    email: str
    name: str | None = None
    password_hash: str | None = None
    roles: list[str] = Field(default_factory=list)
    explicit_permissions: list[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime | None = None


class SessionRecord(BaseModel):
    id: str
    token_hash: str
    subject_id: str
    subject_kind: SubjectKind
    tenant_id: str | None = None
    assumed: bool = False
    created_at: datetime
    expires_at: datetime
    revoked_at: datetime | None = None
    replaced_by: str | None = None

    def is_live(self, now: datetime) -> bool:
        """Honored only if never revoked and not yet expired."""
        return self.revoked_at is None and self.expires_at > now


class VenueRecord(BaseModel):
    id: str
    tenant_id: str
    name: str
    created_at: datetime | None = None


class BookingRecord(BaseModel):
    id: str
    tenant_id: str
    venue_id: str
    title: str
    created_at: datetime | None = None


class AuditRecord(BaseModel):
    id: str
    tenant_id: str | None = None
    actor_id: str | None = None
    actor_kind: str | None = None
    action: str
    target_id: str | None = None
    reason: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
