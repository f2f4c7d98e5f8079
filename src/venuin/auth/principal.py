"""Principal and credential types.

A Principal is rebuilt from persisted state on every request and never
stored. Credentials are a tagged union: the resolver dispatches on the
credential class rather than on which login page the client used.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Union

from src.venuin.auth.permissions import SUPER_ADMIN


class SubjectKind(str, Enum):
    platform_user = "platform_user"
    tenant_user = "tenant_user"
    customer = "customer"
    super_admin = "super_admin"
    dev_override = "dev_override"


# Kinds whose accounts live inside a tenant and log in with a tenant slug
TENANT_BOUND_KINDS = frozenset({SubjectKind.tenant_user, SubjectKind.customer})

# Kinds with their own global account table and no tenant at login
GLOBAL_KINDS = frozenset({SubjectKind.super_admin, SubjectKind.platform_user})


@dataclass(frozen=True)
class Principal:
    """The authenticated identity and effective permissions for one request."""

    subject_id: str
    subject_kind: SubjectKind
    tenant_id: str | None
    roles: frozenset[str]
    permissions: frozenset[str]
    issued_at: datetime
    expires_at: datetime
    session_id: str | None = None
    assumed: bool = False
    email: str | None = None

    @property
    def is_super_admin(self) -> bool:
        if self.subject_kind == SubjectKind.super_admin:
            return True
        # A synthetic super admin can only be minted in development mode
        return self.subject_kind == SubjectKind.dev_override and SUPER_ADMIN in self.roles

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def to_display(self) -> dict[str, Any]:
        """Display-only copy for clients. Never accepted back as input."""
        return {
            "subject_id": self.subject_id,
            "subject_kind": self.subject_kind.value,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "roles": sorted(self.roles),
            "permissions": sorted(self.permissions),
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "assumed": self.assumed,
        }


# ── Credentials ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SessionTokenCredential:
    """Opaque session token (``X-Session-Token`` header)."""

    token: str


@dataclass(frozen=True)
class BearerTokenCredential:
    """Signed JWT bound to a session (``Authorization: Bearer``)."""

    token: str


@dataclass(frozen=True)
class DevOverrideCredential:
    """Development override identifier (``X-Dev-Override`` header)."""

    identifier: str


Credentials = Union[SessionTokenCredential, BearerTokenCredential, DevOverrideCredential]


@dataclass(frozen=True)
class FederatedIdentity:
    """A subject identity already verified by an external identity provider."""

    provider: str
    subject: str
    email: str
    email_verified: bool
    name: str | None = None
