"""FastAPI dependency injection for the authorization chain.

Every protected endpoint runs resolver -> guard -> gate through these
dependencies. The store dependency opens one transaction per request, so
a plan-limit reservation and the insert it protects commit together, and
an error raised anywhere in the endpoint rolls both back. It is
function-scoped: the commit finishes before the response is sent, so a
failed commit becomes an error response instead of a reported success.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable

import structlog
from fastapi import Depends, HTTPException, Request, status

from src.venuin.auth.federation import FederatedTokenVerifier
from src.venuin.auth.gate import CapabilityGate, CapabilityGrant
from src.venuin.auth.guard import authorize_permission, authorize_tenant_access
from src.venuin.auth.principal import (
    BearerTokenCredential,
    Credentials,
    DevOverrideCredential,
    Principal,
    SessionTokenCredential,
)
from src.venuin.auth.resolver import PrincipalResolver
from src.venuin.auth.sessions import SessionManager
from src.venuin.config import Settings, get_settings
from src.venuin.core.errors import Unauthenticated
from src.venuin.storage.repository import AccessStore


async def get_store(request: Request) -> AsyncGenerator[AccessStore, None]:
    """Yield a store bound to this request's transaction."""
    repository = getattr(request.app.state, "access_repository", None)
    if repository is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Access store not available",
        )
    async with repository.transaction() as store:
        yield store


def extract_credentials(request: Request) -> Credentials:
    """Pick the request's credential.

    A development override header always wins so that a disabled override is
    rejected rather than silently ignored. Then ``Authorization: Bearer``,
    then ``X-Session-Token``.

    Raises:
        Unauthenticated: No credential was sent.
    """
    override = request.headers.get("X-Dev-Override")
    if override:
        return DevOverrideCredential(identifier=override)

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return BearerTokenCredential(token=auth_header[7:])

    session_token = request.headers.get("X-Session-Token")
    if session_token:
        return SessionTokenCredential(token=session_token)

    raise Unauthenticated()


async def get_principal(
    request: Request,
    store: AccessStore = Depends(get_store, scope="function"),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """Resolve the caller. Stored on ``request.state`` for logging and metrics."""
    credentials = extract_credentials(request)
    principal = await PrincipalResolver(store, settings).resolve(credentials)
    request.state.principal = principal
    structlog.contextvars.bind_contextvars(
        subject_id=principal.subject_id,
        subject_kind=principal.subject_kind.value,
        tenant_id=principal.tenant_id,
    )
    return principal


async def get_gate(store: AccessStore = Depends(get_store, scope="function")) -> CapabilityGate:
    return CapabilityGate(store)


async def get_session_manager(
    request: Request,
    store: AccessStore = Depends(get_store, scope="function"),
    settings: Settings = Depends(get_settings),
) -> SessionManager:
    throttle = getattr(request.app.state, "login_throttle", None)
    return SessionManager(store, throttle=throttle, settings=settings)


async def require_tenant_access(
    tenant_id: str,
    principal: Principal = Depends(get_principal),
) -> Principal:
    """Guard for routes with a ``{tenant_id}`` path parameter."""
    authorize_tenant_access(principal, tenant_id)
    return principal


def require_permission(permission: str) -> Callable[..., Awaitable[Principal]]:
    """Dependency requiring a permission with no plan involvement (console routes).

    Platform permissions additionally require a super admin.
    """

    async def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        authorize_permission(principal, permission)
        return principal

    return dependency


def require_capability(capability: str, quantity_delta: int = 0) -> Callable[..., Awaitable[CapabilityGrant]]:
    """Dependency running guard then gate for a ``{tenant_id}`` route."""

    async def dependency(
        tenant_id: str,
        principal: Principal = Depends(require_tenant_access),
        gate: CapabilityGate = Depends(get_gate),
    ) -> CapabilityGrant:
        return await gate.authorize_capability(principal, capability, quantity_delta, tenant_id=tenant_id)

    return dependency


async def get_federated_verifier(settings: Settings = Depends(get_settings)) -> FederatedTokenVerifier:
    return FederatedTokenVerifier(settings)
