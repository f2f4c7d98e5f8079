"""Permission / plan gate.

Three independent checks, in order, each with its own failure:

1. the capability is in the principal's permission set -> else PermissionDenied(missing_permission)
2. the tenant's plan enables the capability's feature   -> else PermissionDenied(feature_not_in_plan)
3. usage + quantity_delta fits the plan's limit         -> else PlanLimitExceeded

For mutating calls (quantity_delta > 0) the limit check is a reservation:
the tenant row is locked for the rest of the unit of work, so the count
and the insert that follows are atomic with respect to other creators.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from src.venuin.auth.plans import (
    CAPABILITY_FEATURES,
    CAPABILITY_LIMITS,
    UNLIMITED,
    feature_enabled,
    limit_for,
    usage_period_start,
    within_limit,
)
from src.venuin.auth.principal import Principal
from src.venuin.core.errors import (
    FEATURE_NOT_IN_PLAN,
    MISSING_PERMISSION,
    InvalidRequest,
    PermissionDenied,
    PlanLimitExceeded,
)
from src.venuin.core.monitoring import record_decision
from src.venuin.storage.records import PlanRecord
from src.venuin.storage.repository import AccessStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CapabilityGrant:
    """Outcome of a successful gate check."""

    capability: str
    tenant_id: str | None
    feature: str | None = None
    limit: str | None = None
    current: int | None = None
    maximum: int | None = None

    @property
    def remaining(self) -> int | None:
        if self.maximum is None or self.current is None:
            return None
        if self.maximum == UNLIMITED:
            return None
        return max(self.maximum - self.current, 0)


class CapabilityGate:
    """Decide whether a principal may use a capability.

    Args:
        store: AccessStore for the current unit of work. Reservations made
            through it last until that unit of work ends.
    """

    def __init__(self, store: AccessStore) -> None:
        self._store = store

    async def authorize_capability(
        self,
        principal: Principal,
        capability: str,
        quantity_delta: int = 0,
        *,
        tenant_id: str | None = None,
    ) -> CapabilityGrant:
        """Check (and for quantity_delta > 0, reserve) a capability.

        Args:
            principal: Resolved principal.
            capability: Capability key, e.g. ``voice_booking``.
            quantity_delta: Units of a bounded resource the caller is about
                to create in this unit of work.
            tenant_id: Tenant whose plan applies; defaults to the principal's.

        Raises:
            PermissionDenied: Missing permission or plan feature.
            PlanLimitExceeded: The plan's limit would be exceeded.
        """
        return await self._evaluate(principal, capability, quantity_delta, tenant_id, reserve=True)

    async def check_capability(
        self,
        principal: Principal,
        capability: str,
        quantity_delta: int = 0,
        *,
        tenant_id: str | None = None,
    ) -> CapabilityGrant:
        """Same decision as authorize_capability without locking anything."""
        return await self._evaluate(principal, capability, quantity_delta, tenant_id, reserve=False)

    async def _evaluate(
        self,
        principal: Principal,
        capability: str,
        quantity_delta: int,
        tenant_id: str | None,
        reserve: bool,
    ) -> CapabilityGrant:
        if quantity_delta < 0:
            raise InvalidRequest("quantity_delta must not be negative")

        if not principal.has_permission(capability):
            self._deny(principal, capability, MISSING_PERMISSION)
            raise PermissionDenied(capability, MISSING_PERMISSION)

        feature = CAPABILITY_FEATURES.get(capability)
        limit_key = CAPABILITY_LIMITS.get(capability) if quantity_delta > 0 else None
        target_tenant_id = tenant_id or principal.tenant_id

        if feature is None and limit_key is None:
            record_decision("capability", "allow", capability)
            return CapabilityGrant(capability=capability, tenant_id=target_tenant_id)

        plan = await self._load_plan(target_tenant_id, lock=reserve and limit_key is not None)

        if feature is not None and not feature_enabled(plan.features if plan else None, feature):
            self._deny(principal, capability, FEATURE_NOT_IN_PLAN, tenant_id=target_tenant_id)
            raise PermissionDenied(capability, FEATURE_NOT_IN_PLAN)

        if limit_key is None:
            record_decision("capability", "allow", capability)
            return CapabilityGrant(capability=capability, tenant_id=target_tenant_id, feature=feature)

        maximum = limit_for(plan.limits if plan else None, limit_key)
        current = 0
        if target_tenant_id is not None and maximum != UNLIMITED:
            current = await self._store.count_usage(target_tenant_id, limit_key, usage_period_start())

        if not within_limit(maximum, current, quantity_delta):
            self._deny(principal, capability, "limit_reached", tenant_id=target_tenant_id)
            logger.info(
                "authz.plan_limit_exceeded",
                tenant_id=target_tenant_id,
                limit=limit_key,
                current=current,
                maximum=maximum,
                delta=quantity_delta,
            )
            raise PlanLimitExceeded(limit_key, current, maximum)

        record_decision("capability", "allow", capability)
        return CapabilityGrant(
            capability=capability,
            tenant_id=target_tenant_id,
            feature=feature,
            limit=limit_key,
            current=current,
            maximum=maximum,
        )

    async def _load_plan(self, tenant_id: str | None, lock: bool) -> PlanRecord | None:
        """Current plan of the tenant; None (no features, zero limits) if unknown."""
        if tenant_id is None:
            return None
        if lock:
            tenant = await self._store.lock_tenant(tenant_id)
        else:
            tenant = await self._store.get_tenant(tenant_id)
        if tenant is None or tenant.plan_id is None:
            return None
        return await self._store.get_plan(tenant.plan_id)

    def _deny(self, principal: Principal, capability: str, reason: str, tenant_id: str | None = None) -> None:
        record_decision("capability", "deny", reason)
        logger.info(
            "authz.capability_denied",
            subject_id=principal.subject_id,
            subject_kind=principal.subject_kind.value,
            tenant_id=tenant_id or principal.tenant_id,
            capability=capability,
            reason=reason,
        )
