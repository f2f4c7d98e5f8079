"""Access-control persistence -- one unit of work per request.

Provides:
- AccessStore: Protocol the auth core depends on (allows in-memory test doubles)
- SqlAccessStore: SQLAlchemy implementation bound to a single AsyncSession
- AccessRepository: opens a transaction and yields a store bound to it

Atomicity points:
- lock_tenant() takes SELECT ... FOR UPDATE on the tenant row; plan-limit
  reservations hold it until the transaction that inserts the new row commits.
- revoke_session() is a compare-and-swap UPDATE; exactly one caller wins.
- unique constraints on tenant slug and (tenant_id, email) surface as Conflict.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.venuin.auth.permissions import CUSTOMER, PLATFORM_USER, SUPER_ADMIN
from src.venuin.auth.plans import MAX_BOOKINGS_PER_MONTH, MAX_USERS, MAX_VENUES
from src.venuin.auth.principal import SubjectKind
from src.venuin.core.errors import Conflict, InvalidRequest
from src.venuin.models.platform import AuditEvent, AuthSession, Plan, PlatformUser, SuperAdmin, Tenant
from src.venuin.models.tenant import Booking, Customer, TenantUser, Venue
from src.venuin.storage.records import (
    AccountRecord,
    AuditRecord,
    BookingRecord,
    PlanRecord,
    SessionRecord,
    TenantRecord,
    VenueRecord,
)

logger = structlog.get_logger(__name__)


# ── Store Protocol ──────────────────────────────────────────────────────────


class AccessStore(Protocol):
    """Everything the auth core reads or writes, scoped to one transaction."""

    # Plans
    async def get_plan(self, plan_id: str) -> PlanRecord | None: ...
    async def get_plan_by_slug(self, slug: str) -> PlanRecord | None: ...
    async def list_plans(self) -> list[PlanRecord]: ...
    async def create_plan(self, **fields: Any) -> PlanRecord: ...
    async def update_plan(self, slug: str, **fields: Any) -> PlanRecord | None: ...

    # Tenants
    async def get_tenant(self, tenant_id: str) -> TenantRecord | None: ...
    async def get_tenant_by_slug(self, slug: str) -> TenantRecord | None: ...
    async def lock_tenant(self, tenant_id: str) -> TenantRecord | None: ...
    async def list_tenants(self) -> list[TenantRecord]: ...
    async def get_tenant_by_owner(self, owner_id: str) -> TenantRecord | None: ...
    async def create_tenant(
        self, name: str, slug: str, plan_id: str, status: str, owner_id: str | None = None
    ) -> TenantRecord: ...
    async def set_tenant_status(self, tenant_id: str, status: str) -> TenantRecord | None: ...
    async def set_tenant_plan(self, tenant_id: str, plan_id: str) -> TenantRecord | None: ...

    # Accounts
    async def get_account(self, kind: SubjectKind, account_id: str) -> AccountRecord | None: ...
    async def find_account(
        self, kind: SubjectKind, email: str, tenant_id: str | None = None
    ) -> AccountRecord | None: ...
    async def create_account(
        self,
        kind: SubjectKind,
        email: str,
        password_hash: str | None,
        tenant_id: str | None = None,
        name: str | None = None,
        roles: list[str] | None = None,
        explicit_permissions: list[str] | None = None,
    ) -> AccountRecord: ...
    async def set_account_active(
        self, kind: SubjectKind, account_id: str, is_active: bool
    ) -> AccountRecord | None: ...
    async def list_tenant_users(self, tenant_id: str) -> list[AccountRecord]: ...

    # Usage
    async def count_usage(self, tenant_id: str, limit_key: str, since: datetime) -> int: ...

    # Sessions
    async def create_session(
        self,
        session_id: str,
        token_hash: str,
        subject_id: str,
        subject_kind: SubjectKind,
        tenant_id: str | None,
        created_at: datetime,
        expires_at: datetime,
        assumed: bool = False,
    ) -> SessionRecord: ...
    async def get_session(self, session_id: str) -> SessionRecord | None: ...
    async def get_session_by_token_hash(self, token_hash: str) -> SessionRecord | None: ...
    async def revoke_session(
        self, session_id: str, now: datetime, replaced_by: str | None = None
    ) -> bool: ...
    async def revoke_subject_sessions(
        self, kind: SubjectKind, subject_id: str, now: datetime
    ) -> int: ...
    async def revoke_tenant_sessions(self, tenant_id: str, now: datetime) -> int: ...

    # Venues and bookings
    async def create_venue(self, tenant_id: str, name: str) -> VenueRecord: ...
    async def get_venue(self, venue_id: str) -> VenueRecord | None: ...
    async def list_venues(self, tenant_id: str) -> list[VenueRecord]: ...
    async def create_booking(self, tenant_id: str, venue_id: str, title: str) -> BookingRecord: ...
    async def get_booking(self, booking_id: str) -> BookingRecord | None: ...

    # Audit
    async def add_audit_event(
        self,
        action: str,
        tenant_id: str | None = None,
        actor_id: str | None = None,
        actor_kind: str | None = None,
        target_id: str | None = None,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditRecord: ...
    async def list_audit_events(self, tenant_id: str | None = None, limit: int = 100) -> list[AuditRecord]: ...


# ── Serialization Helpers ───────────────────────────────────────────────────


def _uuid(value: str | None) -> uuid.UUID | None:
    """Parse a UUID string; malformed ids simply match nothing."""
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _str(value: uuid.UUID | None) -> str | None:
    return str(value) if value is not None else None


def _model_to_plan(model: Plan) -> PlanRecord:
    return PlanRecord(
        id=str(model.id),
        slug=model.slug,
        name=model.name,
        description=model.description,
        price_monthly=model.price_monthly or 0,
        price_yearly=model.price_yearly or 0,
        status=model.status,
        features=model.features or {},
        limits=model.limits or {},
        created_at=model.created_at,
    )


def _model_to_tenant(model: Tenant) -> TenantRecord:
    return TenantRecord(
        id=str(model.id),
        name=model.name,
        slug=model.slug,
        status=model.status,
        plan_id=_str(model.plan_id),
        owner_id=_str(model.owner_id),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


_FIXED_ROLES = {
    SubjectKind.customer: [CUSTOMER],
    SubjectKind.platform_user: [PLATFORM_USER],
    SubjectKind.super_admin: [SUPER_ADMIN],
}

_ACCOUNT_MODELS: dict[SubjectKind, type] = {
    SubjectKind.tenant_user: TenantUser,
    SubjectKind.customer: Customer,
    SubjectKind.platform_user: PlatformUser,
    SubjectKind.super_admin: SuperAdmin,
}


def _model_to_account(kind: SubjectKind, model: Any) -> AccountRecord:
    if kind == SubjectKind.tenant_user:
        roles = list(model.roles or [])
        explicit = list(model.explicit_permissions or [])
    else:
        roles = list(_FIXED_ROLES[kind])
        explicit = []
    return AccountRecord(
        id=str(model.id),
        kind=kind,
        tenant_id=_str(getattr(model, "tenant_id", None)),
        email=model.email,
        name=model.name,
        password_hash=model.password_hash,
        roles=roles,
        explicit_permissions=explicit,
        is_active=model.is_active,
        created_at=model.created_at,
    )


def _model_to_session(model: AuthSession) -> SessionRecord:
    return SessionRecord(
        id=str(model.id),
        token_hash=model.token_hash,
        subject_id=str(model.subject_id),
        subject_kind=SubjectKind(model.subject_kind),
        tenant_id=_str(model.tenant_id),
        assumed=model.assumed,
        created_at=model.created_at,
        expires_at=model.expires_at,
        revoked_at=model.revoked_at,
        replaced_by=_str(model.replaced_by),
    )


def _model_to_audit(model: AuditEvent) -> AuditRecord:
    return AuditRecord(
        id=str(model.id),
        tenant_id=_str(model.tenant_id),
        actor_id=model.actor_id,
        actor_kind=model.actor_kind,
        action=model.action,
        target_id=model.target_id,
        reason=model.reason,
        details=model.details or {},
        created_at=model.created_at,
    )


# ── SQL Store ───────────────────────────────────────────────────────────────


class SqlAccessStore:
    """AccessStore over one AsyncSession inside an open transaction.

    Never commits; AccessRepository.transaction() owns commit and rollback.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _insert(self, model: Any, conflict_message: str) -> None:
        self._session.add(model)
        try:
            await self._session.flush()
        except IntegrityError:
            logger.info("storage.unique_violation", table=model.__tablename__)
            raise Conflict(conflict_message)

    # ── Plans ───────────────────────────────────────────────────────────────

    async def get_plan(self, plan_id: str) -> PlanRecord | None:
        pid = _uuid(plan_id)
        if pid is None:
            return None
        model = await self._session.get(Plan, pid)
        return _model_to_plan(model) if model else None

    async def get_plan_by_slug(self, slug: str) -> PlanRecord | None:
        result = await self._session.execute(select(Plan).where(Plan.slug == slug))
        model = result.scalar_one_or_none()
        return _model_to_plan(model) if model else None

    async def list_plans(self) -> list[PlanRecord]:
        result = await self._session.execute(select(Plan).order_by(Plan.price_monthly, Plan.slug))
        return [_model_to_plan(m) for m in result.scalars().all()]

    async def create_plan(self, **fields: Any) -> PlanRecord:
        model = Plan(**fields)
        await self._insert(model, f"Plan with slug '{fields.get('slug')}' already exists")
        return _model_to_plan(model)

    async def update_plan(self, slug: str, **fields: Any) -> PlanRecord | None:
        result = await self._session.execute(select(Plan).where(Plan.slug == slug).with_for_update())
        model = result.scalar_one_or_none()
        if model is None:
            return None
        for key, value in fields.items():
            setattr(model, key, value)
        await self._session.flush()
        return _model_to_plan(model)

    # ── Tenants ─────────────────────────────────────────────────────────────

    async def get_tenant(self, tenant_id: str) -> TenantRecord | None:
        tid = _uuid(tenant_id)
        if tid is None:
            return None
        model = await self._session.get(Tenant, tid)
        return _model_to_tenant(model) if model else None

    async def get_tenant_by_slug(self, slug: str) -> TenantRecord | None:
        result = await self._session.execute(select(Tenant).where(Tenant.slug == slug))
        model = result.scalar_one_or_none()
        return _model_to_tenant(model) if model else None

    async def lock_tenant(self, tenant_id: str) -> TenantRecord | None:
        tid = _uuid(tenant_id)
        if tid is None:
            return None
        result = await self._session.execute(
            select(Tenant).where(Tenant.id == tid).with_for_update()
        )
        model = result.scalar_one_or_none()
        return _model_to_tenant(model) if model else None

    async def list_tenants(self) -> list[TenantRecord]:
        result = await self._session.execute(select(Tenant).order_by(Tenant.created_at))
        return [_model_to_tenant(m) for m in result.scalars().all()]

    async def get_tenant_by_owner(self, owner_id: str) -> TenantRecord | None:
        oid = _uuid(owner_id)
        if oid is None:
            return None
        result = await self._session.execute(select(Tenant).where(Tenant.owner_id == oid))
        model = result.scalar_one_or_none()
        return _model_to_tenant(model) if model else None

    async def create_tenant(
        self, name: str, slug: str, plan_id: str, status: str, owner_id: str | None = None
    ) -> TenantRecord:
        model = Tenant(name=name, slug=slug, plan_id=_uuid(plan_id), status=status, owner_id=_uuid(owner_id))
        await self._insert(model, f"Tenant with slug '{slug}' already exists")
        return _model_to_tenant(model)

    async def _update_tenant(self, tenant_id: str, **values: Any) -> TenantRecord | None:
        tid = _uuid(tenant_id)
        if tid is None:
            return None
        model = await self._session.get(Tenant, tid, with_for_update=True)
        if model is None:
            return None
        for key, value in values.items():
            setattr(model, key, value)
        model.updated_at = datetime.now(timezone.utc)
        await self._session.flush()
        return _model_to_tenant(model)

    async def set_tenant_status(self, tenant_id: str, status: str) -> TenantRecord | None:
        return await self._update_tenant(tenant_id, status=status)

    async def set_tenant_plan(self, tenant_id: str, plan_id: str) -> TenantRecord | None:
        pid = _uuid(plan_id)
        if pid is None:
            raise InvalidRequest("Invalid plan id")
        return await self._update_tenant(tenant_id, plan_id=pid)

    # ── Accounts ────────────────────────────────────────────────────────────

    async def get_account(self, kind: SubjectKind, account_id: str) -> AccountRecord | None:
        model_cls = _ACCOUNT_MODELS.get(kind)
        aid = _uuid(account_id)
        if model_cls is None or aid is None:
            return None
        model = await self._session.get(model_cls, aid)
        return _model_to_account(kind, model) if model else None

    async def find_account(
        self, kind: SubjectKind, email: str, tenant_id: str | None = None
    ) -> AccountRecord | None:
        model_cls = _ACCOUNT_MODELS.get(kind)
        if model_cls is None:
            return None
        stmt = select(model_cls).where(model_cls.email == email)
        if kind in (SubjectKind.tenant_user, SubjectKind.customer):
            tid = _uuid(tenant_id)
            if tid is None:
                # Tenant-bound accounts are never looked up by email alone
                return None
            stmt = stmt.where(model_cls.tenant_id == tid)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _model_to_account(kind, model) if model else None

    async def create_account(
        self,
        kind: SubjectKind,
        email: str,
        password_hash: str | None,
        tenant_id: str | None = None,
        name: str | None = None,
        roles: list[str] | None = None,
        explicit_permissions: list[str] | None = None,
    ) -> AccountRecord:
        model_cls = _ACCOUNT_MODELS.get(kind)
        if model_cls is None:
            raise InvalidRequest(f"Cannot create accounts of kind '{kind.value}'")
        fields: dict[str, Any] = {"email": email, "name": name, "password_hash": password_hash}
        if kind in (SubjectKind.tenant_user, SubjectKind.customer):
            fields["tenant_id"] = _uuid(tenant_id)
        if kind == SubjectKind.tenant_user:
            fields["roles"] = list(roles or [])
            fields["explicit_permissions"] = list(explicit_permissions or [])
        model = model_cls(**fields)
        await self._insert(model, f"An account with email '{email}' already exists")
        return _model_to_account(kind, model)

    async def set_account_active(
        self, kind: SubjectKind, account_id: str, is_active: bool
    ) -> AccountRecord | None:
        model_cls = _ACCOUNT_MODELS.get(kind)
        aid = _uuid(account_id)
        if model_cls is None or aid is None:
            return None
        model = await self._session.get(model_cls, aid, with_for_update=True)
        if model is None:
            return None
        model.is_active = is_active
        await self._session.flush()
        return _model_to_account(kind, model)

    async def list_tenant_users(self, tenant_id: str) -> list[AccountRecord]:
        tid = _uuid(tenant_id)
        if tid is None:
            return []
        result = await self._session.execute(
            select(TenantUser).where(TenantUser.tenant_id == tid).order_by(TenantUser.created_at)
        )
        return [_model_to_account(SubjectKind.tenant_user, m) for m in result.scalars().all()]

    # ── Usage ───────────────────────────────────────────────────────────────

    async def count_usage(self, tenant_id: str, limit_key: str, since: datetime) -> int:
        tid = _uuid(tenant_id)
        if tid is None:
            return 0
        if limit_key == MAX_USERS:
            stmt = select(func.count(TenantUser.id)).where(
                TenantUser.tenant_id == tid,
                TenantUser.is_active == True,  # noqa: E712
            )
        elif limit_key == MAX_VENUES:
            stmt = select(func.count(Venue.id)).where(Venue.tenant_id == tid)
        elif limit_key == MAX_BOOKINGS_PER_MONTH:
            stmt = select(func.count(Booking.id)).where(
                Booking.tenant_id == tid,
                Booking.created_at >= since,
            )
        else:
            return 0
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    # ── Sessions ────────────────────────────────────────────────────────────

    async def create_session(
        self,
        session_id: str,
        token_hash: str,
        subject_id: str,
        subject_kind: SubjectKind,
        tenant_id: str | None,
        created_at: datetime,
        expires_at: datetime,
        assumed: bool = False,
    ) -> SessionRecord:
        model = AuthSession(
            id=uuid.UUID(session_id),
            token_hash=token_hash,
            subject_id=uuid.UUID(subject_id),
            subject_kind=subject_kind.value,
            tenant_id=_uuid(tenant_id),
            assumed=assumed,
            created_at=created_at,
            expires_at=expires_at,
        )
        await self._insert(model, "Session id collision")
        return _model_to_session(model)

    async def get_session(self, session_id: str) -> SessionRecord | None:
        sid = _uuid(session_id)
        if sid is None:
            return None
        # populate_existing: always see the latest revocation state
        model = await self._session.get(AuthSession, sid, populate_existing=True)
        return _model_to_session(model) if model else None

    async def get_session_by_token_hash(self, token_hash: str) -> SessionRecord | None:
        result = await self._session.execute(
            select(AuthSession)
            .where(AuthSession.token_hash == token_hash)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return _model_to_session(model) if model else None

    async def revoke_session(
        self, session_id: str, now: datetime, replaced_by: str | None = None
    ) -> bool:
        sid = _uuid(session_id)
        if sid is None:
            return False
        result = await self._session.execute(
            update(AuthSession)
            .where(
                AuthSession.id == sid,
                AuthSession.revoked_at.is_(None),
                AuthSession.expires_at > now,
            )
            .values(revoked_at=now, replaced_by=_uuid(replaced_by))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def revoke_subject_sessions(
        self, kind: SubjectKind, subject_id: str, now: datetime
    ) -> int:
        sid = _uuid(subject_id)
        if sid is None:
            return 0
        result = await self._session.execute(
            update(AuthSession)
            .where(
                AuthSession.subject_kind == kind.value,
                AuthSession.subject_id == sid,
                AuthSession.revoked_at.is_(None),
            )
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def revoke_tenant_sessions(self, tenant_id: str, now: datetime) -> int:
        tid = _uuid(tenant_id)
        if tid is None:
            return 0
        result = await self._session.execute(
            update(AuthSession)
            .where(
                AuthSession.tenant_id == tid,
                AuthSession.revoked_at.is_(None),
            )
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ── Venues and bookings ─────────────────────────────────────────────────

    async def create_venue(self, tenant_id: str, name: str) -> VenueRecord:
        model = Venue(tenant_id=uuid.UUID(tenant_id), name=name)
        await self._insert(model, "Venue already exists")
        return VenueRecord(id=str(model.id), tenant_id=tenant_id, name=model.name, created_at=model.created_at)

    async def get_venue(self, venue_id: str) -> VenueRecord | None:
        vid = _uuid(venue_id)
        if vid is None:
            return None
        model = await self._session.get(Venue, vid)
        if model is None:
            return None
        return VenueRecord(id=str(model.id), tenant_id=str(model.tenant_id), name=model.name, created_at=model.created_at)

    async def list_venues(self, tenant_id: str) -> list[VenueRecord]:
        tid = _uuid(tenant_id)
        if tid is None:
            return []
        result = await self._session.execute(
            select(Venue).where(Venue.tenant_id == tid).order_by(Venue.created_at)
        )
        return [
            VenueRecord(id=str(m.id), tenant_id=str(m.tenant_id), name=m.name, created_at=m.created_at)
            for m in result.scalars().all()
        ]

    async def create_booking(self, tenant_id: str, venue_id: str, title: str) -> BookingRecord:
        model = Booking(tenant_id=uuid.UUID(tenant_id), venue_id=uuid.UUID(venue_id), title=title)
        await self._insert(model, "Booking already exists")
        return BookingRecord(
            id=str(model.id),
            tenant_id=tenant_id,
            venue_id=venue_id,
            title=model.title,
            created_at=model.created_at,
        )

    async def get_booking(self, booking_id: str) -> BookingRecord | None:
        bid = _uuid(booking_id)
        if bid is None:
            return None
        model = await self._session.get(Booking, bid)
        if model is None:
            return None
        return BookingRecord(
            id=str(model.id),
            tenant_id=str(model.tenant_id),
            venue_id=str(model.venue_id),
            title=model.title,
            created_at=model.created_at,
        )

    # ── Audit ───────────────────────────────────────────────────────────────

    async def add_audit_event(
        self,
        action: str,
        tenant_id: str | None = None,
        actor_id: str | None = None,
        actor_kind: str | None = None,
        target_id: str | None = None,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditRecord:
        model = AuditEvent(
            tenant_id=_uuid(tenant_id),
            actor_id=actor_id,
            actor_kind=actor_kind,
            action=action,
            target_id=target_id,
            reason=reason,
            details=details or {},
        )
        self._session.add(model)
        await self._session.flush()
        return _model_to_audit(model)

    async def list_audit_events(self, tenant_id: str | None = None, limit: int = 100) -> list[AuditRecord]:
        stmt = select(AuditEvent).order_by(AuditEvent.created_at.desc()).limit(limit)
        if tenant_id is not None:
            tid = _uuid(tenant_id)
            if tid is None:
                return []
            stmt = stmt.where(AuditEvent.tenant_id == tid)
        result = await self._session.execute(stmt)
        return [_model_to_audit(m) for m in result.scalars().all()]


# ── Repository ──────────────────────────────────────────────────────────────


class AccessRepository:
    """Opens one transaction per unit of work.

    Args:
        session_factory: Callable returning a new AsyncSession
            (an ``async_sessionmaker``).
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlAccessStore]:
        """Yield a store; commit on normal exit, roll back on any exception."""
        async with self._session_factory() as session:
            async with session.begin():
                yield SqlAccessStore(session)
