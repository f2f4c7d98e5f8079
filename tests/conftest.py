"""Test fixtures for the access-control core.

Provides:
- InMemoryAccessRepository: transactional AccessStore test double (undo-log
  rollback, per-tenant row locks, compare-and-swap session revocation)
- Seed helpers for plans, tenants and accounts
- FastAPI test app wired to the in-memory repository, and an httpx client
"""

from __future__ import annotations

import os

# Cheap bcrypt and a fixed signing key before any settings are cached
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-venuin-access")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DEV_OVERRIDE_ENABLED", "false")

import asyncio
import uuid
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.venuin.auth.permissions import TENANT_ADMIN
from src.venuin.auth.plans import DEFAULT_PLANS, MAX_BOOKINGS_PER_MONTH, MAX_USERS, MAX_VENUES
from src.venuin.auth.principal import TENANT_BOUND_KINDS, SubjectKind
from src.venuin.core.errors import Conflict, InvalidRequest
from src.venuin.core.security import hash_password
from src.venuin.storage.records import (
    AccountRecord,
    AuditRecord,
    BookingRecord,
    PlanRecord,
    SessionRecord,
    TenantRecord,
    VenueRecord,
)

PASSWORD = "correct-horse-battery"

_MISSING = object()

_FIXED_ROLES = {
    SubjectKind.customer: ["customer"],
    SubjectKind.platform_user: ["platform_user"],
    SubjectKind.super_admin: ["super_admin"],
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── In-Memory Test Double ────────────────────────────────────────────────────


class InMemoryAccessRepository:
    """In-memory AccessRepository for testing without a database.

    Writes are visible to other transactions immediately, as with
    read-committed plus row locks held to the end of the transaction; that is
    what the plan-limit reservation relies on.
    """

    def __init__(self) -> None:
        self.plans: dict[str, PlanRecord] = {}
        self.tenants: dict[str, TenantRecord] = {}
        self.accounts: dict[str, AccountRecord] = {}
        self.sessions: dict[str, SessionRecord] = {}
        self.venues: dict[str, VenueRecord] = {}
        self.bookings: dict[str, BookingRecord] = {}
        self.audit: dict[str, AuditRecord] = {}
        self._tenant_locks: dict[str, asyncio.Lock] = {}

    def tenant_lock(self, tenant_id: str) -> asyncio.Lock:
        return self._tenant_locks.setdefault(tenant_id, asyncio.Lock())

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryAccessStore]:
        store = InMemoryAccessStore(self)
        try:
            yield store
        except BaseException:
            store.rollback()
            raise
        finally:
            store.release_locks()


class InMemoryAccessStore:
    """AccessStore over InMemoryAccessRepository with an undo log."""

    def __init__(self, repo: InMemoryAccessRepository) -> None:
        self._repo = repo
        self._undo: list[tuple[dict, str, Any]] = []
        self._held: list[str] = []

    # ── Transaction plumbing ────────────────────────────────────────────────

    def _put(self, table: dict, key: str, value: Any) -> None:
        self._undo.append((table, key, table.get(key, _MISSING)))
        table[key] = value

    def rollback(self) -> None:
        for table, key, previous in reversed(self._undo):
            if previous is _MISSING:
                table.pop(key, None)
            else:
                table[key] = previous
        self._undo.clear()

    def release_locks(self) -> None:
        for tenant_id in self._held:
            self._repo.tenant_lock(tenant_id).release()
        self._held.clear()

    # ── Plans ───────────────────────────────────────────────────────────────

    async def get_plan(self, plan_id: str) -> PlanRecord | None:
        await asyncio.sleep(0)
        return self._repo.plans.get(plan_id)

    async def get_plan_by_slug(self, slug: str) -> PlanRecord | None:
        await asyncio.sleep(0)
        return next((p for p in self._repo.plans.values() if p.slug == slug), None)

    async def list_plans(self) -> list[PlanRecord]:
        await asyncio.sleep(0)
        return sorted(self._repo.plans.values(), key=lambda p: (p.price_monthly, p.slug))

    async def create_plan(self, **fields: Any) -> PlanRecord:
        await asyncio.sleep(0)
        if any(p.slug == fields["slug"] for p in self._repo.plans.values()):
            raise Conflict(f"Plan with slug '{fields['slug']}' already exists")
        plan = PlanRecord(id=str(uuid.uuid4()), created_at=_utcnow(), **fields)
        self._put(self._repo.plans, plan.id, plan)
        return plan

    async def update_plan(self, slug: str, **fields: Any) -> PlanRecord | None:
        plan = await self.get_plan_by_slug(slug)
        if plan is None:
            return None
        updated = plan.model_copy(update=fields)
        self._put(self._repo.plans, plan.id, updated)
        return updated

    # ── Tenants ─────────────────────────────────────────────────────────────

    async def get_tenant(self, tenant_id: str) -> TenantRecord | None:
        await asyncio.sleep(0)
        return self._repo.tenants.get(tenant_id)

    async def get_tenant_by_slug(self, slug: str) -> TenantRecord | None:
        await asyncio.sleep(0)
        return next((t for t in self._repo.tenants.values() if t.slug == slug), None)

    async def get_tenant_by_owner(self, owner_id: str) -> TenantRecord | None:
        await asyncio.sleep(0)
        return next((t for t in self._repo.tenants.values() if t.owner_id == owner_id), None)

    async def lock_tenant(self, tenant_id: str) -> TenantRecord | None:
        if tenant_id not in self._held:
            await self._repo.tenant_lock(tenant_id).acquire()
            self._held.append(tenant_id)
        return await self.get_tenant(tenant_id)

    async def list_tenants(self) -> list[TenantRecord]:
        await asyncio.sleep(0)
        return list(self._repo.tenants.values())

    async def create_tenant(
        self, name: str, slug: str, plan_id: str, status: str, owner_id: str | None = None
    ) -> TenantRecord:
        await asyncio.sleep(0)
        if any(t.slug == slug for t in self._repo.tenants.values()):
            raise Conflict(f"Tenant with slug '{slug}' already exists")
        if owner_id and any(t.owner_id == owner_id for t in self._repo.tenants.values()):
            raise Conflict("Owner already has a tenant")
        tenant = TenantRecord(
            id=str(uuid.uuid4()),
            name=name,
            slug=slug,
            status=status,
            plan_id=plan_id,
            owner_id=owner_id,
            created_at=_utcnow(),
        )
        self._put(self._repo.tenants, tenant.id, tenant)
        return tenant

    async def _update_tenant(self, tenant_id: str, **values: Any) -> TenantRecord | None:
        tenant = await self.get_tenant(tenant_id)
        if tenant is None:
            return None
        updated = tenant.model_copy(update={**values, "updated_at": _utcnow()})
        self._put(self._repo.tenants, tenant_id, updated)
        return updated

    async def set_tenant_status(self, tenant_id: str, status: str) -> TenantRecord | None:
        return await self._update_tenant(tenant_id, status=status)

    async def set_tenant_plan(self, tenant_id: str, plan_id: str) -> TenantRecord | None:
        return await self._update_tenant(tenant_id, plan_id=plan_id)

    # ── Accounts ────────────────────────────────────────────────────────────

    async def get_account(self, kind: SubjectKind, account_id: str) -> AccountRecord | None:
        await asyncio.sleep(0)
        account = self._repo.accounts.get(account_id)
        if account is None or account.kind != kind:
            return None
        return account

    async def find_account(
        self, kind: SubjectKind, email: str, tenant_id: str | None = None
    ) -> AccountRecord | None:
        await asyncio.sleep(0)
        if kind in TENANT_BOUND_KINDS and tenant_id is None:
            return None
        for account in self._repo.accounts.values():
            if account.kind != kind or account.email != email:
                continue
            if kind in TENANT_BOUND_KINDS and account.tenant_id != tenant_id:
                continue
            return account
        return None

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
        if kind == SubjectKind.dev_override:
            raise InvalidRequest(f"Cannot create accounts of kind '{kind.value}'")
        if await self.find_account(kind, email, tenant_id=tenant_id) is not None:
            raise Conflict(f"An account with email '{email}' already exists")
        is_tenant_user = kind == SubjectKind.tenant_user
        account = AccountRecord(
            id=str(uuid.uuid4()),
            kind=kind,
            tenant_id=tenant_id if kind in TENANT_BOUND_KINDS else None,
            email=email,
            name=name,
            password_hash=password_hash,
            roles=list(roles or []) if is_tenant_user else list(_FIXED_ROLES[kind]),
            explicit_permissions=list(explicit_permissions or []) if is_tenant_user else [],
            created_at=_utcnow(),
        )
        self._put(self._repo.accounts, account.id, account)
        return account

    async def set_account_active(
        self, kind: SubjectKind, account_id: str, is_active: bool
    ) -> AccountRecord | None:
        account = await self.get_account(kind, account_id)
        if account is None:
            return None
        updated = account.model_copy(update={"is_active": is_active})
        self._put(self._repo.accounts, account_id, updated)
        return updated

    async def list_tenant_users(self, tenant_id: str) -> list[AccountRecord]:
        await asyncio.sleep(0)
        return [
            a for a in self._repo.accounts.values()
            if a.kind == SubjectKind.tenant_user and a.tenant_id == tenant_id
        ]

    # ── Usage ───────────────────────────────────────────────────────────────

    async def count_usage(self, tenant_id: str, limit_key: str, since: datetime) -> int:
        await asyncio.sleep(0)
        if limit_key == MAX_USERS:
            return sum(
                1 for a in self._repo.accounts.values()
                if a.kind == SubjectKind.tenant_user and a.tenant_id == tenant_id and a.is_active
            )
        if limit_key == MAX_VENUES:
            return sum(1 for v in self._repo.venues.values() if v.tenant_id == tenant_id)
        if limit_key == MAX_BOOKINGS_PER_MONTH:
            return sum(
                1 for b in self._repo.bookings.values()
                if b.tenant_id == tenant_id and b.created_at >= since
            )
        return 0

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
        await asyncio.sleep(0)
        if session_id in self._repo.sessions:
            raise Conflict("Session id collision")
        session = SessionRecord(
            id=session_id,
            token_hash=token_hash,
            subject_id=subject_id,
            subject_kind=subject_kind,
            tenant_id=tenant_id,
            assumed=assumed,
            created_at=created_at,
            expires_at=expires_at,
        )
        self._put(self._repo.sessions, session.id, session)
        return session

    async def get_session(self, session_id: str) -> SessionRecord | None:
        await asyncio.sleep(0)
        return self._repo.sessions.get(session_id)

    async def get_session_by_token_hash(self, token_hash: str) -> SessionRecord | None:
        await asyncio.sleep(0)
        return next((s for s in self._repo.sessions.values() if s.token_hash == token_hash), None)

    async def revoke_session(
        self, session_id: str, now: datetime, replaced_by: str | None = None
    ) -> bool:
        await asyncio.sleep(0)
        # Check and set with no await in between
        session = self._repo.sessions.get(session_id)
        if session is None or not session.is_live(now):
            return False
        self._put(
            self._repo.sessions,
            session_id,
            session.model_copy(update={"revoked_at": now, "replaced_by": replaced_by}),
        )
        return True

    def _revoke_where(self, now: datetime, predicate) -> int:
        count = 0
        for session in list(self._repo.sessions.values()):
            if session.revoked_at is None and predicate(session):
                self._put(self._repo.sessions, session.id, session.model_copy(update={"revoked_at": now}))
                count += 1
        return count

    async def revoke_subject_sessions(self, kind: SubjectKind, subject_id: str, now: datetime) -> int:
        await asyncio.sleep(0)
        return self._revoke_where(now, lambda s: s.subject_kind == kind and s.subject_id == subject_id)

    async def revoke_tenant_sessions(self, tenant_id: str, now: datetime) -> int:
        await asyncio.sleep(0)
        return self._revoke_where(now, lambda s: s.tenant_id == tenant_id)

    # ── Venues and bookings ─────────────────────────────────────────────────

    async def create_venue(self, tenant_id: str, name: str) -> VenueRecord:
        await asyncio.sleep(0)
        venue = VenueRecord(id=str(uuid.uuid4()), tenant_id=tenant_id, name=name, created_at=_utcnow())
        self._put(self._repo.venues, venue.id, venue)
        return venue

    async def get_venue(self, venue_id: str) -> VenueRecord | None:
        await asyncio.sleep(0)
        return self._repo.venues.get(venue_id)

    async def list_venues(self, tenant_id: str) -> list[VenueRecord]:
        await asyncio.sleep(0)
        return [v for v in self._repo.venues.values() if v.tenant_id == tenant_id]

    async def create_booking(self, tenant_id: str, venue_id: str, title: str) -> BookingRecord:
        await asyncio.sleep(0)
        booking = BookingRecord(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            venue_id=venue_id,
            title=title,
            created_at=_utcnow(),
        )
        self._put(self._repo.bookings, booking.id, booking)
        return booking

    async def get_booking(self, booking_id: str) -> BookingRecord | None:
        await asyncio.sleep(0)
        return self._repo.bookings.get(booking_id)

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
        await asyncio.sleep(0)
        event = AuditRecord(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            actor_id=actor_id,
            actor_kind=actor_kind,
            action=action,
            target_id=target_id,
            reason=reason,
            details=details or {},
            created_at=_utcnow(),
        )
        self._put(self._repo.audit, event.id, event)
        return event

    async def list_audit_events(self, tenant_id: str | None = None, limit: int = 100) -> list[AuditRecord]:
        await asyncio.sleep(0)
        events = [e for e in self._repo.audit.values() if tenant_id is None or e.tenant_id == tenant_id]
        return sorted(events, key=lambda e: e.created_at, reverse=True)[:limit]


# ── Seed helpers ─────────────────────────────────────────────────────────────


async def seed_plans(repo: InMemoryAccessRepository) -> dict[str, PlanRecord]:
    async with repo.transaction() as store:
        plans = {}
        for definition in DEFAULT_PLANS:
            plans[definition["slug"]] = await store.create_plan(**definition, status="active")
        return plans


async def seed_tenant(
    repo: InMemoryAccessRepository,
    slug: str,
    plan_slug: str = "starter",
    status: str = "active",
) -> TenantRecord:
    async with repo.transaction() as store:
        plan = await store.get_plan_by_slug(plan_slug)
        return await store.create_tenant(name=slug.title(), slug=slug, plan_id=plan.id, status=status)


async def seed_account(
    repo: InMemoryAccessRepository,
    kind: SubjectKind,
    email: str,
    tenant_id: str | None = None,
    roles: list[str] | None = None,
    explicit_permissions: list[str] | None = None,
    password: str = PASSWORD,
) -> AccountRecord:
    async with repo.transaction() as store:
        return await store.create_account(
            kind,
            email,
            password_hash=hash_password(password),
            tenant_id=tenant_id,
            roles=roles,
            explicit_permissions=explicit_permissions,
        )


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def repo() -> InMemoryAccessRepository:
    """Repository with the default plan catalog."""
    repository = InMemoryAccessRepository()
    await seed_plans(repository)
    return repository


@pytest.fixture
def password() -> str:
    """Password every seeded account is created with."""
    return PASSWORD


@pytest.fixture
def make_tenant(repo):
    """Factory fixture: await make_tenant(slug, plan_slug=..., status=...)."""

    async def factory(slug: str, plan_slug: str = "starter", status: str = "active") -> TenantRecord:
        return await seed_tenant(repo, slug, plan_slug=plan_slug, status=status)

    return factory


@pytest.fixture
def make_account(repo):
    """Factory fixture: await make_account(kind, email, tenant_id=..., roles=...)."""

    async def factory(kind: SubjectKind, email: str, **kwargs: Any) -> AccountRecord:
        return await seed_account(repo, kind, email, **kwargs)

    return factory


@pytest_asyncio.fixture
async def tenant_alpha(repo) -> TenantRecord:
    return await seed_tenant(repo, "alpha-events", plan_slug="starter")


@pytest_asyncio.fixture
async def tenant_beta(repo) -> TenantRecord:
    return await seed_tenant(repo, "beta-venues", plan_slug="professional")


@pytest_asyncio.fixture
async def alpha_admin(repo, tenant_alpha) -> AccountRecord:
    return await seed_account(
        repo, SubjectKind.tenant_user, "owner@alpha.com", tenant_id=tenant_alpha.id, roles=[TENANT_ADMIN]
    )


@pytest_asyncio.fixture
async def beta_admin(repo, tenant_beta) -> AccountRecord:
    return await seed_account(
        repo, SubjectKind.tenant_user, "owner@beta.com", tenant_id=tenant_beta.id, roles=[TENANT_ADMIN]
    )


@pytest_asyncio.fixture
async def super_admin(repo) -> AccountRecord:
    return await seed_account(repo, SubjectKind.super_admin, "root@venuin.io")


@pytest_asyncio.fixture
async def app(repo):
    """FastAPI app wired to the in-memory repository (no lifespan)."""
    from src.venuin.main import create_app

    application = create_app()
    application.state.access_repository = repo
    application.state.login_throttle = None
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing the API."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
