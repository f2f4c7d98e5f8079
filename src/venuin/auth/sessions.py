"""Session lifecycle manager.

One ``login`` contract for every login surface, parameterized by subject
kind and optional tenant scope. Sessions move only
``active --(revoke | expire)--> terminal``; refresh revokes the old session
and issues a new one, it never extends a session in place.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import NoReturn

import structlog

from src.venuin.auth.principal import (
    GLOBAL_KINDS,
    TENANT_BOUND_KINDS,
    FederatedIdentity,
    Principal,
    SubjectKind,
)
from src.venuin.auth.resolver import build_principal, load_session_subject
from src.venuin.config import Settings, get_settings
from src.venuin.core.errors import (
    InvalidCredentials,
    InvalidRequest,
    NotFound,
    PermissionDenied,
    Unauthenticated,
)
from src.venuin.core.monitoring import sessions_issued_total, sessions_revoked_total
from src.venuin.core.redis import LoginThrottle
from src.venuin.core.security import (
    burn_password_check,
    create_access_token,
    generate_session_token,
    hash_session_token,
    verify_password,
)
from src.venuin.storage.records import AccountRecord, SessionRecord
from src.venuin.storage.repository import AccessStore

logger = structlog.get_logger(__name__)

ASSUME_REASON_MIN_LENGTH = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class IssuedSession:
    """A freshly issued session. ``session_token`` is never stored server-side."""

    session_id: str
    session_token: str
    access_token: str
    expires_at: datetime
    principal: Principal


class SessionManager:
    """Issue, refresh and revoke sessions for every subject kind.

    Args:
        store: AccessStore for the current unit of work.
        throttle: Optional failed-login throttle (Redis backed).
        settings: Overrides the global settings.
    """

    def __init__(
        self,
        store: AccessStore,
        throttle: LoginThrottle | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._throttle = throttle
        self._settings = settings or get_settings()

    # ── Login ───────────────────────────────────────────────────────────────

    async def login(
        self,
        tenant_slug: str | None,
        email: str,
        password: str,
        subject_kind: SubjectKind = SubjectKind.tenant_user,
    ) -> IssuedSession:
        """Verify a password and issue a session.

        Tenant users and customers are looked up by (tenant, email) and need
        a tenant slug; super admins and platform users are looked up in
        their own tables and must not send one. Every failure, including an
        unknown or inactive tenant, is the same InvalidCredentials.

        Raises:
            InvalidCredentials: On any verification failure.
            TooManyLoginAttempts: The throttle window is exhausted.
        """
        kind = SubjectKind(subject_kind)
        email = normalize_email(email)

        if kind in TENANT_BOUND_KINDS:
            if not tenant_slug:
                raise InvalidCredentials()
            scope = f"{kind.value}:{tenant_slug}"
        elif kind in GLOBAL_KINDS:
            if tenant_slug:
                raise InvalidCredentials()
            scope = kind.value
        else:
            raise InvalidCredentials()

        if self._throttle is not None:
            await self._throttle.check(scope, email)

        tenant_id: str | None = None
        if kind in TENANT_BOUND_KINDS:
            tenant = await self._store.get_tenant_by_slug(tenant_slug)
            if tenant is None:
                burn_password_check(password)
                await self._fail(scope, email, kind, "tenant_not_found")
            if not tenant.is_active:
                burn_password_check(password)
                await self._fail(scope, email, kind, f"tenant_{tenant.status}")
            tenant_id = tenant.id

        account = await self._store.find_account(kind, email, tenant_id=tenant_id)
        if account is None or not account.password_hash:
            burn_password_check(password)
            await self._fail(scope, email, kind, "unknown_account")
        if not verify_password(password, account.password_hash):
            await self._fail(scope, email, kind, "bad_password")
        if not account.is_active:
            await self._fail(scope, email, kind, "account_inactive")

        if self._throttle is not None:
            await self._throttle.reset(scope, email)

        issued = await self._issue(account, kind, tenant_id=account.tenant_id)
        logger.info(
            "auth.login_succeeded",
            subject_id=account.id,
            subject_kind=kind.value,
            tenant_id=account.tenant_id,
        )
        return issued

    async def login_federated(
        self,
        identity: FederatedIdentity,
        tenant_slug: str | None = None,
    ) -> IssuedSession:
        """Issue a session for an identity verified by an external provider.

        With a tenant slug the identity must match an active user of that
        tenant. Without one it signs into (creating on first use) the
        platform account for that email.
        """
        if not identity.email_verified:
            logger.info("auth.federated_unverified_email", provider=identity.provider)
            raise InvalidCredentials("Email address is not verified by the identity provider")
        email = normalize_email(identity.email)

        if tenant_slug:
            tenant = await self._store.get_tenant_by_slug(tenant_slug)
            if tenant is None or not tenant.is_active:
                raise InvalidCredentials()
            account = await self._store.find_account(SubjectKind.tenant_user, email, tenant_id=tenant.id)
            if account is None or not account.is_active:
                raise InvalidCredentials()
            kind = SubjectKind.tenant_user
        else:
            kind = SubjectKind.platform_user
            account = await self._store.find_account(kind, email)
            if account is None:
                account = await self._store.create_account(kind, email, password_hash=None, name=identity.name)
                await self._store.add_audit_event(
                    "platform_user.federated_signup",
                    actor_id=account.id,
                    actor_kind=kind.value,
                    target_id=account.id,
                    details={"provider": identity.provider},
                )
            elif not account.is_active:
                raise InvalidCredentials()

        logger.info("auth.federated_login_succeeded", provider=identity.provider, subject_kind=kind.value)
        return await self._issue(account, kind, tenant_id=account.tenant_id)

    # ── Refresh / Logout ────────────────────────────────────────────────────

    async def refresh(self, old_token: str) -> IssuedSession:
        """Revoke the old session and issue its replacement.

        The revocation is a compare-and-swap, so of two concurrent refreshes
        of the same session exactly one succeeds.

        Raises:
            Unauthenticated: The old session is unknown, expired, revoked,
                already refreshed, or its subject is no longer valid.
        """
        session = await self._store.get_session_by_token_hash(hash_session_token(old_token))
        now = _utcnow()
        if session is None or not session.is_live(now):
            raise Unauthenticated("Session expired or revoked")

        account = await load_session_subject(self._store, session)

        new_session_id = str(uuid.uuid4())
        if not await self._store.revoke_session(session.id, now, replaced_by=new_session_id):
            logger.warning("auth.refresh_race_lost", session_id=session.id)
            raise Unauthenticated("Session expired or revoked")
        sessions_revoked_total.labels(cause="refresh").inc()

        if session.assumed:
            # Assumed-tenant sessions never outlive their original window
            expires_at = session.expires_at
        else:
            expires_at = now + self._ttl_for(session.subject_kind)

        issued = await self._issue(
            account,
            session.subject_kind,
            tenant_id=session.tenant_id,
            expires_at=expires_at,
            assumed=session.assumed,
            session_id=new_session_id,
        )
        logger.info("auth.session_refreshed", old_session_id=session.id, session_id=new_session_id)
        return issued

    async def logout(self, token: str) -> None:
        """Revoke the session behind ``token``. Idempotent."""
        session = await self._store.get_session_by_token_hash(hash_session_token(token))
        if session is None:
            return
        if await self._store.revoke_session(session.id, _utcnow()):
            sessions_revoked_total.labels(cause="logout").inc()
            logger.info("auth.logout", session_id=session.id, subject_id=session.subject_id)

    async def revoke_subject_sessions(self, kind: SubjectKind, subject_id: str, cause: str = "forced") -> int:
        """Forced sign-out of one subject everywhere."""
        count = await self._store.revoke_subject_sessions(kind, subject_id, _utcnow())
        if count:
            sessions_revoked_total.labels(cause=cause).inc(count)
        logger.info("auth.subject_sessions_revoked", subject_id=subject_id, subject_kind=kind.value, count=count)
        return count

    async def revoke_tenant_sessions(self, tenant_id: str, cause: str = "forced") -> int:
        """Forced sign-out of every session bound to a tenant."""
        count = await self._store.revoke_tenant_sessions(tenant_id, _utcnow())
        if count:
            sessions_revoked_total.labels(cause=cause).inc(count)
        logger.info("auth.tenant_sessions_revoked", tenant_id=tenant_id, count=count)
        return count

    # ── Super-admin tenant assumption ──────────────────────────────────────

    async def assume_tenant(self, principal: Principal, tenant_id: str, reason: str) -> IssuedSession:
        """Issue a short-lived super-admin session scoped to a tenant.

        Raises:
            PermissionDenied: The caller is not a persisted super admin.
            InvalidRequest: The reason is shorter than 10 characters.
            NotFound: The tenant does not exist.
        """
        if principal.subject_kind != SubjectKind.super_admin or not principal.has_permission("assume_tenant"):
            raise PermissionDenied("assume_tenant")
        reason = (reason or "").strip()
        if len(reason) < ASSUME_REASON_MIN_LENGTH:
            raise InvalidRequest(
                f"A reason of at least {ASSUME_REASON_MIN_LENGTH} characters is required",
                field="reason",
            )
        tenant = await self._store.get_tenant(tenant_id)
        if tenant is None:
            raise NotFound("Tenant not found")
        account = await self._store.get_account(SubjectKind.super_admin, principal.subject_id)
        if account is None or not account.is_active:
            raise Unauthenticated("Account no longer exists")

        expires_at = _utcnow() + timedelta(minutes=self._settings.ASSUMED_SESSION_TTL_MINUTES)
        issued = await self._issue(
            account,
            SubjectKind.super_admin,
            tenant_id=tenant.id,
            expires_at=expires_at,
            assumed=True,
        )
        await self._store.add_audit_event(
            "tenant.assumed",
            tenant_id=tenant.id,
            actor_id=account.id,
            actor_kind=SubjectKind.super_admin.value,
            target_id=tenant.id,
            reason=reason,
            details={"session_id": issued.session_id, "expires_at": expires_at.isoformat()},
        )
        logger.warning(
            "auth.tenant_assumed",
            subject_id=account.id,
            tenant_id=tenant.id,
            tenant_slug=tenant.slug,
            session_id=issued.session_id,
        )
        return issued

    # ── Internals ───────────────────────────────────────────────────────────

    def _ttl_for(self, kind: SubjectKind) -> timedelta:
        if kind == SubjectKind.super_admin:
            return timedelta(minutes=self._settings.ADMIN_SESSION_TTL_MINUTES)
        return timedelta(minutes=self._settings.SESSION_TTL_MINUTES)

    async def _fail(self, scope: str, email: str, kind: SubjectKind, reason: str) -> NoReturn:
        if self._throttle is not None:
            await self._throttle.record_failure(scope, email)
        logger.info("auth.login_failed", scope=scope, subject_kind=kind.value, reason=reason)
        raise InvalidCredentials()

    async def _issue(
        self,
        account: AccountRecord,
        kind: SubjectKind,
        tenant_id: str | None,
        expires_at: datetime | None = None,
        assumed: bool = False,
        session_id: str | None = None,
    ) -> IssuedSession:
        now = _utcnow()
        token = generate_session_token()
        session: SessionRecord = await self._store.create_session(
            session_id=session_id or str(uuid.uuid4()),
            token_hash=hash_session_token(token),
            subject_id=account.id,
            subject_kind=kind,
            tenant_id=tenant_id,
            created_at=now,
            expires_at=expires_at or now + self._ttl_for(kind),
            assumed=assumed,
        )
        access_token = create_access_token(
            {
                "sub": account.id,
                "kind": kind.value,
                "tid": tenant_id,
                "sid": session.id,
                "roles": sorted(account.roles),
            },
            not_after=session.expires_at,
        )
        sessions_issued_total.labels(subject_kind=kind.value).inc()
        return IssuedSession(
            session_id=session.id,
            session_token=token,
            access_token=access_token,
            expires_at=session.expires_at,
            principal=build_principal(account, session),
        )
