"""Principal resolver: request credentials -> Principal, or Unauthenticated.

Token claims are used for identity only. Roles, explicit grants, account
state and tenant state are always loaded fresh from the store, so a role
change, deactivation, suspension or revocation takes effect on the very
next request.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog

from src.venuin.auth.permissions import MANAGER, SUPER_ADMIN, TENANT_ADMIN, TENANT_USER, resolve_permissions
from src.venuin.auth.principal import (
    TENANT_BOUND_KINDS,
    BearerTokenCredential,
    Credentials,
    DevOverrideCredential,
    Principal,
    SessionTokenCredential,
    SubjectKind,
)
from src.venuin.config import Settings, get_settings
from src.venuin.core.errors import Unauthenticated
from src.venuin.core.monitoring import record_decision
from src.venuin.core.security import hash_session_token, verify_token
from src.venuin.storage.records import AccountRecord, SessionRecord
from src.venuin.storage.repository import AccessStore

logger = structlog.get_logger(__name__)

# Development override identifiers and the synthetic role each maps to
DEV_OVERRIDE_ROLES: dict[str, str] = {
    "super_admin": SUPER_ADMIN,
    "tenant_admin": TENANT_ADMIN,
    "manager": MANAGER,
    "tenant_user": TENANT_USER,
}

DEV_OVERRIDE_TTL = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def load_session_subject(store: AccessStore, session: SessionRecord) -> AccountRecord:
    """Load and validate the subject behind a live session.

    Raises:
        Unauthenticated: The subject is gone or inactive, belongs to a
            different tenant than the session, or its tenant is no longer
            active.
    """
    kind = session.subject_kind
    account = await store.get_account(kind, session.subject_id)
    if account is None:
        logger.info("authz.subject_missing", subject_id=session.subject_id, subject_kind=kind.value)
        raise Unauthenticated("Account no longer exists")
    if not account.is_active:
        logger.info("authz.subject_inactive", subject_id=account.id, subject_kind=kind.value)
        raise Unauthenticated("Account is disabled")

    if kind in TENANT_BOUND_KINDS:
        if account.tenant_id != session.tenant_id:
            raise Unauthenticated("Session does not match account tenant")
        tenant = await store.get_tenant(account.tenant_id)
        if tenant is None or not tenant.is_active:
            logger.info("authz.tenant_inactive", tenant_id=account.tenant_id)
            raise Unauthenticated("Organization is not active")
    elif session.assumed:
        # Super admin acting inside a tenant: the tenant must still exist
        if session.tenant_id is None or await store.get_tenant(session.tenant_id) is None:
            raise Unauthenticated("Assumed organization no longer exists")
    return account


def build_principal(account: AccountRecord, session: SessionRecord) -> Principal:
    return Principal(
        subject_id=account.id,
        subject_kind=session.subject_kind,
        tenant_id=session.tenant_id,
        roles=frozenset(account.roles),
        permissions=resolve_permissions(account.roles, account.explicit_permissions),
        issued_at=session.created_at,
        expires_at=session.expires_at,
        session_id=session.id,
        assumed=session.assumed,
        email=account.email,
    )


class PrincipalResolver:
    """Resolve credentials to a Principal. Read-only.

    Args:
        store: AccessStore for the current unit of work.
        settings: Overrides the global settings (used for environment gating).
    """

    def __init__(self, store: AccessStore, settings: Settings | None = None) -> None:
        self._store = store
        self._settings = settings or get_settings()

    async def resolve(self, credentials: Credentials) -> Principal:
        """Resolve credentials to a Principal.

        Raises:
            Unauthenticated: Missing, unknown, expired or revoked credentials,
                a deleted or disabled subject, an inactive tenant, or a
                development override outside development mode.
        """
        try:
            if isinstance(credentials, DevOverrideCredential):
                principal = self._resolve_dev_override(credentials)
            elif isinstance(credentials, SessionTokenCredential):
                session = await self._store.get_session_by_token_hash(hash_session_token(credentials.token))
                principal = await self._resolve_session(session)
            elif isinstance(credentials, BearerTokenCredential):
                principal = await self._resolve_bearer(credentials)
            else:
                raise Unauthenticated()
        except Unauthenticated as e:
            record_decision("resolve", "deny", type(credentials).__name__)
            logger.info("authz.unauthenticated", credential=type(credentials).__name__, reason=e.message)
            raise
        record_decision("resolve", "allow", principal.subject_kind.value)
        return principal

    async def _resolve_bearer(self, credentials: BearerTokenCredential) -> Principal:
        claims = verify_token(credentials.token, token_type="access")
        session_id = claims.get("sid")
        if not session_id:
            raise Unauthenticated("Token is not bound to a session")
        session = await self._store.get_session(str(session_id))
        if session is not None and (
            claims.get("sub") != session.subject_id
            or claims.get("kind") != session.subject_kind.value
            or claims.get("tid") != session.tenant_id
        ):
            raise Unauthenticated("Token does not match its session")
        return await self._resolve_session(session)

    async def _resolve_session(self, session: SessionRecord | None) -> Principal:
        if session is None:
            raise Unauthenticated("Unknown session")
        if not session.is_live(_utcnow()):
            raise Unauthenticated("Session expired or revoked")
        account = await load_session_subject(self._store, session)
        return build_principal(account, session)

    def _resolve_dev_override(self, credentials: DevOverrideCredential) -> Principal:
        if not self._settings.dev_override_active:
            logger.warning(
                "authz.dev_override_rejected",
                environment=self._settings.ENVIRONMENT.value,
            )
            raise Unauthenticated("Development override is disabled")

        role = DEV_OVERRIDE_ROLES.get(credentials.identifier.strip())
        if role is None:
            raise Unauthenticated("Unknown development override")

        tenant_id: str | None = None
        if role != SUPER_ADMIN:
            tenant_id = self._settings.DEV_OVERRIDE_TENANT_ID or None
            if tenant_id is None:
                raise Unauthenticated("DEV_OVERRIDE_TENANT_ID is not configured")

        now = _utcnow()
        logger.warning("authz.dev_override_used", role=role, tenant_id=tenant_id)
        return Principal(
            subject_id=f"dev:{role}",
            subject_kind=SubjectKind.dev_override,
            tenant_id=tenant_id,
            roles=frozenset({role}),
            permissions=resolve_permissions([role]),
            issued_at=now,
            expires_at=now + DEV_OVERRIDE_TTL,
        )
