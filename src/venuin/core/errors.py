"""Access-control error taxonomy.

Every failure the authorization core can produce is an ``AccessError``
subclass with its own HTTP status and machine-readable ``code``. The UI keys
off the code to tell "sign in again" apart from "not your venue", "ask your
admin" and "upgrade your plan", so the kinds are never collapsed.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse

# PermissionDenied reasons
MISSING_PERMISSION = "missing_permission"
FEATURE_NOT_IN_PLAN = "feature_not_in_plan"


class AccessError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "ACCESS_ERROR"
    default_message: str = "Request could not be authorized"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class Unauthenticated(AccessError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHENTICATED"
    default_message = "Authentication required"


class InvalidCredentials(AccessError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password"


class CrossTenantDenied(AccessError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "CROSS_TENANT_DENIED"
    default_message = "This resource belongs to another organization"


class PermissionDenied(AccessError):
    """Right tenant, but the capability is not granted or not purchased."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "PERMISSION_DENIED"

    def __init__(
        self,
        capability: str,
        reason: str = MISSING_PERMISSION,
        message: str | None = None,
    ) -> None:
        if message is None:
            if reason == FEATURE_NOT_IN_PLAN:
                message = f"Your plan does not include '{capability}'. Upgrade to unlock it."
            else:
                message = f"You do not have permission to '{capability}'. Ask your administrator."
        self.capability = capability
        self.reason = reason
        super().__init__(
            message,
            capability=capability,
            reason=reason,
            upgrade_required=reason == FEATURE_NOT_IN_PLAN,
        )


class PlanLimitExceeded(AccessError):
    """Right tenant and permission, but the plan quota is exhausted."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "PLAN_LIMIT_EXCEEDED"

    def __init__(self, limit: str, current: int, maximum: int) -> None:
        self.limit = limit
        self.current = current
        self.maximum = maximum
        super().__init__(
            f"Plan limit reached for {limit} ({current}/{maximum}). Upgrade your plan to add more.",
            limit=limit,
            current=current,
            maximum=maximum,
            upgrade_required=True,
        )


class TooManyLoginAttempts(AccessError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "TOO_MANY_ATTEMPTS"

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(
            "Too many login attempts. Try again later.",
            retry_after=retry_after,
        )


class NotFound(AccessError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_message = "Resource not found"


class Conflict(AccessError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    default_message = "Resource already exists"


class InvalidRequest(AccessError):
    status_code = 422
    code = "INVALID_REQUEST"
    default_message = "Invalid request"


# ── FastAPI integration ─────────────────────────────────────────────────────


async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
    """Render an AccessError as ``{"code", "message", ...details}``."""
    headers: dict[str, str] = {}
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, TooManyLoginAttempts):
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)
