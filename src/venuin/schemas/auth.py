"""Pydantic schemas for authentication API endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from src.venuin.auth.principal import SubjectKind
from src.venuin.auth.sessions import IssuedSession


class SignupRequest(BaseModel):
    """Public signup; creates a platform user with no tenant."""

    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., min_length=8, description="Password (min 8 chars)")
    name: str | None = Field(None, max_length=200)


class LoginRequest(BaseModel):
    """Request schema for every password login surface."""

    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")
    tenant_slug: str | None = Field(None, description="Required for tenant users and customers")
    subject_kind: SubjectKind = Field(SubjectKind.tenant_user, description="Which account table to use")


class FederatedLoginRequest(BaseModel):
    id_token: str = Field(..., min_length=1, description="ID token from the identity provider")
    tenant_slug: str | None = None


class SessionTokenRequest(BaseModel):
    """Request schema for refresh and logout."""

    session_token: str = Field(..., min_length=1)


class PrincipalResponse(BaseModel):
    """Display-only copy of the principal. Never accepted as input."""

    subject_id: str
    subject_kind: SubjectKind
    tenant_id: str | None = None
    email: str | None = None
    roles: list[str]
    permissions: list[str]
    issued_at: datetime
    expires_at: datetime
    assumed: bool = False


class SessionResponse(BaseModel):
    """Response schema with the session token and its bound access token."""

    session_id: str
    session_token: str
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    principal: PrincipalResponse

    @classmethod
    def from_issued(cls, issued: IssuedSession) -> SessionResponse:
        return cls(
            session_id=issued.session_id,
            session_token=issued.session_token,
            access_token=issued.access_token,
            expires_at=issued.expires_at,
            principal=PrincipalResponse(**issued.principal.to_display()),
        )


class SignupResponse(BaseModel):
    id: str
    email: str
    name: str | None = None
