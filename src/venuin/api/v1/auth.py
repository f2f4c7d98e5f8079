"""Authentication API endpoints.

Signup, password and federated login, session refresh, logout and the
current principal. Login, refresh and logout all go through the one
SessionManager contract regardless of which app the client is.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.venuin.api.deps import get_federated_verifier, get_principal, get_session_manager, get_store
from src.venuin.auth.federation import FederatedTokenVerifier
from src.venuin.auth.principal import Principal
from src.venuin.auth.sessions import SessionManager
from src.venuin.schemas.auth import (
    FederatedLoginRequest,
    LoginRequest,
    PrincipalResponse,
    SessionResponse,
    SessionTokenRequest,
    SignupRequest,
    SignupResponse,
)
from src.venuin.services import onboarding
from src.venuin.storage.repository import AccessStore

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
async def signup(body: SignupRequest, store: AccessStore = Depends(get_store, scope="function")):
    """Create a platform user. Sign in afterwards with subject_kind=platform_user."""
    account = await onboarding.signup(store, body.email, body.password, name=body.name)
    return SignupResponse(id=account.id, email=account.email, name=account.name)


@router.post("/login", response_model=SessionResponse)
async def login(body: LoginRequest, sessions: SessionManager = Depends(get_session_manager)):
    """Verify a password and issue a session token plus a bound access token."""
    issued = await sessions.login(body.tenant_slug, body.email, body.password, subject_kind=body.subject_kind)
    return SessionResponse.from_issued(issued)


@router.post("/login/federated", response_model=SessionResponse)
async def login_federated(
    body: FederatedLoginRequest,
    sessions: SessionManager = Depends(get_session_manager),
    verifier: FederatedTokenVerifier = Depends(get_federated_verifier),
):
    """Exchange an identity-provider ID token for a session."""
    identity = verifier.verify(body.id_token)
    issued = await sessions.login_federated(identity, tenant_slug=body.tenant_slug)
    return SessionResponse.from_issued(issued)


@router.post("/refresh", response_model=SessionResponse)
async def refresh(body: SessionTokenRequest, sessions: SessionManager = Depends(get_session_manager)):
    """Revoke the presented session and issue its replacement."""
    issued = await sessions.refresh(body.session_token)
    return SessionResponse.from_issued(issued)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(body: SessionTokenRequest, sessions: SessionManager = Depends(get_session_manager)):
    """Revoke the session. Succeeds for unknown or already revoked tokens."""
    await sessions.logout(body.session_token)


@router.get("/me", response_model=PrincipalResponse)
async def get_me(principal: Principal = Depends(get_principal)):
    """Display-only copy of the resolved principal."""
    return PrincipalResponse(**principal.to_display())
