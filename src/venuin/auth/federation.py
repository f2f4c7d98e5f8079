"""Identity federation: verify a provider ID token into a FederatedIdentity.

The provider's sign-in protocol runs on the client. The backend only checks
the resulting ID token's signature, audience, issuer and expiry.
"""

from __future__ import annotations

import structlog
from jose import JWTError, jwt

from src.venuin.auth.principal import FederatedIdentity
from src.venuin.config import Settings, get_settings
from src.venuin.core.errors import InvalidCredentials, Unauthenticated

logger = structlog.get_logger(__name__)


class FederatedTokenVerifier:
    """Verify ID tokens with the configured key, audience and issuer."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def verify(self, id_token: str) -> FederatedIdentity:
        """Decode and validate an ID token.

        Raises:
            Unauthenticated: Federation is not configured.
            InvalidCredentials: The token is invalid or lacks subject/email.
        """
        settings = self._settings
        if not settings.FEDERATION_JWT_KEY:
            raise Unauthenticated("Federated sign-in is not configured")

        try:
            claims = jwt.decode(
                id_token,
                settings.FEDERATION_JWT_KEY,
                algorithms=[settings.FEDERATION_JWT_ALGORITHM],
                audience=settings.FEDERATION_AUDIENCE or None,
                issuer=settings.FEDERATION_ISSUER or None,
                options={"verify_aud": bool(settings.FEDERATION_AUDIENCE)},
            )
        except JWTError as e:
            logger.info("auth.federated_token_invalid", provider=settings.FEDERATION_PROVIDER, error=str(e))
            raise InvalidCredentials("Invalid identity token")

        subject = claims.get("sub")
        email = claims.get("email")
        if not subject or not email:
            raise InvalidCredentials("Identity token has no subject or email")

        return FederatedIdentity(
            provider=settings.FEDERATION_PROVIDER,
            subject=str(subject),
            email=str(email),
            email_verified=claims.get("email_verified") is True,
            name=claims.get("name"),
        )
