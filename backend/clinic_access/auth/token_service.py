"""
Session token issuing and verification.

Tokens are HS256 JWTs signed with JWT_SECRET. They are stateless: there is
no server-side session record and no revocation list. Selecting, switching
or clearing a clinic simply issues a new token; the old one expires on
its own.

Usage:
    token_service = get_token_service()
    issued = token_service.issue(identity.id, tenant_id=tenant.id)
    claims = token_service.verify(issued.access_token)
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import ValidationError as PydanticValidationError

from clinic_access.auth.jwt import IssuedToken, SessionClaims
from clinic_access.config.settings import get_auth_settings
from clinic_access.platform.errors import (
    TokenExpiredError,
    TokenMalformedError,
    TokenSignatureError,
)

logger = logging.getLogger(__name__)


class TokenService:
    """
    Issues and verifies signed session tokens.

    Thread-safe: holds only immutable configuration.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(hours=24),
    ):
        self._secret = secret
        self._algorithm = algorithm
        self._ttl = ttl

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(
        self,
        identity_id: str,
        tenant_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> IssuedToken:
        """
        Sign a token for an identity, optionally bound to a clinic.

        Args:
            identity_id: Identity the token authenticates
            tenant_id: Selected clinic, or None for a clinic-less token
            now: Override for the issue time (tests)
        """
        issued_at = now or datetime.now(timezone.utc)
        expires_at = issued_at + self._ttl

        payload = {
            "sub": identity_id,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        if tenant_id:
            payload["tenant_id"] = tenant_id

        token = jwt.encode(payload, self._secret, algorithm=self._algorithm)

        logger.debug(
            "Issued session token",
            extra={"identity_id": identity_id, "tenant_id": tenant_id},
        )
        return IssuedToken(
            access_token=token,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            tenant_id=tenant_id,
        )

    def verify(self, token: str) -> SessionClaims:
        """
        Verify signature and expiry and return the claims.

        Raises:
            TokenExpiredError: exp is in the past
            TokenSignatureError: signature does not match
            TokenMalformedError: anything else (bad encoding, missing claims)
        """
        if not token:
            raise TokenMalformedError("Token is missing")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["sub", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError()
        except jwt.InvalidSignatureError:
            raise TokenSignatureError()
        except jwt.InvalidTokenError as e:
            logger.debug("Token decode failed", extra={"error_type": type(e).__name__})
            raise TokenMalformedError()

        try:
            return SessionClaims(**payload)
        except PydanticValidationError:
            raise TokenMalformedError("Token claims are invalid")


_token_service: Optional[TokenService] = None


def get_token_service() -> TokenService:
    """Get the process-wide TokenService built from settings."""
    global _token_service
    if _token_service is None:
        settings = get_auth_settings()
        _token_service = TokenService(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            ttl=timedelta(hours=settings.jwt_ttl_hours),
        )
    return _token_service


def reset_token_service() -> None:
    """Drop the cached service (tests)."""
    global _token_service
    _token_service = None
