"""
Session token claims.

Tokens carry exactly two application claims:
- sub: identity_id
- tenant_id: selected clinic, or absent when no clinic is selected

plus the registered iat/exp timestamps. No roles or permissions are ever
embedded: those are evaluated from live data on every request.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionClaims(BaseModel):
    """Validated payload of a session token."""

    sub: str = Field(..., min_length=1, description="Identity ID")
    tenant_id: Optional[str] = Field(None, description="Selected clinic ID")
    iat: int = Field(..., description="Issued at timestamp (Unix)")
    exp: int = Field(..., description="Expiration timestamp (Unix)")

    model_config = ConfigDict(extra="ignore")

    @property
    def identity_id(self) -> str:
        return self.sub

    @property
    def issued_at(self) -> datetime:
        return datetime.fromtimestamp(self.iat, tz=timezone.utc)

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)

    @property
    def has_tenant(self) -> bool:
        return bool(self.tenant_id)


@dataclass(frozen=True)
class IssuedToken:
    """A freshly signed token and its expiry."""

    access_token: str
    expires_at: datetime
    tenant_id: Optional[str] = None
    token_type: str = "bearer"

    @property
    def expires_in(self) -> int:
        """Seconds until expiry."""
        remaining = (self.expires_at - datetime.now(timezone.utc)).total_seconds()
        return max(0, int(remaining))
