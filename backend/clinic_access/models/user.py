"""
Identity model: one record per principal that can log in.

Identities are never physically deleted. Deactivation flips is_active and
every later login or token use fails with an authentication error.

SECURITY: only the bcrypt hash of the password is stored.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship

from clinic_access.db_base import Base
from clinic_access.models.base import TimestampMixin, generate_uuid, utcnow

if TYPE_CHECKING:
    from clinic_access.models.membership import Membership


class Identity(Base, TimestampMixin):
    """
    A user who can authenticate.

    Emails are stored lower-cased so uniqueness is case-insensitive.
    """

    __tablename__ = "identities"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key (token sub claim)"
    )

    email = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Login email, normalized to lower case"
    )

    password_hash = Column(
        String(255),
        nullable=False,
        comment="bcrypt hash of the password"
    )

    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)

    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
        comment="False once the identity is deactivated"
    )

    password_changed_at = Column(DateTime(timezone=True), nullable=True)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    memberships = relationship(
        "Membership",
        back_populates="identity",
        lazy="dynamic",
    )

    def __repr__(self) -> str:
        return f"<Identity(id={self.id}, email={self.email}, is_active={self.is_active})>"

    @property
    def full_name(self) -> str:
        """Return full name or email if no name is set."""
        parts = [p for p in (self.first_name, self.last_name) if p]
        if parts:
            return " ".join(parts)
        return self.email or ""

    def deactivate(self, at: Optional[datetime] = None) -> None:
        self.is_active = False
        self.deactivated_at = at or utcnow()
