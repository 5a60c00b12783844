"""
Identity & credential store.

Handles:
- Registration with a unique (case-insensitive) email
- Credential verification for login
- Password change and soft deactivation

This service never issues tokens; login is composed in SessionService.
"""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_access.auth.passwords import burn_password_check, hash_password, verify_password
from clinic_access.models.base import utcnow
from clinic_access.models.user import Identity
from clinic_access.platform.errors import (
    AccountInactiveError,
    DuplicateEmailError,
    InvalidCredentialError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class IdentityService:
    """Service for identity records and credentials."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, identity_id: str) -> Optional[Identity]:
        return self.session.query(Identity).filter(Identity.id == identity_id).first()

    def get_by_email(self, email: str) -> Optional[Identity]:
        return (
            self.session.query(Identity)
            .filter(func.lower(Identity.email) == normalize_email(email))
            .first()
        )

    def register(
        self,
        email: str,
        raw_password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Identity:
        """
        Create a new identity.

        Raises:
            ValidationError: email empty or password too short
            DuplicateEmailError: email already registered
        """
        email = normalize_email(email)
        if not email or "@" not in email:
            raise ValidationError("A valid email is required", details={"field": "email"})
        if len(raw_password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                details={"field": "password"},
            )

        if self.get_by_email(email) is not None:
            raise DuplicateEmailError()

        identity = Identity(
            email=email,
            password_hash=hash_password(raw_password),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            is_active=True,
        )
        try:
            with self.session.begin_nested():
                self.session.add(identity)
                self.session.flush()
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email
            raise DuplicateEmailError()

        logger.info("Identity registered", extra={"identity_id": identity.id})
        return identity

    def verify_credential(self, email: str, raw_password: str) -> Identity:
        """
        Check an email/password pair.

        Raises:
            InvalidCredentialError: unknown email or wrong password
            AccountInactiveError: password correct but identity deactivated
        """
        identity = self.get_by_email(email)
        if identity is None:
            burn_password_check(raw_password or "")
            logger.warning("Login failed: unknown email")
            raise InvalidCredentialError()

        if not verify_password(raw_password or "", identity.password_hash):
            logger.warning("Login failed: bad password", extra={"identity_id": identity.id})
            raise InvalidCredentialError()

        if not identity.is_active:
            logger.warning("Login failed: identity inactive", extra={"identity_id": identity.id})
            raise AccountInactiveError()

        return identity

    def change_password(self, identity_id: str, old_password: str, new_password: str) -> Identity:
        identity = self.get(identity_id)
        if identity is None:
            raise NotFoundError("Identity", identity_id)
        if not verify_password(old_password or "", identity.password_hash):
            raise InvalidCredentialError()
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                details={"field": "new_password"},
            )
        identity.password_hash = hash_password(new_password)
        identity.password_changed_at = utcnow()
        self.session.flush()
        logger.info("Password changed", extra={"identity_id": identity.id})
        return identity

    def deactivate(self, identity_id: str) -> Identity:
        identity = self.get(identity_id)
        if identity is None:
            raise NotFoundError("Identity", identity_id)
        if identity.is_active:
            identity.deactivate()
            self.session.flush()
            logger.info("Identity deactivated", extra={"identity_id": identity.id})
        return identity
