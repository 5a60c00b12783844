"""
Password hashing with bcrypt.

Only salted one-way hashes are stored. Verification uses bcrypt.checkpw,
which compares in constant time.
"""

import logging
from typing import Optional

import bcrypt

from clinic_access.config.settings import get_auth_settings

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of input
_BCRYPT_MAX_BYTES = 72

_dummy_hash: Optional[bytes] = None


def _encode(raw_password: str) -> bytes:
    return raw_password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(raw_password: str, rounds: Optional[int] = None) -> str:
    """Hash a password with a fresh salt."""
    if rounds is None:
        rounds = get_auth_settings().bcrypt_rounds
    hashed = bcrypt.hashpw(_encode(raw_password), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(raw_password: str, password_hash: str) -> bool:
    """
    Check a password against a stored hash.

    Returns False (never raises) for hashes that bcrypt cannot parse.
    """
    try:
        return bcrypt.checkpw(_encode(raw_password), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def burn_password_check(raw_password: str) -> None:
    """
    Run a throwaway bcrypt comparison.

    Called when the email is unknown so that response time does not reveal
    whether an account exists.
    """
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = bcrypt.hashpw(b"unused-password", bcrypt.gensalt(
            rounds=get_auth_settings().bcrypt_rounds
        ))
    bcrypt.checkpw(_encode(raw_password), _dummy_hash)
