"""
Runtime settings for the clinic access core.

All values come from environment variables and are read once per process.
Tests call reset_auth_settings() after patching the environment.

Environment:
    ENV: deployment environment (development, test, production)
    JWT_SECRET: HMAC secret for session tokens (required outside development/test)
    JWT_ALGORITHM: signing algorithm (default HS256)
    JWT_TTL_HOURS: session token lifetime in hours (default 24)
    BCRYPT_ROUNDS: bcrypt work factor (default 12)
    DEFAULT_TENANT_ROLE: role given on first tenant selection (default staff)
    MEMBERSHIP_PROVISION_RETRIES: conflict retries for membership upsert (default 3)
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

# Only used when ENV is development or test
_DEVELOPMENT_SECRET = "development-secret-change-in-prod-0123456789"

_NON_PRODUCTION_ENVS = {"development", "dev", "test", "local"}


class SettingsError(ValueError):
    """Raised when required configuration is missing or invalid."""
    pass


@dataclass(frozen=True)
class AuthSettings:
    """Immutable snapshot of auth configuration."""

    env: str
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_ttl_hours: int = 24
    bcrypt_rounds: int = 12
    default_tenant_role: str = "staff"
    membership_provision_retries: int = 3

    @property
    def is_production(self) -> bool:
        return self.env not in _NON_PRODUCTION_ENVS


def _int_from_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SettingsError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise SettingsError(f"{name} must be >= {minimum}, got {value}")
    return value


def load_auth_settings() -> AuthSettings:
    """
    Build AuthSettings from the current environment.

    Raises:
        SettingsError: If JWT_SECRET is missing in a production environment,
            or a numeric variable cannot be parsed.
    """
    env = os.getenv("ENV", "development").lower()
    secret = os.getenv("JWT_SECRET")

    if not secret:
        if env not in _NON_PRODUCTION_ENVS:
            raise SettingsError("JWT_SECRET environment variable is not set")
        logger.warning(
            "JWT_SECRET not set, using development secret",
            extra={"env": env},
        )
        secret = _DEVELOPMENT_SECRET

    return AuthSettings(
        env=env,
        jwt_secret=secret,
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        jwt_ttl_hours=_int_from_env("JWT_TTL_HOURS", 24, minimum=1),
        bcrypt_rounds=_int_from_env("BCRYPT_ROUNDS", 12, minimum=4),
        default_tenant_role=os.getenv("DEFAULT_TENANT_ROLE", "staff"),
        membership_provision_retries=_int_from_env(
            "MEMBERSHIP_PROVISION_RETRIES", 3, minimum=1
        ),
    )


_settings: Optional[AuthSettings] = None


def get_auth_settings() -> AuthSettings:
    """Get the process-wide AuthSettings (loaded on first use)."""
    global _settings
    if _settings is None:
        _settings = load_auth_settings()
    return _settings


def reset_auth_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
