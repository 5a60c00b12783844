"""
Tests for session token issuing and verification.
"""

import pytest
import jwt
from datetime import datetime, timedelta, timezone

from clinic_access.auth.token_service import TokenService, get_token_service
from clinic_access.config.settings import (
    SettingsError,
    get_auth_settings,
    load_auth_settings,
    reset_auth_settings,
)
from clinic_access.platform.errors import (
    AuthenticationError,
    TokenExpiredError,
    TokenMalformedError,
    TokenSignatureError,
)

SECRET = "unit-test-secret-0123456789abcdef0123456789"


@pytest.fixture
def service():
    return TokenService(secret=SECRET, ttl=timedelta(hours=24))


class TestIssue:

    def test_token_without_tenant(self, service):
        issued = service.issue("identity-1")
        claims = service.verify(issued.access_token)

        assert claims.identity_id == "identity-1"
        assert claims.tenant_id is None
        assert claims.has_tenant is False
        assert issued.tenant_id is None
        assert issued.token_type == "bearer"

    def test_token_with_tenant(self, service):
        issued = service.issue("identity-1", tenant_id="tenant-1")
        claims = service.verify(issued.access_token)

        assert claims.tenant_id == "tenant-1"
        assert claims.has_tenant is True

    def test_expiry_is_issue_time_plus_ttl(self, service):
        now = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
        issued = service.issue("identity-1", now=now)

        assert issued.expires_at == now + timedelta(hours=24)

    def test_no_roles_or_permissions_in_payload(self, service):
        issued = service.issue("identity-1", tenant_id="tenant-1")
        payload = jwt.decode(issued.access_token, SECRET, algorithms=["HS256"])

        assert set(payload) == {"sub", "tenant_id", "iat", "exp"}

    def test_expires_in_counts_down(self, service):
        issued = service.issue("identity-1")
        assert 0 < issued.expires_in <= 24 * 3600


class TestVerify:

    def test_expired_token(self, service):
        issued = service.issue("identity-1", now=datetime.now(timezone.utc) - timedelta(hours=25))

        with pytest.raises(TokenExpiredError) as exc_info:
            service.verify(issued.access_token)
        assert exc_info.value.code == "TOKEN_EXPIRED"
        assert exc_info.value.status_code == 401

    def test_wrong_signature(self, service):
        forged = TokenService(secret="another-secret-0123456789abcdef0123456789").issue("identity-1")

        with pytest.raises(TokenSignatureError):
            service.verify(forged.access_token)

    def test_tampered_payload(self, service):
        token = service.issue("identity-1", tenant_id="tenant-1").access_token
        header, payload, signature = token.split(".")
        other_payload = service.issue("identity-2", tenant_id="tenant-9").access_token.split(".")[1]

        with pytest.raises(TokenSignatureError):
            service.verify(".".join([header, other_payload, signature]))

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_malformed(self, service, token):
        with pytest.raises(TokenMalformedError):
            service.verify(token)

    def test_missing_required_claim(self, service):
        token = jwt.encode({"sub": "identity-1", "iat": 0}, SECRET, algorithm="HS256")

        with pytest.raises(TokenMalformedError):
            service.verify(token)

    def test_all_failures_are_authentication_errors(self, service):
        for error in (TokenExpiredError(), TokenSignatureError(), TokenMalformedError()):
            assert isinstance(error, AuthenticationError)


class TestSettings:

    def test_service_built_from_environment(self, monkeypatch):
        monkeypatch.setenv("JWT_TTL_HOURS", "2")
        reset_auth_settings()

        assert get_auth_settings().jwt_ttl_hours == 2
        assert get_token_service().ttl == timedelta(hours=2)

    def test_production_requires_secret(self, monkeypatch):
        monkeypatch.setenv("ENV", "production")
        monkeypatch.delenv("JWT_SECRET", raising=False)

        with pytest.raises(SettingsError):
            load_auth_settings()

    def test_development_falls_back_to_dev_secret(self, monkeypatch):
        monkeypatch.setenv("ENV", "development")
        monkeypatch.delenv("JWT_SECRET", raising=False)

        settings = load_auth_settings()
        assert settings.jwt_secret
        assert settings.is_production is False

    def test_invalid_integer(self, monkeypatch):
        monkeypatch.setenv("JWT_TTL_HOURS", "soon")

        with pytest.raises(SettingsError):
            load_auth_settings()
