"""
Root test configuration and fixtures.

Provides database fixtures that can be used by all tests, plus factories
for identities, clinics and memberships and a FastAPI TestClient wired to
the per-test session.

Every test runs inside one outer transaction that is rolled back at the
end. Route handlers call session.commit(); the session is joined in
"create_savepoint" mode so those commits only release a savepoint.
"""

import os
import uuid
import pytest
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Set test environment before any settings are read
os.environ.setdefault("ENV", "test")
os.environ.setdefault("JWT_SECRET", "test-secret-for-clinic-access-0123456789abcdef")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from clinic_access.config.settings import reset_auth_settings
from clinic_access.auth.token_service import get_token_service, reset_token_service


def _get_test_database_url() -> str:
    """Get database URL for tests."""
    database_url = os.getenv("TEST_DATABASE_URL")

    if database_url:
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        return database_url

    # Default to SQLite for unit tests if no PostgreSQL available
    return "sqlite:///:memory:"


def _is_postgres() -> bool:
    """Check if using PostgreSQL."""
    return _get_test_database_url().startswith("postgresql")


@pytest.fixture(autouse=True)
def _fresh_auth_singletons():
    """Re-read settings and rebuild the token service for every test."""
    reset_auth_settings()
    reset_token_service()
    yield
    reset_auth_settings()
    reset_token_service()


@pytest.fixture(scope="session")
def db_engine():
    """
    Create database engine for tests.

    Uses PostgreSQL if TEST_DATABASE_URL is set, otherwise SQLite in-memory.
    """
    database_url = _get_test_database_url()

    if _is_postgres():
        try:
            engine = create_engine(database_url, pool_pre_ping=True)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            pytest.skip(
                f"PostgreSQL not available. Set TEST_DATABASE_URL or use SQLite. Error: {e}"
            )
    else:
        # SQLite in-memory for fast unit tests
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        # pysqlite's own transaction handling breaks SAVEPOINT; let
        # SQLAlchemy emit BEGIN itself
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    # Import and create all tables
    from clinic_access.db_base import Base
    import clinic_access.models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Create database session with transaction rollback for test isolation.

    Each test gets a fresh session that rolls back after the test completes.
    """
    connection = db_engine.connect()
    transaction = connection.begin()

    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=connection,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def seeded_catalog(db_session):
    """Permission catalog and system roles. Returns {role_name: Role}."""
    from clinic_access.services.role_catalog import seed_access_catalog

    roles = seed_access_catalog(db_session)
    return {role.name: role for role in roles}


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_identity(db_session):
    """
    Factory fixture that registers an identity.

    Usage:
        identity = make_identity("doc@example.com")
    """
    from clinic_access.services.identity_service import IdentityService

    def _make(email: str = None, password: str = "correct-horse-battery", **kwargs):
        email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
        return IdentityService(db_session).register(email, password, **kwargs)
    return _make


@pytest.fixture
def make_tenant(db_session):
    """Factory fixture that creates an active clinic."""
    from clinic_access.services.tenant_directory import TenantDirectory

    def _make(code: str = None, name: str = "Test Clinic", **kwargs):
        code = code or f"C{uuid.uuid4().hex[:8].upper()}"
        return TenantDirectory(db_session).create(code, name, **kwargs)
    return _make


@pytest.fixture
def make_member(db_session, seeded_catalog):
    """
    Factory fixture that gives an identity a membership with system roles.

    The first role is primary.

    Usage:
        membership = make_member(identity, tenant, "doctor", "nurse")
    """
    from clinic_access.services.membership_service import MembershipService

    def _make(identity, tenant, *role_names: str):
        service = MembershipService(db_session)
        role_names = role_names or ("staff",)
        membership = service.ensure_membership(identity.id, tenant.id, default_role=role_names[0])
        for name in role_names[1:]:
            service.assign_role(membership.id, seeded_catalog[name].id, assigned_by=None)
        return membership
    return _make


@pytest.fixture
def token_for():
    """Factory fixture that signs a token for an identity (and optional clinic)."""
    def _make(identity, tenant=None) -> str:
        tenant_id = tenant.id if tenant is not None else None
        return get_token_service().issue(identity.id, tenant_id=tenant_id).access_token
    return _make


@pytest.fixture
def auth_headers(token_for):
    """Factory fixture that builds a bearer Authorization header."""
    def _make(identity, tenant=None) -> dict:
        return {"Authorization": f"Bearer {token_for(identity, tenant)}"}
    return _make


# =============================================================================
# API client
# =============================================================================

@pytest.fixture
def app(db_session, seeded_catalog):
    """FastAPI app whose database dependency yields the per-test session."""
    from main import create_app
    from clinic_access.database.session import get_db_session

    application = create_app()

    def _override_db():
        yield db_session

    application.dependency_overrides[get_db_session] = _override_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """TestClient without lifespan (the catalog is seeded by seeded_catalog)."""
    from fastapi.testclient import TestClient

    return TestClient(app)


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: mark test as security-focused")
    config.addinivalue_line("markers", "slow: mark test as slow-running")
