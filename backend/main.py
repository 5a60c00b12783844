"""
FastAPI application entry point for the clinic access API.

Every tenant-scoped route resolves an ExecutionContext from the bearer
token and re-validates clinic access against live membership rows.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clinic_access.api.routes import auth
from clinic_access.api.routes import tenant_session
from clinic_access.api.routes import permissions
from clinic_access.api.routes import roles
from clinic_access.api.routes import tenant_members
from clinic_access.config.settings import get_auth_settings
from clinic_access.database.session import get_session_factory
from clinic_access.platform.errors import register_error_handlers
from clinic_access.services.role_catalog import seed_access_catalog

# Configure structured logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting clinic access API")

    # Fails fast when JWT_SECRET is missing in production
    settings = get_auth_settings()
    logger.info(
        "Auth configured",
        extra={
            "env": settings.env,
            "token_ttl_hours": settings.jwt_ttl_hours,
            "default_tenant_role": settings.default_tenant_role,
        },
    )

    app.state.database_configured = bool(os.getenv("DATABASE_URL"))
    if not app.state.database_configured:
        logger.error("DATABASE_URL is not set. All endpoints will return 503.")
    elif os.getenv("SEED_ACCESS_CATALOG", "true").lower() == "true":
        session = get_session_factory()()
        try:
            seed_access_catalog(session)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("Access catalog seeding failed")
            raise
        finally:
            session.close()

    yield

    logger.info("Shutting down clinic access API")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Clinic Access API",
        description="Authentication, clinic membership and permission resolution",
        version="1.0.0",
        lifespan=lifespan,
    )

    cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok"}

    app.include_router(auth.router)
    app.include_router(tenant_session.router)
    app.include_router(permissions.router)
    app.include_router(roles.router)
    app.include_router(tenant_members.router)

    return app


app = create_app()
