# API routes
from clinic_access.api.routes import auth
from clinic_access.api.routes import tenant_session
from clinic_access.api.routes import permissions
from clinic_access.api.routes import roles
from clinic_access.api.routes import tenant_members

__all__ = ["auth", "tenant_session", "permissions", "roles", "tenant_members"]
