"""
Permission enforcement for route handlers.

CRITICAL SECURITY REQUIREMENTS:
- Permission checks MUST be enforced server-side for every protected endpoint
- Checks run against the per-request effective permission set, never
  against roles named in a token

Usage:
    from clinic_access.platform.rbac import require_permission

    @router.put("/roles/{role_id}/permissions")
    async def update_role(
        role_id: str,
        context: ExecutionContext = Depends(require_permission(Permission.MANAGE_ROLES)),
    ):
        ...
"""

import logging
from typing import Callable, Union

from fastapi import Depends

from clinic_access.auth.context_resolver import ExecutionContext
from clinic_access.auth.middleware import require_tenant_context
from clinic_access.constants.permissions import Permission
from clinic_access.platform.errors import AuthorizationError

logger = logging.getLogger(__name__)

PermissionLike = Union[Permission, str]


def _name(permission: PermissionLike) -> str:
    return permission.value if isinstance(permission, Permission) else permission


def check_permission_or_raise(context: ExecutionContext, permission: PermissionLike) -> None:
    """
    Raise AuthorizationError if the context lacks a permission.

    For use inside handlers that decide on the permission at runtime.
    """
    if context.has_permission(permission):
        return
    logger.warning(
        "Permission check failed",
        extra={
            "identity_id": context.identity_id,
            "tenant_id": context.tenant_id,
            "required": _name(permission),
            "roles": list(context.role_names),
        },
    )
    # Role names stay in the server log; the client only sees what was required
    raise AuthorizationError(details={"required": _name(permission)})


def require_permission(permission: PermissionLike) -> Callable[..., ExecutionContext]:
    """
    Create a dependency that requires a clinic and one permission.
    """
    def dependency(context: ExecutionContext = Depends(require_tenant_context)) -> ExecutionContext:
        check_permission_or_raise(context, permission)
        return context

    return dependency


def require_any_permission(*permissions: PermissionLike) -> Callable[..., ExecutionContext]:
    """
    Create a dependency that requires a clinic and at least one permission.
    """
    names = [_name(p) for p in permissions]

    def dependency(context: ExecutionContext = Depends(require_tenant_context)) -> ExecutionContext:
        if context.has_any_permission(*names):
            return context
        logger.warning(
            "Permission check failed",
            extra={
                "identity_id": context.identity_id,
                "tenant_id": context.tenant_id,
                "required_any": names,
            },
        )
        raise AuthorizationError(details={"required_any": names})

    return dependency
