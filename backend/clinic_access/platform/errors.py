"""
Consistent error handling for the clinic access API.

Every user-visible failure is rendered as the same JSON envelope:

    {
        "error": {"code": "...", "message": "...", "details": {...}},
        "correlation_id": "..."
    }

Internal causes (storage errors, stack traces) are logged server-side and
never echoed to the client.

Taxonomy:
- AuthenticationError (401): missing/invalid/expired token, inactive identity
- TenantNotSelectedError (400): tenant-scoped route hit without a tenant claim
- AuthorizationError (403): no active membership, or missing capability
- ValidationError (400): malformed role/permission references, bad input
- NotFoundError (404)
- ConflictError (409): duplicate code/email, unresolved membership race
- ServiceUnavailableError (503): database not configured
"""

import uuid
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID (UUID4 string)."""
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> Optional[str]:
    """Get correlation ID from headers first, then request state."""
    header_value = request.headers.get(CORRELATION_HEADER)
    if header_value:
        return header_value
    return getattr(request.state, "correlation_id", None)


class AppError(Exception):
    """
    Base application error.

    Attributes:
        code: Machine-readable error code
        message: Human-readable message, safe to show to clients
        status_code: HTTP status code
        details: Extra client-safe context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


# =============================================================================
# 401
# =============================================================================

class AuthenticationError(AppError):
    def __init__(
        self,
        message: str = "Authentication required",
        code: str = "AUTHENTICATION_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, status.HTTP_401_UNAUTHORIZED, details)


class InvalidCredentialError(AuthenticationError):
    """Email unknown or password mismatch. Never says which."""

    def __init__(self):
        super().__init__("Invalid email or password", code="INVALID_CREDENTIALS")


class AccountInactiveError(AuthenticationError):
    def __init__(self):
        super().__init__("Account is inactive", code="ACCOUNT_INACTIVE")


class TokenExpiredError(AuthenticationError):
    def __init__(self):
        super().__init__("Token has expired", code="TOKEN_EXPIRED")


class TokenMalformedError(AuthenticationError):
    def __init__(self, message: str = "Token is malformed"):
        super().__init__(message, code="TOKEN_MALFORMED")


class TokenSignatureError(AuthenticationError):
    def __init__(self):
        super().__init__("Token signature is invalid", code="TOKEN_SIGNATURE_INVALID")


# =============================================================================
# 400
# =============================================================================

class TenantNotSelectedError(AppError):
    def __init__(self, message: str = "No clinic selected. Please select a clinic."):
        super().__init__("TENANT_NOT_SELECTED", message, status.HTTP_400_BAD_REQUEST)


class ValidationError(AppError):
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "VALIDATION_ERROR",
    ):
        super().__init__(code, message, status.HTTP_400_BAD_REQUEST, details)


class UnknownPermissionError(ValidationError):
    def __init__(self, names):
        names = list(names)
        super().__init__(
            f"Unknown permission(s): {', '.join(names)}",
            details={"permissions": names},
            code="UNKNOWN_PERMISSION",
        )


class RoleNotVisibleToTenantError(ValidationError):
    def __init__(self, role_id: str):
        super().__init__(
            "Role is not available in this clinic",
            details={"role_id": role_id},
            code="ROLE_NOT_VISIBLE_TO_TENANT",
        )


class InvalidTenantCodeError(ValidationError):
    def __init__(self, code_value: str):
        super().__init__(
            "Clinic code must be 3-20 letters or digits",
            details={"code": code_value},
            code="INVALID_TENANT_CODE",
        )


# =============================================================================
# 403 / 404 / 409 / 503
# =============================================================================

class AuthorizationError(AppError):
    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        details: Optional[Dict[str, Any]] = None,
        code: str = "AUTHORIZATION_ERROR",
    ):
        super().__init__(code, message, status.HTTP_403_FORBIDDEN, details)


class NotFoundError(AppError):
    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} '{identifier}' not found"
        super().__init__("NOT_FOUND", message, status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "CONFLICT",
    ):
        super().__init__(code, message, status.HTTP_409_CONFLICT, details)


class DuplicateEmailError(ConflictError):
    def __init__(self):
        super().__init__("Email is already registered", code="DUPLICATE_EMAIL")


class DuplicateCodeError(ConflictError):
    def __init__(self, code_value: str):
        super().__init__(
            "Clinic code is already in use",
            details={"code": code_value},
            code="DUPLICATE_CODE",
        )


class MembershipConflictError(ConflictError):
    def __init__(self):
        super().__init__(
            "Membership could not be provisioned, please retry",
            code="MEMBERSHIP_CONFLICT",
        )


class ServiceUnavailableError(AppError):
    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__("SERVICE_UNAVAILABLE", message, status.HTTP_503_SERVICE_UNAVAILABLE)


# =============================================================================
# FastAPI wiring
# =============================================================================

def error_response(
    error: AppError,
    correlation_id: Optional[str],
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body = error.to_dict()
    body["correlation_id"] = correlation_id
    return JSONResponse(status_code=error.status_code, content=body, headers=headers)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Assigns a correlation ID to every request and converts unhandled
    exceptions into a generic 500 envelope.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or generate_correlation_id()
        request.state.correlation_id = correlation_id
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Unhandled exception",
                extra={
                    "correlation_id": correlation_id,
                    "path": request.url.path,
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            return error_response(
                AppError("INTERNAL_ERROR", "An unexpected error occurred"),
                correlation_id,
            )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Request failed",
        extra={
            "path": request.url.path,
            "error_code": exc.code,
            "status_code": exc.status_code,
        },
    )
    headers = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return error_response(exc, get_correlation_id(request), headers=headers)


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
    error = ValidationError("Request validation failed", details={"fields": fields})
    return error_response(error, get_correlation_id(request))


HTTP_ERROR_CODES = {
    status.HTTP_401_UNAUTHORIZED: "AUTHENTICATION_ERROR",
    status.HTTP_403_FORBIDDEN: "AUTHORIZATION_ERROR",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    status.HTTP_503_SERVICE_UNAVAILABLE: "SERVICE_UNAVAILABLE",
}


async def _http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Framework-raised HTTP errors (unknown route, wrong method) get the envelope too."""
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    error = AppError(
        HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        message,
        exc.status_code,
    )
    return error_response(error, get_correlation_id(request), headers=getattr(exc, "headers", None))


def register_error_handlers(app: FastAPI) -> None:
    """Install the error envelope handlers and middleware on an app."""
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_middleware(ErrorHandlerMiddleware)
