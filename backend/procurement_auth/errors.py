from typing import Any

from fastapi import status


class AppError(Exception):
    code: str = "APP_ERROR"
    message: str = "Application error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    details: Any | None = None

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: Any | None = None,
    ):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        if details is not None:
            self.details = details

        super().__init__(self.message)


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    message = "Validation error"
    status_code = status.HTTP_400_BAD_REQUEST


class TenantContextRequiredError(ValidationError):
    code = "TENANT_CONTEXT_REQUIRED"
    message = "Tenant context is required"


class NotFoundError(AppError):
    code = "NOT_FOUND"
    message = "Resource not found"
    status_code = status.HTTP_404_NOT_FOUND


class RoleNotFoundError(NotFoundError):
    code = "ROLE_NOT_FOUND"
    message = "Role not found"


class UserNotFoundError(NotFoundError):
    code = "USER_NOT_FOUND"
    message = "User not found"


class TenantNotFoundError(NotFoundError):
    code = "TENANT_NOT_FOUND"
    message = "Tenant not found"


class AuthError(AppError):
    code = "AUTH_ERROR"
    message = "Authentication failed"
    status_code = status.HTTP_401_UNAUTHORIZED


class UnauthenticatedError(AuthError):
    code = "UNAUTHENTICATED"
    message = "Authentication required"


class AccountLockedError(AuthError):
    code = "ACCOUNT_LOCKED"
    message = "Account is temporarily locked due to too many failed login attempts"


class PermissionError(AppError):  # type: ignore[override]
    code = "PERMISSION_DENIED"
    message = "Insufficient permissions"
    status_code = status.HTTP_403_FORBIDDEN


class InsufficientPermissionsError(PermissionError):
    code = "INSUFFICIENT_PERMISSIONS"
    message = "Insufficient permissions"


class PortalMismatchError(PermissionError):
    code = "PORTAL_MISMATCH"
    message = "Access denied for this portal"


class TenantInactiveError(PermissionError):
    code = "TENANT_INACTIVE"
    message = "Tenant is inactive or suspended"


class ConflictError(AppError):
    code = "CONFLICT_ERROR"
    message = "Resource conflict"
    status_code = status.HTTP_409_CONFLICT


class RoleInUseError(ConflictError):
    code = "ROLE_IN_USE"
    message = "Role is assigned to users and cannot be deactivated"


class DerivedRoleRevocationError(ConflictError):
    code = "ROLE_DERIVED"
    message = "Role is derived from the user type; grant an explicit role before revoking it"


class RateLimitExceededError(AppError):
    code = "RATE_LIMITED"
    message = "Too many attempts, try again later"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class InternalError(AppError):
    code = "INTERNAL_ERROR"
    message = "Internal server error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class StoreUnavailableError(InternalError):
    code = "STORE_UNAVAILABLE"
    message = "Backing store is unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


ERROR_CODE_BY_STATUS: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: ValidationError.code,
    status.HTTP_401_UNAUTHORIZED: AuthError.code,
    status.HTTP_403_FORBIDDEN: PermissionError.code,
    status.HTTP_404_NOT_FOUND: NotFoundError.code,
    status.HTTP_409_CONFLICT: ConflictError.code,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ValidationError.code,
    status.HTTP_429_TOO_MANY_REQUESTS: RateLimitExceededError.code,
}


def error_payload(
    code: str,
    message: str,
    details: Any | None = None,
) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "details": details}}


def resolve_error_code(status_code: int) -> str:
    if status_code in ERROR_CODE_BY_STATUS:
        return ERROR_CODE_BY_STATUS[status_code]
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        return InternalError.code
    return "UNKNOWN_ERROR"
