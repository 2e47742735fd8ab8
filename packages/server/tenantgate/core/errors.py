"""
Error taxonomy for the identity core.

Request-path errors are HTTPExceptions carrying a stable code so that the
service layer can raise them directly and FastAPI renders them unchanged.
"""

from __future__ import annotations

from fastapi import HTTPException


class ConfigurationError(RuntimeError):
    """Fatal misconfiguration detected at startup."""


class ServiceError(HTTPException):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, code: str | None = None):
        self.code = code or self.code
        self.message = message
        super().__init__(
            status_code=self.status_code,
            detail={"code": self.code, "message": message},
        )


class ValidationFailedError(ServiceError):
    status_code = 400
    code = "VALIDATION_ERROR"


class UnauthorizedError(ServiceError):
    status_code = 401
    code = "UNAUTHORIZED"


class ForbiddenError(ServiceError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(ServiceError):
    status_code = 409
    code = "CONFLICT"
