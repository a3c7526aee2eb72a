# portal/domain/exceptions.py

"""
Custom exceptions for the portal.

Every exception carries an HTTP status code and an ``internal_code`` so the
application exception handler can render a consistent error body.
"""

from fastapi import HTTPException, status
from typing import Any, Dict, Optional


class PortalException(HTTPException):
    """
    Base exception for the portal.
    Extends FastAPI's HTTPException with an internal error code.
    """

    def __init__(
            self,
            status_code: int,
            detail: Any = None,
            headers: Optional[Dict[str, Any]] = None,
            internal_code: Optional[str] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.internal_code = internal_code


class InvalidTokenException(PortalException):
    """Bad signature, malformed payload or expired token."""

    def __init__(self, detail: str = "Invalid or expired token"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            internal_code="INVALID_TOKEN"
        )


class InvalidCredentialsException(PortalException):
    """Invalid credentials."""

    def __init__(self, detail: str = "Invalid email or password"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            internal_code="INVALID_CREDENTIALS"
        )


class PermissionDeniedException(PortalException):
    """Permission denied."""

    def __init__(self, detail: str = "Permission denied", role: Optional[str] = None):
        role_info = f" (required role: {role})" if role else ""
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"{detail}{role_info}",
            internal_code="PERMISSION_DENIED"
        )


class UpstreamUnavailableException(PortalException):
    """A shared store or logging collaborator could not be reached."""

    def __init__(self, detail: str = "Upstream service unavailable", original_error: Optional[Exception] = None):
        error_info = f": {str(original_error)}" if original_error else ""
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{detail}{error_info}",
            internal_code="UPSTREAM_UNAVAILABLE"
        )


class DatabaseOperationException(PortalException):
    """Database operation failed."""

    def __init__(self, detail: str = "Error executing database operation",
                 original_error: Optional[Exception] = None):
        error_info = f": {str(original_error)}" if original_error else ""
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{detail}{error_info}",
            internal_code="DATABASE_OPERATION_ERROR"
        )


class HandlerFaultException(PortalException):
    """A route handler raised an unexpected error."""

    def __init__(self, detail: str = "Internal server error"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            internal_code="INTERNAL_SERVER_ERROR"
        )
