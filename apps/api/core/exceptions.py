"""
Custom exception classes and error handling.

Provides consistent error responses across the API. Every error carries a
human-readable `detail` and a machine-readable `error_code`.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class UnauthorizedError(APIException):
    """Authentication required, or the resource belongs to someone else."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ConflictError(APIException):
    """Resource conflict (e.g., a turn already running on the thread)."""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code=error_code
        )


class PersistenceError(APIException):
    """The chat store failed. Not retried internally."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code="PERSISTENCE_ERROR"
        )


class CompletionServiceError(APIException):
    """
    Base class for failures of the text completion service.

    All sub-kinds are safe for the client to retry by re-sending the message.
    """

    def __init__(self, status_code: int, detail: str, error_code: str, role: Optional[str] = None):
        super().__init__(status_code=status_code, detail=detail, error_code=error_code)
        self.role = role


class CompletionTimeoutError(CompletionServiceError):
    """The completion call exceeded its time budget."""

    def __init__(self, timeout_s: float, role: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=f"Completion request timed out after {timeout_s:g} seconds",
            error_code="COMPLETION_TIMEOUT",
            role=role,
        )


class CompletionRateLimitedError(CompletionServiceError):
    """The completion provider rejected the call with a rate limit."""

    def __init__(self, detail: str = "Completion service is rate limited", role: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            error_code="COMPLETION_RATE_LIMITED",
            role=role,
        )


class CompletionUnavailableError(CompletionServiceError):
    """Any other completion failure."""

    def __init__(self, detail: str = "Completion service unavailable", role: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=detail,
            error_code="COMPLETION_ERROR",
            role=role,
        )
