"""
Runtime exceptions surfaced to API callers.

Services raise these; app.main maps them to JSON responses with the
matching status code.
"""
from typing import Any, Dict, Optional


class FunnelRuntimeError(Exception):
    """Base exception for funnel runtime errors"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(FunnelRuntimeError):
    """Funnel, variant, session, condition or goal is absent or owned by another tenant"""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": str(identifier)},
            status_code=404,
        )


class InvalidStateError(FunnelRuntimeError):
    """Write attempted against a session that already reached a terminal state"""

    def __init__(self, message: str, **details):
        super().__init__(
            message=message,
            error_code="INVALID_STATE",
            details=details,
            status_code=409,
        )


class InvalidOperationError(FunnelRuntimeError):
    """Operation is not allowed for the target record (e.g. deleting the control variant)"""

    def __init__(self, message: str, **details):
        super().__init__(
            message=message,
            error_code="INVALID_OPERATION",
            details=details,
            status_code=409,
        )


class ValidationError(FunnelRuntimeError):
    """Raised when input validation fails at a CRUD boundary"""

    def __init__(self, message: str, field: Optional[str] = None, **details):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details={"field": field, **details} if field else details,
            status_code=400,
        )
