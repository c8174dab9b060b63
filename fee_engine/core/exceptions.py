"""
Exceptions raised by the fee engine.

Every error carries a stable code, a human readable message and optional
details so the HTTP layer can render it without leaking database errors.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Error codes exposed to callers"""
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    CONFLICT = "CONFLICT"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    IMMUTABLE_RECORD = "IMMUTABLE_RECORD"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class FeeEngineError(Exception):
    """
    Base exception for all fee engine errors.

    Provides consistent error handling with structured error information.
    """

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format"""
        return {
            "error": {
                "message": self.message,
                "code": self.error_code.value,
                "details": self.details,
                "type": self.__class__.__name__
            }
        }

    def __str__(self) -> str:
        return f"{self.error_code.value}: {self.message}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message='{self.message}', error_code='{self.error_code.value}')"


class NotFoundError(FeeEngineError):
    """A referenced student, class, structure or assignment does not exist"""
    error_code = ErrorCode.RESOURCE_NOT_FOUND
    status_code = 404

    def __init__(self, resource: str, identifier: Any = None, message: Optional[str] = None):
        details = {"resource": resource}
        if identifier is not None:
            details["id"] = str(identifier)
        super().__init__(message or f"{resource} not found", details)


class InvalidArgumentError(FeeEngineError):
    """Malformed month/date, out-of-range value or malformed stored data"""
    error_code = ErrorCode.INVALID_ARGUMENT
    status_code = 400


class ConflictError(FeeEngineError):
    """The write would duplicate an existing record"""
    error_code = ErrorCode.CONFLICT
    status_code = 409


class PermissionDeniedError(FeeEngineError):
    """Raised by the access-control layer; never by the engine itself"""
    error_code = ErrorCode.PERMISSION_DENIED
    status_code = 403


class ImmutableRecordError(FeeEngineError):
    """An append-only row was about to be updated or deleted"""
    error_code = ErrorCode.IMMUTABLE_RECORD
    status_code = 409
