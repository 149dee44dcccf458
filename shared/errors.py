"""
Shared error handling for the content platform cache layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class CacheLayerException(Exception):
    """Base exception for cache layer services."""

    http_status = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(CacheLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class CacheBackendUnavailableError(CacheLayerException):
    """The remote cache backend refused, timed out or failed a command."""

    http_status = 503

    def __init__(self, operation: str, message: str = "Cache backend unavailable", details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        super().__init__("CACHE_BACKEND_UNAVAILABLE", f"{operation}: {message}", details)


class CacheSerializationError(CacheLayerException):
    """A value could not be represented in the cache wire format."""

    def __init__(self, message: str = "Value is not JSON serializable", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_SERIALIZATION_ERROR", message, details)
