"""
Shared error handling for the sentiment data loader.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    key: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class DataLoaderException(Exception):
    """Base exception for errors the loader itself raises."""

    def __init__(self, code: str, message: str, key: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.key = key
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            key=self.key,
            code=self.code,
            message=self.message,
            details=self.details
        )


class InvalidKeyError(DataLoaderException):
    """Load key is missing or not a non-empty string."""

    def __init__(self, key: Any, message: str = "Load key must be a non-empty string"):
        super().__init__("INVALID_KEY", message, details={"key": repr(key)})


class LoadTimeoutError(DataLoaderException):
    """A producer attempt did not settle within the configured timeout."""

    def __init__(self, key: str, timeout: float, attempt: int):
        self.timeout = timeout
        self.attempt = attempt
        super().__init__(
            "LOAD_TIMEOUT",
            f"Load '{key}' timed out after {timeout:g}s (attempt {attempt})",
            key=key,
            details={"timeout": timeout, "attempt": attempt}
        )
