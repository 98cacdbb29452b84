"""Scope Builder error handling.

Custom exceptions and error codes shared by the engine, the extraction
service and the HTTP layer.
"""

from typing import Any, Dict, Optional


class ErrorCode:
    """Error code constants."""

    # Input errors
    INPUT_REQUIRED = "INPUT_REQUIRED"
    EMPTY_INPUT = "EMPTY_INPUT"
    UNSUPPORTED_FILE_TYPE = "UNSUPPORTED_FILE_TYPE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_FIELD = "INVALID_FIELD"
    NO_RECIPIENTS = "NO_RECIPIENTS"
    NO_PARTNERS_SELECTED = "NO_PARTNERS_SELECTED"

    # Extraction errors
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    LLM_ERROR = "LLM_ERROR"
    LLM_RATE_LIMIT = "LLM_RATE_LIMIT"
    ALL_PROVIDERS_FAILED = "ALL_PROVIDERS_FAILED"

    # Reference errors
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    TRADE_NOT_FOUND = "TRADE_NOT_FOUND"
    LINE_ITEM_NOT_FOUND = "LINE_ITEM_NOT_FOUND"
    SUPPLEMENT_NOT_FOUND = "SUPPLEMENT_NOT_FOUND"
    PARTNER_NOT_FOUND = "PARTNER_NOT_FOUND"

    # Render / send errors
    RENDER_FAILED = "RENDER_FAILED"
    EMAIL_FAILED = "EMAIL_FAILED"


class ScopeBuilderError(Exception):
    """Base exception for Scope Builder errors.

    Attributes:
        code: Error code from ErrorCode constants
        message: Human-readable error message
        details: Additional error context
    """

    status_code = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API response."""
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class InputError(ScopeBuilderError):
    """Missing, empty or invalid user input."""

    status_code = 400

    def __init__(self, message: str, code: str = ErrorCode.INPUT_REQUIRED, details: Optional[Dict] = None):
        super().__init__(code=code, message=message, details=details)


class ExtractionError(ScopeBuilderError):
    """Failed or malformed response from the extraction service."""

    _status_by_code = {
        ErrorCode.MALFORMED_RESPONSE: 422,
        ErrorCode.LLM_RATE_LIMIT: 429,
    }

    def __init__(self, message: str, code: str = ErrorCode.LLM_ERROR, details: Optional[Dict] = None):
        super().__init__(code=code, message=message, details=details)
        self.status_code = self._status_by_code.get(code, 502)


class NotFoundError(ScopeBuilderError):
    """Reference to a session, trade, item, supplement or partner that does not exist."""

    status_code = 404

    def __init__(self, code: str, message: str, **ids: Any):
        super().__init__(code=code, message=message, details={k: v for k, v in ids.items() if v is not None})


class RenderError(ScopeBuilderError):
    """Failure producing a summary document."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(code=ErrorCode.RENDER_FAILED, message=message, details=details)


class EmailError(ScopeBuilderError):
    """Failure handing an email to the transport."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(code=ErrorCode.EMAIL_FAILED, message=message, details=details)
