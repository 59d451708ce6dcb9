"""Error codes and exceptions raised by the territory lookup engine."""

from enum import Enum
from typing import List, Optional


class ErrorCode(str, Enum):
    # Format/region validation
    INVALID_LENGTH = "INVALID_LENGTH"
    INVALID_CHARACTERS = "INVALID_CHARACTERS"
    NOT_SUPPORTED_REGION = "NOT_SUPPORTED_REGION"
    NOT_NATIONAL_FORMAT = "NOT_NATIONAL_FORMAT"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    # Strategy chain / conflict resolution
    ALL_STRATEGIES_FAILED = "ALL_STRATEGIES_FAILED"
    NO_SOURCES_AVAILABLE = "NO_SOURCES_AVAILABLE"
    # Recovered locally, never surfaced to callers
    EXTERNAL_SERVICE_TIMEOUT = "EXTERNAL_SERVICE_TIMEOUT"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"


FORMAT_ERRORS = {
    ErrorCode.INVALID_LENGTH,
    ErrorCode.INVALID_CHARACTERS,
    ErrorCode.NOT_SUPPORTED_REGION,
    ErrorCode.NOT_NATIONAL_FORMAT,
    ErrorCode.INVALID_ADDRESS,
}


class ResolutionError(Exception):
    """Terminal failure returned to callers with a code and suggestions."""

    def __init__(self, code: ErrorCode, message: str, suggestions: Optional[List[str]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestions = list(suggestions or [])

    @property
    def is_format_error(self) -> bool:
        return self.code in FORMAT_ERRORS

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "suggestions": self.suggestions,
        }


class ExternalServiceError(Exception):
    """Transient failure of a network-bound strategy."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
