from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional

NOT_FOUND_MESSAGE = (
    "Could not find pricing information in the image. "
    "Please make sure your screenshot includes the cost details."
)
RATE_LIMITED_MESSAGE = (
    "Rate limit exceeded. Please add your own Gemini API key in Advanced Settings."
)


class FailureCategory(str, enum.Enum):
    INPUT = "INPUT"
    CONFIGURATION = "CONFIGURATION"
    QUOTA = "QUOTA"
    EXTRACTION = "EXTRACTION"
    AUTH = "AUTH"
    UPSTREAM = "UPSTREAM"


@dataclass
class Failure:
    category: FailureCategory
    reason: str
    details: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {"category": self.category.value, "reason": self.reason}
        if self.details:
            payload["details"] = self.details
        return payload


class ImageParserError(Exception):
    """Base class for every failure the pipeline reports to a caller."""

    category: FailureCategory = FailureCategory.UPSTREAM
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.failure = Failure(self.category, message, details)


class InputError(ImageParserError):
    category = FailureCategory.INPUT
    status_code = 400


class ConfigError(ImageParserError):
    category = FailureCategory.CONFIGURATION
    status_code = 500


class RateLimitError(ImageParserError):
    category = FailureCategory.QUOTA
    status_code = 429

    def __init__(self, message: str = RATE_LIMITED_MESSAGE, retry_after: Optional[float] = None):
        super().__init__(message, {"retry_after": retry_after} if retry_after is not None else None)
        self.retry_after = retry_after


class ExtractionFailure(ImageParserError):
    """The provider answered, but not with a usable object."""

    category = FailureCategory.EXTRACTION
    status_code = 422


class ValidationFailure(ExtractionFailure):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class AuthFailure(ImageParserError):
    category = FailureCategory.AUTH
    status_code = 401


class UpstreamError(ImageParserError):
    category = FailureCategory.UPSTREAM
    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message, {"upstream_status": upstream_status} if upstream_status else None)
        self.upstream_status = upstream_status
