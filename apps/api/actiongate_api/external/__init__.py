from .errors import (
    DuplicateRecordError,
    ExternalAPIError,
    ExternalAuthError,
    ExternalNetworkError,
    RateLimitedError,
    RecordValidationError,
    UnknownAPIError,
    classify_exception,
    classify_http_error,
)
from .types import ExternalRecord, ExternalRecordClient, ExternalRecordRef, RecordContent

__all__ = [
    "DuplicateRecordError",
    "ExternalAPIError",
    "ExternalAuthError",
    "ExternalNetworkError",
    "RateLimitedError",
    "RecordValidationError",
    "UnknownAPIError",
    "classify_exception",
    "classify_http_error",
    "ExternalRecord",
    "ExternalRecordClient",
    "ExternalRecordRef",
    "RecordContent",
]
