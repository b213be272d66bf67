"""Error taxonomy for the external record API."""

import time
from typing import Mapping, Optional

import httpx

RATE_LIMITED = "RATE_LIMITED"
NETWORK_ERROR = "NETWORK_ERROR"
VALIDATION_ERROR = "VALIDATION_ERROR"
AUTH_ERROR = "AUTH_ERROR"
UNKNOWN_API_ERROR = "UNKNOWN_API_ERROR"

DUPLICATE_MARKERS = ("already exists", "duplicate")
NETWORK_MARKERS = ("network", "timeout", "timed out", "econnrefused", "econnreset", "connection reset", "fetch failed")


class ExternalAPIError(Exception):
    """Base error for external record API operations."""

    code = UNKNOWN_API_ERROR
    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "status_code": self.status_code}


class RateLimitedError(ExternalAPIError):
    """Primary or secondary rate limit hit. Callers must honor the hint."""

    code = RATE_LIMITED
    retryable = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after_seconds: Optional[int] = None,
    ) -> None:
        super().__init__(message, status_code)
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["retry_after_seconds"] = self.retry_after_seconds
        return payload


class ExternalNetworkError(ExternalAPIError):
    code = NETWORK_ERROR
    retryable = True


class RecordValidationError(ExternalAPIError):
    """Terminal: the content or configuration must be fixed first."""

    code = VALIDATION_ERROR


class DuplicateRecordError(RecordValidationError):
    """Validation failure classified as "already exists"; signals a create race."""


class ExternalAuthError(ExternalAPIError):
    code = AUTH_ERROR


class UnknownAPIError(ExternalAPIError):
    code = UNKNOWN_API_ERROR


def _is_duplicate_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in DUPLICATE_MARKERS)


def parse_retry_after(headers: Optional[Mapping[str, str]], now: Optional[float] = None) -> Optional[int]:
    """Seconds to wait, from ``Retry-After`` or ``X-RateLimit-Reset``."""
    if not headers:
        return None
    lowered = {k.lower(): v for k, v in headers.items()}
    retry_after = lowered.get("retry-after")
    if retry_after is not None:
        try:
            return max(0, int(retry_after))
        except ValueError:
            pass
    reset = lowered.get("x-ratelimit-reset")
    if reset is not None:
        try:
            current = now if now is not None else time.time()
            return max(0, int(reset) - int(current))
        except ValueError:
            pass
    return None


def classify_http_error(
    status_code: int,
    message: str,
    headers: Optional[Mapping[str, str]] = None,
) -> ExternalAPIError:
    """Map an HTTP failure into the taxonomy. Status code first, text second."""
    lowered = message.lower()
    remaining = None
    if headers:
        remaining = {k.lower(): v for k, v in headers.items()}.get("x-ratelimit-remaining")

    if status_code == 429 or (
        status_code == 403 and ("rate limit" in lowered or "abuse" in lowered or remaining == "0")
    ):
        return RateLimitedError(
            f"HTTP {status_code}: {message}",
            status_code=status_code,
            retry_after_seconds=parse_retry_after(headers),
        )
    if status_code in (401, 403):
        return ExternalAuthError(f"HTTP {status_code}: {message}", status_code=status_code)
    if status_code in (409, 422) and _is_duplicate_message(message):
        return DuplicateRecordError(f"HTTP {status_code}: {message}", status_code=status_code)
    if status_code in (400, 404, 409, 410, 422):
        return RecordValidationError(f"HTTP {status_code}: {message}", status_code=status_code)
    if status_code >= 500:
        return ExternalNetworkError(f"HTTP {status_code}: {message}", status_code=status_code)
    return UnknownAPIError(f"HTTP {status_code}: {message}", status_code=status_code)


def classify_exception(exc: BaseException) -> ExternalAPIError:
    """Classify an arbitrary exception raised while talking to the external API."""
    if isinstance(exc, ExternalAPIError):
        return exc
    if isinstance(exc, httpx.TransportError):
        return ExternalNetworkError(f"Transport error: {exc.__class__.__name__}: {exc}")

    message = str(exc)
    lowered = message.lower()
    if "rate limit" in lowered or "status 429" in lowered or "http 429" in lowered:
        return RateLimitedError(message)
    if _is_duplicate_message(message):
        return DuplicateRecordError(message)
    if any(marker in lowered for marker in NETWORK_MARKERS):
        return ExternalNetworkError(message)
    if "validation" in lowered or "http 422" in lowered or "http 400" in lowered:
        return RecordValidationError(message)
    return UnknownAPIError(message)
