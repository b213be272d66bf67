"""Mapping of external API errors onto HTTP responses."""

from fastapi import HTTPException, status

from actiongate_api.external.errors import (
    ExternalAPIError,
    RateLimitedError,
    RecordValidationError,
)


def http_error_for(exc: ExternalAPIError) -> HTTPException:
    """429 with Retry-After, 422 for validation, 502 for everything else."""
    detail = exc.to_dict()
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after_seconds)} if exc.retry_after_seconds is not None else None
        return HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=detail, headers=headers)
    if isinstance(exc, RecordValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)
