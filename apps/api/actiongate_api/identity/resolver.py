"""Canonical identity resolution against the external record store.

A logical entity is re-identified through markers embedded in the records
this service publishes:

- title prefix ``[CID:<marker>] <title>``
- body line ``Canonical-ID: <marker>``
- body line ``Content-Fingerprint: <fingerprint>`` (confidence boost only)

Resolution is read-only and deterministic for an unchanged external state.
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field

from actiongate_api.external.errors import ExternalAPIError, classify_exception
from actiongate_api.external.types import ExternalRecord, ExternalRecordClient, ExternalRecordRef

logger = logging.getLogger(__name__)

TITLE_MARKER_PREFIX = "[CID:"
TITLE_MARKER_SUFFIX = "]"
BODY_MARKER_PREFIX = "Canonical-ID:"
FINGERPRINT_PREFIX = "Content-Fingerprint:"

MATCHED_BY_BODY = "body"
MATCHED_BY_TITLE = "title"

CONFIDENCE_BODY_AND_FINGERPRINT = 1.0
CONFIDENCE_BODY = 0.9
CONFIDENCE_TITLE = 0.5

MULTIPLE_MATCHES_WARNING = "MULTIPLE_MATCHES"


class InvalidMarkerError(ValueError):
    """Raised when a resolution is requested without a usable marker."""


class ResolvedCandidate(BaseModel):
    """A search hit that carries the marker."""

    record: ExternalRecord
    matched_by: str
    match_confidence: float


class ResolveResult(BaseModel):
    """Outcome of a resolution."""

    found: bool
    ref: Optional[ExternalRecordRef] = None
    record: Optional[ExternalRecord] = None
    matched_by: Optional[str] = None
    candidates: list[ResolvedCandidate] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def extract_marker_from_title(title: Optional[str]) -> Optional[str]:
    """Return the marker from ``[CID:<marker>] ...`` or None."""
    if not title:
        return None
    trimmed = title.strip()
    if not trimmed.startswith(TITLE_MARKER_PREFIX):
        return None
    closing = trimmed.find(TITLE_MARKER_SUFFIX, len(TITLE_MARKER_PREFIX))
    if closing == -1:
        return None
    marker = trimmed[len(TITLE_MARKER_PREFIX):closing].strip()
    return marker or None


def _extract_body_line(body: Optional[str], prefix: str) -> Optional[str]:
    if not body:
        return None
    for line in body.splitlines():
        trimmed = line.strip()
        if trimmed.startswith(prefix):
            value = trimmed[len(prefix):].strip()
            if value:
                return value
    return None


def extract_marker_from_body(body: Optional[str]) -> Optional[str]:
    """Return the marker from a ``Canonical-ID:`` body line or None."""
    return _extract_body_line(body, BODY_MARKER_PREFIX)


def extract_fingerprint_from_body(body: Optional[str]) -> Optional[str]:
    return _extract_body_line(body, FINGERPRINT_PREFIX)


def title_with_marker(marker: str, title: str) -> str:
    return f"{TITLE_MARKER_PREFIX}{marker}{TITLE_MARKER_SUFFIX} {title}"


def body_with_marker(marker: str, body: str, content_fingerprint: Optional[str] = None) -> str:
    header = f"{BODY_MARKER_PREFIX} {marker}"
    if content_fingerprint:
        header = f"{header}\n{FINGERPRINT_PREFIX} {content_fingerprint}"
    return f"{header}\n\n{body}"


def match_record(
    record: ExternalRecord, marker: str, content_fingerprint: Optional[str] = None
) -> Optional[ResolvedCandidate]:
    """Check a record for the marker; the body marker wins over the title."""
    if extract_marker_from_body(record.body) == marker:
        confidence = CONFIDENCE_BODY
        if content_fingerprint and extract_fingerprint_from_body(record.body) == content_fingerprint:
            confidence = CONFIDENCE_BODY_AND_FINGERPRINT
        return ResolvedCandidate(record=record, matched_by=MATCHED_BY_BODY, match_confidence=confidence)
    if extract_marker_from_title(record.title) == marker:
        return ResolvedCandidate(record=record, matched_by=MATCHED_BY_TITLE, match_confidence=CONFIDENCE_TITLE)
    return None


class CanonicalIdentityResolver:
    """Find the external record that already represents a logical entity."""

    def __init__(self, client: ExternalRecordClient):
        """Initialize resolver with an external record client."""
        self.client = client

    def resolve(self, scope: str, marker: str, content_fingerprint: Optional[str] = None) -> ResolveResult:
        """
        Resolve ``marker`` within ``scope``.

        Zero matches yields ``found=False``. With several matches, body-marker
        matches are preferred over title-only matches and the lowest external
        id wins; a ``MULTIPLE_MATCHES`` warning is attached and logged.
        External failures propagate as classified ``ExternalAPIError`` kinds.
        """
        if not marker or not marker.strip():
            raise InvalidMarkerError("marker must be a non-empty string")
        if not scope or not scope.strip():
            raise InvalidMarkerError("scope must be a non-empty string")

        try:
            records = self.client.search(scope, marker)
        except ExternalAPIError:
            raise
        except Exception as exc:
            raise classify_exception(exc) from exc

        matches = []
        for record in records:
            candidate = match_record(record, marker, content_fingerprint)
            if candidate is not None:
                matches.append(candidate)

        if not matches:
            return ResolveResult(found=False)

        # Body matches first, then lowest external id.
        matches.sort(key=lambda c: (c.matched_by != MATCHED_BY_BODY, c.record.external_id))
        selected = matches[0]

        warnings = []
        if len(matches) > 1:
            warnings.append(MULTIPLE_MATCHES_WARNING)
            logger.warning(
                "Multiple external records carry the same marker",
                extra={
                    "scope": scope,
                    "marker": marker,
                    "candidate_ids": [c.record.external_id for c in matches],
                    "selected_id": selected.record.external_id,
                },
            )

        return ResolveResult(
            found=True,
            ref=ExternalRecordRef(
                external_id=selected.record.external_id,
                url=selected.record.url,
                match_confidence=selected.match_confidence,
            ),
            record=selected.record,
            matched_by=selected.matched_by,
            candidates=matches,
            warnings=warnings,
        )
