"""Tests for canonical identity resolution."""

import logging

import pytest
from unittest.mock import Mock

from actiongate_api.external.errors import ExternalNetworkError, RateLimitedError
from actiongate_api.external.types import ExternalRecord
from actiongate_api.identity.resolver import (
    CONFIDENCE_BODY,
    CONFIDENCE_BODY_AND_FINGERPRINT,
    CONFIDENCE_TITLE,
    MULTIPLE_MATCHES_WARNING,
    CanonicalIdentityResolver,
    InvalidMarkerError,
    body_with_marker,
    extract_fingerprint_from_body,
    extract_marker_from_body,
    extract_marker_from_title,
    title_with_marker,
)

SCOPE = "acme/widgets"
MARKER = "cid-123"


def record(external_id: int, title: str = "Unrelated", body: str = "") -> ExternalRecord:
    return ExternalRecord(external_id=external_id, url=f"https://x.test/{external_id}", title=title, body=body)


def resolver_with(records=None, error=None) -> CanonicalIdentityResolver:
    client = Mock()
    if error is not None:
        client.search.side_effect = error
    else:
        client.search.return_value = records or []
    return CanonicalIdentityResolver(client)


class TestMarkers:
    def test_title_round_trip(self):
        assert extract_marker_from_title(title_with_marker(MARKER, "Build broken")) == MARKER

    def test_title_without_prefix(self):
        assert extract_marker_from_title("Build broken [CID:cid-123]") is None
        assert extract_marker_from_title("[CID:unterminated") is None

    def test_body_lines(self):
        body = body_with_marker(MARKER, "Details", "fp-1")

        assert extract_marker_from_body(body) == MARKER
        assert extract_fingerprint_from_body(body) == "fp-1"
        assert body.endswith("Details")


class TestCanonicalIdentityResolver:
    def test_zero_matches(self):
        result = resolver_with([record(1, body="no marker here")]).resolve(SCOPE, MARKER)

        assert result.found is False
        assert result.ref is None

    def test_single_body_match(self):
        result = resolver_with([record(5, body=body_with_marker(MARKER, "x"))]).resolve(SCOPE, MARKER)

        assert result.found is True
        assert result.ref.external_id == 5
        assert result.ref.match_confidence == CONFIDENCE_BODY
        assert result.warnings == []

    def test_fingerprint_raises_confidence(self):
        body = body_with_marker(MARKER, "x", "fp-1")

        result = resolver_with([record(5, body=body)]).resolve(SCOPE, MARKER, "fp-1")

        assert result.ref.match_confidence == CONFIDENCE_BODY_AND_FINGERPRINT

    def test_title_only_match_has_lower_confidence(self):
        result = resolver_with([record(9, title=title_with_marker(MARKER, "t"))]).resolve(SCOPE, MARKER)

        assert result.found is True
        assert result.matched_by == "title"
        assert result.ref.match_confidence == CONFIDENCE_TITLE

    def test_body_match_preferred_over_lower_id_title_match(self, caplog):
        records = [
            record(3, title=title_with_marker(MARKER, "t")),
            record(8, body=body_with_marker(MARKER, "x")),
        ]

        with caplog.at_level(logging.WARNING):
            result = resolver_with(records).resolve(SCOPE, MARKER)

        assert result.ref.external_id == 8
        assert MULTIPLE_MATCHES_WARNING in result.warnings
        assert [c.record.external_id for c in result.candidates] == [8, 3]
        assert "Multiple external records" in caplog.text

    def test_lowest_id_among_body_matches(self):
        records = [
            record(12, body=body_with_marker(MARKER, "x")),
            record(4, body=body_with_marker(MARKER, "y")),
            record(7, body=body_with_marker(MARKER, "z")),
        ]

        result = resolver_with(records).resolve(SCOPE, MARKER)

        assert result.ref.external_id == 4
        assert result.warnings == [MULTIPLE_MATCHES_WARNING]

    def test_marker_substring_is_not_a_match(self):
        records = [record(2, body=body_with_marker("cid-1234", "x"))]

        assert resolver_with(records).resolve(SCOPE, MARKER).found is False

    def test_deterministic_for_unchanged_state(self):
        records = [
            record(12, body=body_with_marker(MARKER, "x")),
            record(4, title=title_with_marker(MARKER, "t")),
        ]
        resolver = resolver_with(records)

        first = resolver.resolve(SCOPE, MARKER)
        second = resolver.resolve(SCOPE, MARKER)

        assert first == second

    def test_external_errors_propagate(self):
        resolver = resolver_with(error=RateLimitedError("limited", 429, retry_after_seconds=10))

        with pytest.raises(RateLimitedError):
            resolver.resolve(SCOPE, MARKER)

    def test_unclassified_errors_are_classified_not_swallowed(self):
        resolver = resolver_with(error=ConnectionError("connection reset by peer"))

        with pytest.raises(ExternalNetworkError):
            resolver.resolve(SCOPE, MARKER)

    def test_empty_marker_rejected(self):
        with pytest.raises(InvalidMarkerError):
            resolver_with().resolve(SCOPE, "  ")
