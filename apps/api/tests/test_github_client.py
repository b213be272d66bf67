"""Tests for the GitHub issues record client."""

import json

import httpx
import pytest

from actiongate_api.external.errors import (
    DuplicateRecordError,
    ExternalAuthError,
    ExternalNetworkError,
    RateLimitedError,
)
from actiongate_api.external.github import GitHubRecordClient
from actiongate_api.external.types import RecordContent


def make_client(handler) -> GitHubRecordClient:
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return GitHubRecordClient(base_url="https://api.test", token="t0ken", http_client=http)


def issue(number: int, title: str = "t", body: str = "b", pull_request: bool = False) -> dict:
    item = {
        "number": number,
        "html_url": f"https://github.test/acme/widgets/issues/{number}",
        "title": title,
        "body": body,
        "labels": [{"name": "bug"}],
        "state": "open",
    }
    if pull_request:
        item["pull_request"] = {"url": "https://api.test/pulls/1"}
    return item


class TestGitHubRecordClient:
    def test_search_filters_pull_requests_and_scopes_query(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["q"] = request.url.params["q"]
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"items": [issue(1), issue(2, pull_request=True)]})

        records = make_client(handler).search("acme/widgets", "cid-1")

        assert [r.external_id for r in records] == [1]
        assert records[0].labels == ["bug"]
        assert seen["q"] == 'repo:acme/widgets is:issue "cid-1"'
        assert seen["auth"] == "Bearer t0ken"

    def test_create_posts_content(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["method"] = request.method
            captured["path"] = request.url.path
            captured["json"] = json.loads(request.content)
            return httpx.Response(201, json=issue(7, title="[CID:x] T"))

        record = make_client(handler).create("acme/widgets", RecordContent(title="[CID:x] T", body="B", labels=["l"]))

        assert record.external_id == 7
        assert captured["method"] == "POST"
        assert captured["path"] == "/repos/acme/widgets/issues"
        assert captured["json"] == {"title": "[CID:x] T", "body": "B", "labels": ["l"]}

    def test_update_patches_issue(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "PATCH"
            assert request.url.path == "/repos/acme/widgets/issues/7"
            return httpx.Response(200, json=issue(7))

        record = make_client(handler).update("acme/widgets", 7, RecordContent(title="T", body="B"))

        assert record.external_id == 7

    def test_rate_limit_carries_retry_hint(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"message": "slow down"}, headers={"Retry-After": "12"})

        with pytest.raises(RateLimitedError) as exc_info:
            make_client(handler).search("acme/widgets", "cid-1")

        assert exc_info.value.retry_after_seconds == 12

    def test_duplicate_validation_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                422, json={"message": "Validation Failed", "errors": [{"code": "already_exists", "message": "already exists"}]}
            )

        with pytest.raises(DuplicateRecordError):
            make_client(handler).create("acme/widgets", RecordContent(title="T", body="B"))

    def test_auth_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"message": "Bad credentials"})

        with pytest.raises(ExternalAuthError):
            make_client(handler).search("acme/widgets", "cid-1")

    def test_transport_failure_is_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ExternalNetworkError):
            make_client(handler).search("acme/widgets", "cid-1")
