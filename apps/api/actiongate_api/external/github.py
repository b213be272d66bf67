"""GitHub issues implementation of the external record API."""

import logging
from typing import Optional

import httpx

from actiongate_api.external.errors import classify_exception, classify_http_error
from actiongate_api.external.types import ExternalRecord, RecordContent
from actiongate_api.settings import get_settings

logger = logging.getLogger(__name__)

SEARCH_PAGE_SIZE = 100


class GitHubRecordClient:
    """Search, create and update issues in a ``owner/repo`` scope."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize client from settings unless overridden."""
        settings = get_settings()
        self.base_url = (base_url or settings.external_api_url).rstrip("/")
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": settings.external_user_agent,
        }
        token = token or settings.external_api_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.http = http_client or httpx.Client(timeout=settings.external_timeout_seconds)
        self.headers = headers

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, headers=self.headers, **kwargs)
        except httpx.HTTPError as exc:
            raise classify_exception(exc) from exc

        if 200 <= response.status_code < 300:
            return response.json()

        try:
            payload = response.json()
            message = payload.get("message", "")
            errors = payload.get("errors")
            if errors:
                message = f"{message} {errors}"
        except ValueError:
            message = response.text[:500]

        error = classify_http_error(response.status_code, message, dict(response.headers))
        logger.warning(
            "External API call failed",
            extra={"method": method, "path": path, "status": response.status_code, "code": error.code},
        )
        raise error

    @staticmethod
    def _to_record(item: dict) -> ExternalRecord:
        return ExternalRecord(
            external_id=item["number"],
            url=item.get("html_url", ""),
            title=item.get("title") or "",
            body=item.get("body"),
            labels=[label["name"] if isinstance(label, dict) else str(label) for label in item.get("labels", [])],
            state=item.get("state", "open"),
        )

    def search(self, scope: str, marker: str) -> list[ExternalRecord]:
        """Search issues in scope containing the marker token."""
        query = f'repo:{scope} is:issue "{marker}"'
        payload = self._request("GET", "/search/issues", params={"q": query, "per_page": SEARCH_PAGE_SIZE})
        items = [item for item in payload.get("items", []) if not item.get("pull_request")]
        return [self._to_record(item) for item in items]

    def create(self, scope: str, content: RecordContent) -> ExternalRecord:
        """Create an issue."""
        payload = self._request(
            "POST",
            f"/repos/{scope}/issues",
            json={"title": content.title, "body": content.body, "labels": content.labels},
        )
        return self._to_record(payload)

    def update(self, scope: str, external_id: int, content: RecordContent) -> ExternalRecord:
        """Update an issue's content fields."""
        payload = self._request(
            "PATCH",
            f"/repos/{scope}/issues/{external_id}",
            json={"title": content.title, "body": content.body, "labels": content.labels},
        )
        return self._to_record(payload)

    def close(self) -> None:
        self.http.close()
