"""ActionGate API client."""

import requests
from typing import Optional


class ActionGateClient:
    """Client for ActionGate API."""

    def __init__(self, base_url: str = "http://localhost:8000", timeout: float = 10.0):
        """Initialize client."""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    def _post(self, path: str, payload: dict, request_id: Optional[str] = None) -> dict:
        headers = {"x-request-id": request_id} if request_id else {}
        response = self.session.post(f"{self.base_url}{path}", json=payload, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def evaluate(self, action_type: str, context: dict, request_id: Optional[str] = None) -> dict:
        """Ask whether an action may run now. DENY comes back as ``allowed: false``."""
        return self._post(
            "/v1/policy/evaluate",
            {"action_type": action_type, "context": context},
            request_id=request_id,
        )

    def record_execution(
        self,
        decision: dict,
        status: str,
        external_id: Optional[str] = None,
        external_url: Optional[str] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> dict:
        """Record the outcome of an effect run after an ALLOW decision."""
        payload = {
            "request_id": decision["request_id"],
            "action_type": decision["action_type"],
            "scope": decision["scope"],
            "idempotency_key": decision["idempotency_key"],
            "policy_version_hash": decision.get("policy_version_hash"),
            "status": status,
            "external_id": external_id,
            "external_url": external_url,
            "error_code": error_code,
            "error_message": error_message,
        }
        return self._post("/v1/executions", payload)

    def publish(
        self,
        action_type: str,
        target_scope: str,
        content_fingerprint: str,
        title: str,
        body: str = "",
        labels: Optional[list] = None,
        context: Optional[dict] = None,
        request_id: Optional[str] = None,
    ) -> dict:
        """Gated create-or-update of the external record for a logical action."""
        payload = {
            "action_type": action_type,
            "target_scope": target_scope,
            "content_fingerprint": content_fingerprint,
            "title": title,
            "body": body,
            "labels": labels or [],
            "context": context or {},
        }
        return self._post("/v1/actions/publish", payload, request_id=request_id)

    def audit_executions(
        self,
        action_type: Optional[str] = None,
        scope: Optional[str] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
        limit: int = 100,
    ) -> list:
        """Execution records, newest first."""
        params = {"limit": limit}
        for name, value in (("action_type", action_type), ("scope", scope), ("start", start), ("end", end)):
            if value is not None:
                params[name] = value
        response = self.session.get(f"{self.base_url}/v1/audit/executions", params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()
