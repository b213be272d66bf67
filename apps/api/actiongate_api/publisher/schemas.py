"""Publisher input and output models."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from actiongate_api.external.types import ExternalRecordRef
from actiongate_api.idempotency.keys import logical_action_key

MODE_CREATED = "created"
MODE_UPDATED = "updated"


class LogicalAction(BaseModel):
    """The thing that should happen, independent of whether it has happened."""

    action_type: str = Field(min_length=1)
    target_scope: str = Field(min_length=1)
    content_fingerprint: str = Field(min_length=1)
    context_fields: dict[str, Any] = Field(default_factory=dict)

    # Content fields owned by this service
    title: str = Field(min_length=1)
    body: str = ""
    labels: list[str] = Field(default_factory=list)

    @property
    def idempotency_key(self) -> str:
        return logical_action_key(self.action_type, self.target_scope, self.content_fingerprint)

    @property
    def marker(self) -> str:
        """Marker embedded in the external record.

        An explicit ``canonical_id`` context field wins; otherwise the
        logical action key is used, so identical actions share a marker.
        That key covers ``content_fingerprint``, so a caller that revises
        the content of one entity must pass a ``canonical_id`` to have the
        revision update the existing record rather than create a new one.
        """
        canonical_id = self.context_fields.get("canonical_id")
        if canonical_id:
            return str(canonical_id)
        return self.idempotency_key


class PublishResult(BaseModel):
    """Outcome of a publish."""

    request_id: str
    ref: ExternalRecordRef
    mode: str
    marker: str
    idempotency_key: str
    rendered_hash: str
    labels_applied: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    publish_event_id: Optional[int] = None
