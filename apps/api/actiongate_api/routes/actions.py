"""Gated publishing of external records."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from actiongate_api.db.session import get_db
from actiongate_api.external.errors import ExternalAPIError
from actiongate_api.external.github import GitHubRecordClient
from actiongate_api.external.types import ExternalRecordClient
from actiongate_api.identity.resolver import CanonicalIdentityResolver
from actiongate_api.middleware.correlation import get_request_id
from actiongate_api.policy.executor import GatedActionRunner
from actiongate_api.publisher.schemas import LogicalAction, PublishResult
from actiongate_api.publisher.service import ActionPublisher
from actiongate_api.routes.errors import http_error_for
from actiongate_api.routes.policy import DecisionResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/actions", tags=["actions"])


class PublishRequest(BaseModel):
    """Publish request. ``context`` carries env, approval and key fields."""

    action_type: str = Field(min_length=1)
    target_scope: str = Field(min_length=1)
    content_fingerprint: str = Field(min_length=1)
    title: str = Field(min_length=1)
    body: str = ""
    labels: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


class PublishResponse(BaseModel):
    """Decision plus the publish result when the action ran."""

    decision: DecisionResponse
    executed: bool
    result: Optional[PublishResult] = None


def get_record_client():
    """External record client dependency."""
    client = GitHubRecordClient()
    try:
        yield client
    finally:
        client.close()


@router.post("/publish", response_model=PublishResponse)
def publish_action(
    body: PublishRequest,
    request: Request,
    db: Session = Depends(get_db),
    client: ExternalRecordClient = Depends(get_record_client),
):
    """Evaluate policy for the publish and, on ALLOW, create or update the record."""
    action = LogicalAction(
        action_type=body.action_type,
        target_scope=body.target_scope,
        content_fingerprint=body.content_fingerprint,
        context_fields=body.context,
        title=body.title,
        body=body.body,
        labels=body.labels,
    )
    context = {
        "target_scope": body.target_scope,
        "content_fingerprint": body.content_fingerprint,
        **body.context,
    }
    publisher = ActionPublisher(CanonicalIdentityResolver(client), client, db=db)
    runner = GatedActionRunner(db)

    try:
        outcome = runner.run(
            body.action_type,
            context,
            lambda decision: publisher.publish(action, request_id=decision.request_id),
            request_id=get_request_id(request),
        )
    except ExternalAPIError as exc:
        raise http_error_for(exc)

    return PublishResponse(
        decision=DecisionResponse(**outcome.decision.model_dump()),
        executed=outcome.executed,
        result=outcome.result,
    )
