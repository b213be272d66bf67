"""Read-only audit queries."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from actiongate_api.db.session import get_db
from actiongate_api.ledger.service import AuditLedger
from actiongate_api.routes.policy import ExecutionResponse

router = APIRouter(prefix="/v1/audit", tags=["audit"])


class DecisionRecordResponse(BaseModel):
    id: int
    request_id: str
    action_type: str
    scope: str
    idempotency_key: Optional[str] = None
    action_fingerprint: Optional[str] = None
    allowed: bool
    reason_code: str
    reason: str
    next_allowed_at: Optional[datetime] = None
    policy_version: Optional[str] = None
    policy_version_hash: Optional[str] = None
    deployment_env: Optional[str] = None
    decided_at: datetime

    class Config:
        from_attributes = True


class PublishEventResponse(BaseModel):
    id: int
    request_id: str
    action_type: str
    scope: str
    marker: str
    idempotency_key: str
    external_id: str
    external_url: Optional[str] = None
    mode: str
    rendered_hash: str
    labels_json: Optional[list[str]] = None
    warnings_json: Optional[list[str]] = None
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("/decisions", response_model=list[DecisionRecordResponse])
async def list_decisions(
    action_type: Optional[str] = None,
    scope: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Policy decisions by action type, scope and time range, newest first."""
    return AuditLedger(db).decisions(action_type=action_type, scope=scope, start=start, end=end, limit=limit)


@router.get("/executions", response_model=list[ExecutionResponse])
async def list_executions(
    action_type: Optional[str] = None,
    scope: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Execution records by action type, scope and time range, newest first."""
    return AuditLedger(db).executions(action_type=action_type, scope=scope, start=start, end=end, limit=limit)


@router.get("/publishes", response_model=list[PublishEventResponse])
async def list_publishes(
    scope: Optional[str] = None,
    marker: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Publish backlinks, optionally for one marker."""
    return AuditLedger(db).publish_events(scope=scope, marker=marker, limit=limit)
