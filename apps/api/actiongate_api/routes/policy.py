"""Policy evaluation and execution recording endpoints."""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from actiongate_api.db.session import get_db
from actiongate_api.ledger.service import AuditLedger, DuplicateExecutionError
from actiongate_api.middleware.correlation import get_request_id
from actiongate_api.models.ledger import EXECUTION_FAILURE, EXECUTION_SUCCESS
from actiongate_api.policy.evaluator import PolicyEvaluator, resolve_scope
from actiongate_api.utils.metrics import executions

router = APIRouter(prefix="/v1", tags=["policy"])


class EvaluateRequest(BaseModel):
    """Policy evaluation request."""

    action_type: str = Field(min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)


class DecisionResponse(BaseModel):
    """Policy decision."""

    request_id: str
    action_type: str
    scope: str
    idempotency_key: Optional[str] = None
    allowed: bool
    reason_code: str
    reason: str
    next_allowed_at: Optional[datetime] = None
    decided_at: datetime
    policy_version: Optional[str] = None
    policy_version_hash: Optional[str] = None
    prior_request_id: Optional[str] = None
    prior_external_id: Optional[str] = None
    prior_external_url: Optional[str] = None


class ExecutionCreate(BaseModel):
    """Outcome of an effect the caller performed after an ALLOW."""

    request_id: str
    action_type: str = Field(min_length=1)
    idempotency_key: str = Field(min_length=1)
    status: str = Field(pattern=f"^({EXECUTION_SUCCESS}|{EXECUTION_FAILURE})$")
    scope: Optional[str] = None
    context: dict[str, Any] = Field(default_factory=dict)
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    match_confidence: Optional[float] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    policy_version_hash: Optional[str] = None


class ExecutionResponse(BaseModel):
    """Stored execution record."""

    id: int
    request_id: str
    action_type: str
    scope: str
    idempotency_key: str
    status: str
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    error_code: Optional[str] = None
    policy_version_hash: Optional[str] = None
    executed_at: datetime

    class Config:
        from_attributes = True


@router.post("/policy/evaluate", response_model=DecisionResponse)
async def evaluate_policy(
    body: EvaluateRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Evaluate whether an action may run now. DENY is a normal 200 response."""
    evaluator = PolicyEvaluator(db)
    decision = evaluator.evaluate(body.action_type, body.context, request_id=get_request_id(request))
    return DecisionResponse(**decision.model_dump())


@router.post("/executions", response_model=ExecutionResponse, status_code=status.HTTP_201_CREATED)
async def record_execution(
    body: ExecutionCreate,
    db: Session = Depends(get_db),
):
    """Record an execution outcome. A second success for a key is a 409."""
    ledger = AuditLedger(db)
    try:
        record = ledger.append_execution(
            request_id=body.request_id,
            action_type=body.action_type,
            scope=body.scope or resolve_scope(body.context),
            idempotency_key=body.idempotency_key,
            status=body.status,
            external_id=body.external_id,
            external_url=body.external_url,
            match_confidence=body.match_confidence,
            error_code=body.error_code,
            error_message=body.error_message,
            policy_version_hash=body.policy_version_hash,
        )
    except DuplicateExecutionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "ALREADY_EXECUTED", "idempotency_key": exc.idempotency_key},
        )
    executions.labels(action_type=body.action_type, status=body.status).inc()
    return record
