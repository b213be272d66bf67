"""Policy-gated execution of external effects."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.orm import Session

from actiongate_api.external.errors import ExternalAPIError
from actiongate_api.external.types import ExternalRecordRef
from actiongate_api.ledger.service import AuditLedger, DuplicateExecutionError
from actiongate_api.models import ExecutionRecord
from actiongate_api.models.ledger import EXECUTION_FAILURE, EXECUTION_SUCCESS
from actiongate_api.policy import schema
from actiongate_api.policy.evaluator import PolicyEvaluator
from actiongate_api.policy.schema import PolicyDecision
from actiongate_api.utils.metrics import executions

logger = logging.getLogger(__name__)

EFFECT_FAILED = "EFFECT_FAILED"


@dataclass
class ExecutionOutcome:
    """What happened to a gated action request."""

    decision: PolicyDecision
    executed: bool
    result: Any = None
    execution: Optional[ExecutionRecord] = None


def _ref_of(result: Any) -> Optional[ExternalRecordRef]:
    if isinstance(result, ExternalRecordRef):
        return result
    ref = getattr(result, "ref", None)
    return ref if isinstance(ref, ExternalRecordRef) else None


class GatedActionRunner:
    """
    Evaluate, claim, run, record.

    The claim row is inserted under a unique constraint on the idempotency
    key before the effect runs, so concurrent requests for the same key run
    the effect at most once. The loser records an ``ALREADY_EXECUTED``
    decision instead.
    """

    def __init__(
        self,
        db: Session,
        evaluator: Optional[PolicyEvaluator] = None,
        ledger: Optional[AuditLedger] = None,
    ):
        """Initialize runner."""
        self.db = db
        self.ledger = ledger or AuditLedger(db)
        self.evaluator = evaluator or PolicyEvaluator(db, ledger=self.ledger)

    def run(
        self,
        action_type: str,
        context: Mapping[str, Any],
        effect: Callable[[PolicyDecision], Any],
        now: Optional[datetime] = None,
        request_id: Optional[str] = None,
    ) -> ExecutionOutcome:
        decision = self.evaluator.evaluate(action_type, context, now=now, request_id=request_id)
        if not decision.allowed:
            return ExecutionOutcome(decision=decision, executed=False)

        key = decision.idempotency_key
        try:
            self.ledger.claim(key, decision.request_id, action_type, decision.scope)
        except DuplicateExecutionError:
            replay = decision.model_copy(
                update={
                    "allowed": False,
                    "reason_code": schema.ALREADY_EXECUTED,
                    "reason": "Another request holds the execution claim for this key",
                    "decided_at": decision.decided_at,
                }
            )
            self.ledger.append_decision(replay, context=dict(context))
            logger.info(
                "Execution claim conflict",
                extra={"request_id": decision.request_id, "action_type": action_type, "idempotency_key": key},
            )
            return ExecutionOutcome(decision=replay, executed=False)

        try:
            result = effect(decision)
        except Exception as exc:
            error_code = exc.code if isinstance(exc, ExternalAPIError) else EFFECT_FAILED
            try:
                self.ledger.append_execution(
                    request_id=decision.request_id,
                    action_type=action_type,
                    scope=decision.scope,
                    idempotency_key=key,
                    status=EXECUTION_FAILURE,
                    error_code=error_code,
                    error_message=str(exc)[:1000],
                    policy_version_hash=decision.policy_version_hash,
                    executed_at=now,
                )
            finally:
                self.ledger.release_claim(key)
            executions.labels(action_type=action_type, status=EXECUTION_FAILURE).inc()
            logger.warning(
                "Gated effect failed",
                extra={"request_id": decision.request_id, "action_type": action_type, "error_code": error_code},
            )
            raise

        ref = _ref_of(result)
        record = self.ledger.append_execution(
            request_id=decision.request_id,
            action_type=action_type,
            scope=decision.scope,
            idempotency_key=key,
            status=EXECUTION_SUCCESS,
            external_id=str(ref.external_id) if ref else None,
            external_url=ref.url if ref else None,
            match_confidence=ref.match_confidence if ref else None,
            policy_version_hash=decision.policy_version_hash,
            executed_at=now,
        )
        executions.labels(action_type=action_type, status=EXECUTION_SUCCESS).inc()
        return ExecutionOutcome(decision=decision, executed=True, result=result, execution=record)
