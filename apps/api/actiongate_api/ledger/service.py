"""Append-only audit ledger of policy decisions and executions."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from actiongate_api.models import ExecutionClaim, ExecutionRecord, PolicyDecisionRecord, PublishEvent
from actiongate_api.models.ledger import EXECUTION_FAILURE, EXECUTION_SUCCESS
from actiongate_api.policy.schema import PolicyDecision
from actiongate_api.utils.clock import to_naive_utc

logger = logging.getLogger(__name__)

EXECUTION_STATUSES = (EXECUTION_SUCCESS, EXECUTION_FAILURE)
DEFAULT_QUERY_LIMIT = 100


class DuplicateExecutionError(Exception):
    """A unique constraint rejected a second success or claim for a key."""

    def __init__(self, idempotency_key: str):
        super().__init__(f"Idempotency key {idempotency_key} already executed or claimed")
        self.idempotency_key = idempotency_key


class AuditLedger:
    """Insert-only ledger. No update or delete of decisions or executions is exposed."""

    def __init__(self, db: Session):
        """Initialize ledger."""
        self.db = db

    def append_decision(
        self,
        decision: PolicyDecision,
        context: Optional[dict] = None,
        action_fingerprint: Optional[str] = None,
        deployment_env: Optional[str] = None,
        enforcement: Optional[dict] = None,
    ) -> PolicyDecisionRecord:
        """Persist a decision and commit before it is returned to the caller."""
        record = PolicyDecisionRecord(
            request_id=decision.request_id,
            action_type=decision.action_type,
            scope=decision.scope,
            idempotency_key=decision.idempotency_key,
            action_fingerprint=action_fingerprint,
            allowed=decision.allowed,
            reason_code=decision.reason_code,
            reason=decision.reason,
            next_allowed_at=decision.next_allowed_at,
            policy_version=decision.policy_version,
            policy_version_hash=decision.policy_version_hash,
            deployment_env=deployment_env,
            context_json=context,
            enforcement_json=enforcement,
            decided_at=to_naive_utc(decision.decided_at),
        )
        self.db.add(record)
        self.db.commit()
        return record

    def append_execution(
        self,
        request_id: str,
        action_type: str,
        scope: str,
        idempotency_key: str,
        status: str,
        external_id: Optional[str] = None,
        external_url: Optional[str] = None,
        match_confidence: Optional[float] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        policy_version_hash: Optional[str] = None,
        executed_at: Optional[datetime] = None,
    ) -> ExecutionRecord:
        """
        Persist an execution outcome.

        A second success for the same idempotency key violates the partial
        unique index and raises DuplicateExecutionError.
        """
        if status not in EXECUTION_STATUSES:
            raise ValueError(f"Unknown execution status: {status}")
        record = ExecutionRecord(
            request_id=request_id,
            action_type=action_type,
            scope=scope,
            idempotency_key=idempotency_key,
            status=status,
            external_id=str(external_id) if external_id is not None else None,
            external_url=external_url,
            match_confidence=f"{match_confidence:.2f}" if match_confidence is not None else None,
            error_code=error_code,
            error_message=error_message,
            policy_version_hash=policy_version_hash,
            executed_at=to_naive_utc(executed_at),
        )
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning(
                "Duplicate successful execution rejected",
                extra={"request_id": request_id, "idempotency_key": idempotency_key},
            )
            raise DuplicateExecutionError(idempotency_key) from exc
        return record

    def claim(self, idempotency_key: str, request_id: str, action_type: str, scope: str) -> ExecutionClaim:
        """Take the single claim on a key before running its external effect."""
        claim = ExecutionClaim(
            idempotency_key=idempotency_key,
            request_id=request_id,
            action_type=action_type,
            scope=scope,
        )
        self.db.add(claim)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateExecutionError(idempotency_key) from exc
        return claim

    def release_claim(self, idempotency_key: str) -> None:
        """Drop a claim after a failed effect so the key can be retried."""
        if not self.db.is_active:
            self.db.rollback()
        self.db.query(ExecutionClaim).filter(ExecutionClaim.idempotency_key == idempotency_key).delete(
            synchronize_session=False
        )
        self.db.commit()

    def find_success_by_key(self, idempotency_key: str) -> Optional[ExecutionRecord]:
        return (
            self.db.query(ExecutionRecord)
            .filter(
                ExecutionRecord.idempotency_key == idempotency_key,
                ExecutionRecord.status == EXECUTION_SUCCESS,
            )
            .first()
        )

    def last_success(self, action_type: str, scope: str) -> Optional[ExecutionRecord]:
        """Most recent successful execution for (action_type, scope)."""
        return (
            self.db.query(ExecutionRecord)
            .filter(
                ExecutionRecord.action_type == action_type,
                ExecutionRecord.scope == scope,
                ExecutionRecord.status == EXECUTION_SUCCESS,
            )
            .order_by(ExecutionRecord.executed_at.desc())
            .first()
        )

    def count_successes_in_window(self, action_type: str, scope: str, start: datetime, end: datetime) -> int:
        """Successful executions with ``start <= executed_at <= end``."""
        return (
            self.db.query(ExecutionRecord)
            .filter(
                ExecutionRecord.action_type == action_type,
                ExecutionRecord.scope == scope,
                ExecutionRecord.status == EXECUTION_SUCCESS,
                ExecutionRecord.executed_at >= to_naive_utc(start),
                ExecutionRecord.executed_at <= to_naive_utc(end),
            )
            .count()
        )

    def run_times(
        self, action_type: str, scope: str, end: datetime, start: Optional[datetime] = None
    ) -> list[datetime]:
        """
        Times of runs for (action_type, scope) in ``[start, end]``, oldest first.

        A run is an ALLOW decision or a successful execution; the two are
        joined on request_id and the earlier timestamp is kept, so an allowed
        request that later records its execution counts once.
        """
        end = to_naive_utc(end)
        decisions = self.db.query(PolicyDecisionRecord.request_id, PolicyDecisionRecord.decided_at).filter(
            PolicyDecisionRecord.action_type == action_type,
            PolicyDecisionRecord.scope == scope,
            PolicyDecisionRecord.allowed == True,  # noqa: E712
            PolicyDecisionRecord.decided_at <= end,
        )
        executions = self.db.query(ExecutionRecord.request_id, ExecutionRecord.executed_at).filter(
            ExecutionRecord.action_type == action_type,
            ExecutionRecord.scope == scope,
            ExecutionRecord.status == EXECUTION_SUCCESS,
            ExecutionRecord.executed_at <= end,
        )
        if start is not None:
            start = to_naive_utc(start)
            # A run allowed before the window stays outside it even if it executed inside
            allowed_before = select(PolicyDecisionRecord.request_id).where(
                PolicyDecisionRecord.action_type == action_type,
                PolicyDecisionRecord.scope == scope,
                PolicyDecisionRecord.allowed == True,  # noqa: E712
                PolicyDecisionRecord.decided_at < start,
            )
            decisions = decisions.filter(PolicyDecisionRecord.decided_at >= start)
            executions = executions.filter(
                ExecutionRecord.executed_at >= start,
                ExecutionRecord.request_id.not_in(allowed_before),
            )

        runs: dict[str, datetime] = {}
        for request_id, timestamp in list(decisions.all()) + list(executions.all()):
            current = runs.get(request_id)
            if current is None or timestamp < current:
                runs[request_id] = timestamp
        return sorted(runs.values())

    def last_run_at(self, action_type: str, scope: str, end: datetime) -> Optional[datetime]:
        runs = self.run_times(action_type, scope, end=end)
        return runs[-1] if runs else None

    # Read-only audit queries

    def decisions(
        self,
        action_type: Optional[str] = None,
        scope: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> list[PolicyDecisionRecord]:
        query = self.db.query(PolicyDecisionRecord)
        if action_type:
            query = query.filter(PolicyDecisionRecord.action_type == action_type)
        if scope:
            query = query.filter(PolicyDecisionRecord.scope == scope)
        if start:
            query = query.filter(PolicyDecisionRecord.decided_at >= to_naive_utc(start))
        if end:
            query = query.filter(PolicyDecisionRecord.decided_at <= to_naive_utc(end))
        return (
            query.order_by(PolicyDecisionRecord.decided_at.desc(), PolicyDecisionRecord.id.desc())
            .limit(limit)
            .all()
        )

    def executions(
        self,
        action_type: Optional[str] = None,
        scope: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> list[ExecutionRecord]:
        query = self.db.query(ExecutionRecord)
        if action_type:
            query = query.filter(ExecutionRecord.action_type == action_type)
        if scope:
            query = query.filter(ExecutionRecord.scope == scope)
        if start:
            query = query.filter(ExecutionRecord.executed_at >= to_naive_utc(start))
        if end:
            query = query.filter(ExecutionRecord.executed_at <= to_naive_utc(end))
        return query.order_by(ExecutionRecord.executed_at.desc(), ExecutionRecord.id.desc()).limit(limit).all()

    def publish_events(
        self,
        scope: Optional[str] = None,
        marker: Optional[str] = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> list[PublishEvent]:
        query = self.db.query(PublishEvent)
        if scope:
            query = query.filter(PublishEvent.scope == scope)
        if marker:
            query = query.filter(PublishEvent.marker == marker)
        return query.order_by(PublishEvent.created_at.desc(), PublishEvent.id.desc()).limit(limit).all()
