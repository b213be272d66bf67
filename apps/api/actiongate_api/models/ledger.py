"""Append-only audit ledger models."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String, Text, text

from actiongate_api.db.base import Base

EXECUTION_SUCCESS = "success"
EXECUTION_FAILURE = "failure"


class PolicyDecisionRecord(Base):
    """One row per policy evaluation. Never updated; corrections are new rows."""

    __tablename__ = "policy_decisions"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(String(64), nullable=False, index=True)
    action_type = Column(String(100), nullable=False)
    scope = Column(String(255), nullable=False)
    idempotency_key = Column(String(64), nullable=True, index=True)
    action_fingerprint = Column(String(64), nullable=True)
    allowed = Column(Boolean, nullable=False)
    reason_code = Column(String(50), nullable=False, index=True)
    reason = Column(Text, nullable=False)
    next_allowed_at = Column(DateTime, nullable=True)
    policy_version = Column(String(100), nullable=True)
    policy_version_hash = Column(String(64), nullable=True)
    deployment_env = Column(String(50), nullable=True)
    context_json = Column(JSON, nullable=True)
    enforcement_json = Column(JSON, nullable=True)
    decided_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_policy_decisions_action_scope_time", "action_type", "scope", "decided_at"),
    )


class ExecutionRecord(Base):
    """Outcome of an executed action.

    The partial unique index allows at most one success per idempotency key;
    it is the enforcement point against duplicate execution.
    """

    __tablename__ = "execution_records"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(String(64), nullable=False, index=True)
    action_type = Column(String(100), nullable=False)
    scope = Column(String(255), nullable=False)
    idempotency_key = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False)  # success, failure
    external_id = Column(String(100), nullable=True)
    external_url = Column(Text, nullable=True)
    match_confidence = Column(String(10), nullable=True)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    policy_version_hash = Column(String(64), nullable=True)
    executed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_execution_records_action_scope_time", "action_type", "scope", "executed_at"),
        Index(
            "uq_execution_records_success_key",
            "idempotency_key",
            unique=True,
            sqlite_where=text("status = 'success'"),
            postgresql_where=text("status = 'success'"),
        ),
    )


class ExecutionClaim(Base):
    """Claim taken on an idempotency key before its external effect runs."""

    __tablename__ = "execution_claims"

    id = Column(Integer, primary_key=True, index=True)
    idempotency_key = Column(String(64), nullable=False, unique=True)
    request_id = Column(String(64), nullable=False)
    action_type = Column(String(100), nullable=False)
    scope = Column(String(255), nullable=False)
    claimed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
