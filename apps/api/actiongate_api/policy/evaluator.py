"""Fail-closed policy evaluation for automated actions."""

import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from actiongate_api.idempotency.keys import action_fingerprint, generate
from actiongate_api.ledger.service import AuditLedger
from actiongate_api.policy import schema
from actiongate_api.policy.schema import PolicyDecision, PolicyRule, validate_rate_limit_config
from actiongate_api.policy.store import PolicyStore
from actiongate_api.utils.clock import to_naive_utc
from actiongate_api.utils.metrics import policy_evaluation_duration, policy_evaluations

logger = logging.getLogger(__name__)

# Context fields that steer gating rather than identify the action
CONTROL_FIELDS = ("env", "hasApproval", "has_approval")
DEFAULT_SCOPE = "global"


def resolve_scope(context: Mapping[str, Any]) -> str:
    """
    Scope an action is counted against.

    ``scope`` or ``target_scope`` when given, else ``owner/repo`` when both
    are present, else a single global scope.
    """
    for name in ("scope", "target_scope"):
        value = context.get(name)
        if value:
            return str(value)
    owner, repo = context.get("owner"), context.get("repo")
    if owner and repo:
        return f"{owner}/{repo}"
    return DEFAULT_SCOPE


def has_approval(context: Mapping[str, Any]) -> bool:
    value = context.get("hasApproval", context.get("has_approval"))
    return value is True


def _identity_fields(context: Mapping[str, Any]) -> dict:
    return {k: v for k, v in context.items() if k not in CONTROL_FIELDS}


class PolicyEvaluator:
    """
    Decides ALLOW/DENY for an action request.

    Steps run in order and the first failing one decides:
    policy lookup, environment, idempotent replay, cooldown, rate limit,
    approval. Any exception while evaluating is a DENY with
    ``EVALUATION_ERROR``; ALLOW is returned only when every check passed and
    the decision was written to the ledger.
    """

    def __init__(self, db: Session, store: Optional[PolicyStore] = None, ledger: Optional[AuditLedger] = None):
        """Initialize evaluator."""
        self.db = db
        self.store = store or PolicyStore(db)
        self.ledger = ledger or AuditLedger(db)

    def evaluate(
        self,
        action_type: str,
        context: Mapping[str, Any],
        now: Optional[datetime] = None,
        request_id: Optional[str] = None,
    ) -> PolicyDecision:
        started = time.perf_counter()
        now = to_naive_utc(now)
        request_id = request_id or str(uuid.uuid4())
        context = dict(context or {})
        scope = resolve_scope(context)

        try:
            decision = self._decide(action_type, context, scope, now, request_id)
        except Exception as exc:
            self.db.rollback()
            logger.error(
                "Policy evaluation failed",
                extra={"request_id": request_id, "action_type": action_type, "scope": scope},
                exc_info=True,
            )
            decision = self._error_decision(action_type, scope, now, request_id, exc)

        decision = self._persist(decision, context)

        policy_evaluations.labels(action_type=action_type, reason_code=decision.reason_code).inc()
        policy_evaluation_duration.observe(time.perf_counter() - started)
        if not decision.allowed:
            logger.info(
                "Action denied",
                extra={
                    "request_id": request_id,
                    "action_type": action_type,
                    "scope": scope,
                    "reason_code": decision.reason_code,
                    "next_allowed_at": decision.next_allowed_at.isoformat() if decision.next_allowed_at else None,
                },
            )
        return decision

    def _persist(self, decision: PolicyDecision, context: dict) -> PolicyDecision:
        fingerprint = action_fingerprint(decision.action_type, decision.scope, _identity_fields(context))
        env = context.get("env")
        try:
            self.ledger.append_decision(
                decision,
                context=context,
                action_fingerprint=fingerprint,
                deployment_env=str(env) if env is not None else None,
                enforcement={"mode": schema.ENFORCEMENT_STRICT},
            )
            return decision
        except Exception as exc:
            self.db.rollback()
            logger.error(
                "Failed to write policy decision",
                extra={"request_id": decision.request_id, "action_type": decision.action_type},
                exc_info=True,
            )
            failed = self._error_decision(
                decision.action_type, decision.scope, decision.decided_at, decision.request_id, exc
            )
        try:
            self.ledger.append_decision(failed, context=context, action_fingerprint=fingerprint)
        except Exception:
            self.db.rollback()
            logger.error(
                "Failed to write evaluation error decision",
                extra={"request_id": failed.request_id, "action_type": failed.action_type},
                exc_info=True,
            )
        return failed

    @staticmethod
    def _error_decision(
        action_type: str, scope: str, now: datetime, request_id: str, exc: BaseException
    ) -> PolicyDecision:
        return PolicyDecision(
            request_id=request_id,
            action_type=action_type,
            scope=scope,
            allowed=False,
            reason_code=schema.EVALUATION_ERROR,
            reason=f"Policy evaluation failed: {exc.__class__.__name__}: {exc}",
            decided_at=now,
        )

    def _decide(
        self, action_type: str, context: dict, scope: str, now: datetime, request_id: str
    ) -> PolicyDecision:
        def decision(allowed: bool, reason_code: str, reason: str, **fields) -> PolicyDecision:
            return PolicyDecision(
                request_id=request_id,
                action_type=action_type,
                scope=scope,
                allowed=allowed,
                reason_code=reason_code,
                reason=reason,
                decided_at=now,
                **fields,
            )

        lookup = self.store.rule_for(action_type)
        if lookup is None:
            return decision(False, schema.NO_POLICY, f"No active policy rule for action type {action_type!r}")
        rule, active = lookup
        validate_rate_limit_config(rule)
        versioned = {
            "policy_version": active.version,
            "policy_version_hash": active.document_hash,
            "rule_hash": rule.content_hash,
        }

        env = context.get("env")
        if env is None:
            return decision(False, schema.ENV_NOT_ALLOWED, "Context has no env", **versioned)
        if env not in rule.allowed_envs:
            return decision(
                False,
                schema.ENV_NOT_ALLOWED,
                f"Environment {env!r} not in allowed environments {list(rule.allowed_envs)}",
                **versioned,
            )

        key = self._idempotency_key(rule, context)
        versioned["idempotency_key"] = key

        prior = self.ledger.find_success_by_key(key)
        if prior is not None:
            return decision(
                False,
                schema.ALREADY_EXECUTED,
                f"Already executed by request {prior.request_id}",
                prior_request_id=prior.request_id,
                prior_external_id=prior.external_id,
                prior_external_url=prior.external_url,
                **versioned,
            )

        if rule.cooldown_seconds > 0:
            last_run = self.ledger.last_run_at(action_type, scope, end=now)
            if last_run is not None:
                next_allowed_at = last_run + timedelta(seconds=rule.cooldown_seconds)
                if now < next_allowed_at:
                    return decision(
                        False,
                        schema.COOLDOWN_ACTIVE,
                        f"Cooldown of {rule.cooldown_seconds}s active until {next_allowed_at.isoformat()}",
                        next_allowed_at=next_allowed_at,
                        **versioned,
                    )

        if rule.max_runs_per_window is not None:
            window = timedelta(seconds=rule.window_seconds)
            runs = self.ledger.run_times(action_type, scope, end=now, start=now - window)
            if len(runs) >= rule.max_runs_per_window:
                next_allowed_at = runs[0] + window
                return decision(
                    False,
                    schema.RATE_LIMITED,
                    f"{len(runs)} runs in the last {rule.window_seconds}s "
                    f"(max {rule.max_runs_per_window}); next slot at {next_allowed_at.isoformat()}",
                    next_allowed_at=next_allowed_at,
                    **versioned,
                )

        if rule.requires_approval and not has_approval(context):
            return decision(False, schema.APPROVAL_REQUIRED, "Action requires approval", **versioned)

        return decision(True, schema.ALLOWED, "All policy checks passed", **versioned)

    @staticmethod
    def _idempotency_key(rule: PolicyRule, context: dict) -> str:
        """Key from the rule template; every templated field must be present."""
        template = rule.idempotency_key_template
        if not template:
            fields = _identity_fields(context)
            return generate(sorted(fields), fields)
        missing = [name for name in template if context.get(name) is None]
        if missing:
            raise schema.PolicyDocumentError(f"Context is missing idempotency fields: {', '.join(missing)}")
        return generate(template, context)


