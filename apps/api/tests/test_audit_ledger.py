"""Tests for the append-only audit ledger."""

from datetime import datetime, timedelta

import pytest

from actiongate_api.ledger.service import AuditLedger, DuplicateExecutionError
from actiongate_api.models import ExecutionClaim, ExecutionRecord
from actiongate_api.models.ledger import EXECUTION_FAILURE, EXECUTION_SUCCESS
from actiongate_api.policy.schema import ALLOWED, COOLDOWN_ACTIVE, PolicyDecision

T0 = datetime(2026, 1, 1, 12, 0, 0)


def success(ledger: AuditLedger, key: str, at: datetime, request_id: str = None, scope: str = "acme/widgets"):
    return ledger.append_execution(
        request_id=request_id or f"req-{key}",
        action_type="rerun_checks",
        scope=scope,
        idempotency_key=key,
        status=EXECUTION_SUCCESS,
        executed_at=at,
    )


def decision(request_id: str, at: datetime, allowed: bool = True) -> PolicyDecision:
    return PolicyDecision(
        request_id=request_id,
        action_type="rerun_checks",
        scope="acme/widgets",
        idempotency_key=f"key-{request_id}",
        allowed=allowed,
        reason_code=ALLOWED if allowed else COOLDOWN_ACTIVE,
        reason="test",
        decided_at=at,
    )


class TestAuditLedger:
    def test_second_success_for_key_rejected(self, db):
        ledger = AuditLedger(db)
        success(ledger, "k1", T0)

        with pytest.raises(DuplicateExecutionError) as exc_info:
            success(ledger, "k1", T0 + timedelta(seconds=1), request_id="other")

        assert exc_info.value.idempotency_key == "k1"
        assert db.query(ExecutionRecord).count() == 1

    def test_failures_do_not_consume_the_key(self, db):
        ledger = AuditLedger(db)
        for i in range(2):
            ledger.append_execution(
                request_id=f"fail-{i}",
                action_type="rerun_checks",
                scope="acme/widgets",
                idempotency_key="k1",
                status=EXECUTION_FAILURE,
                error_code="NETWORK_ERROR",
                executed_at=T0,
            )

        success(ledger, "k1", T0 + timedelta(minutes=1))

        assert ledger.find_success_by_key("k1").request_id == "req-k1"

    def test_unknown_status_rejected(self, db):
        with pytest.raises(ValueError):
            AuditLedger(db).append_execution("r", "a", "s", "k", status="maybe")

    def test_last_success_and_window_count(self, db):
        ledger = AuditLedger(db)
        success(ledger, "k1", T0)
        success(ledger, "k2", T0 + timedelta(minutes=10))
        success(ledger, "k3", T0 + timedelta(minutes=20))
        success(ledger, "other", T0 + timedelta(minutes=30), scope="acme/gadgets")

        assert ledger.last_success("rerun_checks", "acme/widgets").idempotency_key == "k3"
        assert ledger.count_successes_in_window(
            "rerun_checks", "acme/widgets", T0 + timedelta(seconds=1), T0 + timedelta(minutes=20)
        ) == 2
        assert ledger.count_successes_in_window(
            "rerun_checks", "acme/widgets", T0, T0 + timedelta(minutes=20)
        ) == 3
        assert ledger.count_successes_in_window(
            "rerun_checks", "acme/widgets", T0 - timedelta(seconds=1), T0 + timedelta(hours=1)
        ) == 3
        assert ledger.last_success("rerun_checks", "acme/nothing") is None

    def test_run_times_joins_decisions_and_executions(self, db):
        ledger = AuditLedger(db)
        ledger.append_decision(decision("r1", T0))
        success(ledger, "key-r1", T0 + timedelta(seconds=5), request_id="r1")
        ledger.append_decision(decision("r2", T0 + timedelta(minutes=1)))
        ledger.append_decision(decision("r3", T0 + timedelta(minutes=2), allowed=False))
        success(ledger, "manual", T0 + timedelta(minutes=3), request_id="r4")

        runs = ledger.run_times("rerun_checks", "acme/widgets", end=T0 + timedelta(hours=1))

        assert runs == [T0, T0 + timedelta(minutes=1), T0 + timedelta(minutes=3)]
        assert ledger.last_run_at("rerun_checks", "acme/widgets", end=T0 + timedelta(minutes=2)) == (
            T0 + timedelta(minutes=1)
        )
        assert ledger.run_times("rerun_checks", "acme/widgets", end=T0 + timedelta(hours=1), start=T0) == runs
        # r1 was allowed before the window, so its later execution stays outside it
        later = T0 + timedelta(seconds=1)
        assert ledger.run_times("rerun_checks", "acme/widgets", end=T0 + timedelta(hours=1), start=later) == runs[1:]

    def test_claims_are_unique_and_releasable(self, db):
        ledger = AuditLedger(db)
        ledger.claim("k1", "r1", "rerun_checks", "acme/widgets")

        with pytest.raises(DuplicateExecutionError):
            ledger.claim("k1", "r2", "rerun_checks", "acme/widgets")

        ledger.release_claim("k1")
        ledger.claim("k1", "r3", "rerun_checks", "acme/widgets")
        assert db.query(ExecutionClaim).one().request_id == "r3"

    def test_audit_queries_filter_and_order(self, db):
        ledger = AuditLedger(db)
        ledger.append_decision(decision("r1", T0))
        ledger.append_decision(decision("r2", T0 + timedelta(minutes=5), allowed=False))
        success(ledger, "k1", T0)

        decisions = ledger.decisions(action_type="rerun_checks", scope="acme/widgets")
        assert [d.request_id for d in decisions] == ["r2", "r1"]
        assert [d.request_id for d in ledger.decisions(start=T0 + timedelta(minutes=1))] == ["r2"]
        assert ledger.executions(scope="acme/gadgets") == []
        assert len(ledger.executions(action_type="rerun_checks", end=T0)) == 1
