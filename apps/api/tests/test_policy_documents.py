"""Tests for policy documents and the policy store."""

import pytest
from pydantic import ValidationError

from conftest import RERUN_CHECKS_RULE

from actiongate_api.models import PolicyDocumentRecord
from actiongate_api.policy.schema import (
    PolicyDocument,
    PolicyDocumentError,
    PolicyRule,
    validate_rate_limit_config,
)
from actiongate_api.policy.store import PolicyStore, PolicyVersionNotFoundError


class TestPolicyRule:
    def test_parses_camel_case(self):
        rule = PolicyRule.model_validate(RERUN_CHECKS_RULE)

        assert rule.action_type == "rerun_checks"
        assert rule.allowed_envs == ("staging", "prod")
        assert rule.idempotency_key_template == ("owner", "repo", "prNumber", "runId")
        assert rule.requires_approval is False

    def test_frozen(self):
        rule = PolicyRule.model_validate(RERUN_CHECKS_RULE)

        with pytest.raises(ValidationError):
            rule.cooldown_seconds = 0

    def test_content_hash_tracks_content(self):
        rule = PolicyRule.model_validate(RERUN_CHECKS_RULE)
        changed = PolicyRule.model_validate({**RERUN_CHECKS_RULE, "cooldownSeconds": 60})

        assert rule.content_hash == PolicyRule.model_validate(dict(RERUN_CHECKS_RULE)).content_hash
        assert rule.content_hash != changed.content_hash

    def test_rate_limit_pair_required(self):
        rule = PolicyRule(action_type="merge", max_runs_per_window=3)

        with pytest.raises(PolicyDocumentError):
            validate_rate_limit_config(rule)
        validate_rate_limit_config(PolicyRule(action_type="merge"))


class TestPolicyDocument:
    def test_hash_ignores_rule_order(self):
        other = {"actionType": "merge", "allowedEnvs": ["prod"]}

        first = PolicyDocument.from_dict({"version": "v1", "rules": [RERUN_CHECKS_RULE, other]})
        second = PolicyDocument.from_dict({"version": "v1", "rules": [other, RERUN_CHECKS_RULE]})

        assert first.document_hash == second.document_hash
        assert [r.action_type for r in first.rules] == ["merge", "rerun_checks"]

    def test_invalid_rules_are_dropped(self):
        document = PolicyDocument.from_dict(
            {
                "version": "v1",
                "rules": [RERUN_CHECKS_RULE, {"actionType": "merge", "cooldownSeconds": -5}, "garbage"],
            }
        )

        assert list(document.registry()) == ["rerun_checks"]
        assert document.dropped_rules == ("merge", "#2")

    @pytest.mark.parametrize(
        "raw",
        [
            [],
            {"rules": []},
            {"version": "v1", "rules": {"actionType": "x"}},
            {"version": "v1", "rules": [{"actionType": "x"}, {"actionType": "x"}]},
        ],
    )
    def test_rejects_malformed_documents(self, raw):
        with pytest.raises(PolicyDocumentError):
            PolicyDocument.from_dict(raw)


class TestPolicyStore:
    def test_publish_is_idempotent_by_hash(self, db):
        store = PolicyStore(db)
        document = PolicyDocument.from_dict({"version": "v1", "rules": [RERUN_CHECKS_RULE]})

        first = store.publish(document)
        second = store.publish(document)

        assert first.id == second.id
        assert db.query(PolicyDocumentRecord).count() == 1
        assert first.is_active is False

    def test_exactly_one_active_document(self, db):
        store = PolicyStore(db)
        v1 = store.publish(PolicyDocument.from_dict({"version": "v1", "rules": [RERUN_CHECKS_RULE]}))
        v2 = store.publish(PolicyDocument.from_dict({"version": "v2", "rules": []}))

        store.activate(v1.document_hash)
        store.activate(v2.document_hash)

        active = db.query(PolicyDocumentRecord).filter(PolicyDocumentRecord.is_active == True).all()  # noqa: E712
        assert [r.version for r in active] == ["v2"]
        assert store.get_active().version == "v2"
        assert store.rule_for("rerun_checks") is None

    def test_rule_for_returns_rule_and_version(self, db):
        store = PolicyStore(db)
        record = store.publish(PolicyDocument.from_dict({"version": "v1", "rules": [RERUN_CHECKS_RULE]}))
        store.activate(record.document_hash)

        rule, active = store.rule_for("rerun_checks")

        assert rule.cooldown_seconds == 300
        assert active.document_hash == record.document_hash

    def test_nothing_active(self, db):
        assert PolicyStore(db).get_active() is None
        assert PolicyStore(db).rule_for("rerun_checks") is None

    def test_activate_unknown_hash(self, db):
        with pytest.raises(PolicyVersionNotFoundError):
            PolicyStore(db).activate("0" * 64)
