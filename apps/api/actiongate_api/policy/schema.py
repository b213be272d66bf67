"""Policy rules, versioned policy documents and decisions."""

import hashlib
import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from actiongate_api.idempotency.keys import canonical_json

logger = logging.getLogger(__name__)

# Reason codes
ALLOWED = "ALLOWED"
NO_POLICY = "NO_POLICY"
ENV_NOT_ALLOWED = "ENV_NOT_ALLOWED"
ALREADY_EXECUTED = "ALREADY_EXECUTED"
COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
RATE_LIMITED = "RATE_LIMITED"
APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
EVALUATION_ERROR = "EVALUATION_ERROR"

ENFORCEMENT_STRICT = "strict"


class PolicyDocumentError(ValueError):
    """Raised for unreadable, invalid or malformed policy content."""


class PolicyRule(BaseModel):
    """Gating rule for one action type. Immutable once published."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    action_type: str = Field(min_length=1)
    allowed_envs: tuple[str, ...] = ("staging",)
    cooldown_seconds: int = Field(default=0, ge=0)
    max_runs_per_window: Optional[int] = Field(default=None, ge=1)
    window_seconds: Optional[int] = Field(default=None, ge=1)
    idempotency_key_template: tuple[str, ...] = ()
    requires_approval: bool = False
    description: Optional[str] = None

    def canonical(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(canonical_json(self.canonical()).encode("utf-8")).hexdigest()


def validate_rate_limit_config(rule: PolicyRule) -> None:
    """A rate limit needs both ``max_runs_per_window`` and ``window_seconds``."""
    if (rule.max_runs_per_window is None) != (rule.window_seconds is None):
        raise PolicyDocumentError(
            f"Rule {rule.action_type!r} must set both maxRunsPerWindow and windowSeconds or neither"
        )


class PolicyDocument(BaseModel):
    """Versioned set of rules keyed by action type."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    version: str = Field(min_length=1)
    enforcement_mode: str = ENFORCEMENT_STRICT
    rules: tuple[PolicyRule, ...] = ()
    dropped_rules: tuple[str, ...] = Field(default=(), exclude=True)

    @classmethod
    def from_dict(cls, data: Any) -> "PolicyDocument":
        """
        Parse a raw document.

        Rule entries that fail validation are dropped (and logged) so their
        action type resolves to no policy. A document without a version, a
        non-list ``rules`` value, or two rules for one action type is rejected.
        """
        if not isinstance(data, dict):
            raise PolicyDocumentError("Policy document must be a JSON object")
        version = data.get("version")
        if not isinstance(version, str) or not version:
            raise PolicyDocumentError("Policy document requires a non-empty 'version'")
        raw_rules = data.get("rules", [])
        if not isinstance(raw_rules, list):
            raise PolicyDocumentError("'rules' must be a list")

        rules = []
        dropped = []
        seen = set()
        for index, raw in enumerate(raw_rules):
            try:
                rule = PolicyRule.model_validate(raw)
            except ValidationError as exc:
                label = raw.get("actionType", raw.get("action_type")) if isinstance(raw, dict) else None
                dropped.append(str(label or f"#{index}"))
                logger.warning(
                    "Dropping invalid policy rule",
                    extra={"version": version, "rule": label, "index": index, "errors": exc.error_count()},
                )
                continue
            if rule.action_type in seen:
                raise PolicyDocumentError(f"Duplicate rule for action type {rule.action_type!r}")
            seen.add(rule.action_type)
            rules.append(rule)

        return cls(
            version=version,
            enforcement_mode=data.get("enforcementMode", data.get("enforcement_mode", ENFORCEMENT_STRICT)),
            rules=tuple(sorted(rules, key=lambda r: r.action_type)),
            dropped_rules=tuple(dropped),
        )

    def canonical(self) -> dict:
        return {
            "version": self.version,
            "enforcementMode": self.enforcement_mode,
            "rules": [rule.canonical() for rule in sorted(self.rules, key=lambda r: r.action_type)],
        }

    @property
    def document_hash(self) -> str:
        return hashlib.sha256(canonical_json(self.canonical()).encode("utf-8")).hexdigest()

    def registry(self) -> dict[str, PolicyRule]:
        return {rule.action_type: rule for rule in self.rules}


class PolicyDecision(BaseModel):
    """Result of one evaluation. Written to the ledger before it is returned."""

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
    rule_hash: Optional[str] = None

    # Set on ALREADY_EXECUTED replays
    prior_request_id: Optional[str] = None
    prior_external_id: Optional[str] = None
    prior_external_url: Optional[str] = None
