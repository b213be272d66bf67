"""Deterministic idempotency keys and action fingerprints."""

import hashlib
import json
from typing import Any, Iterable, Mapping, Optional


def canonical_json(obj: Any) -> str:
    """Serialize with sorted keys and no whitespace."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def _stable_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def canonical_key(template: Iterable[str], context: Mapping[str, Any]) -> str:
    """
    Build the canonical form of a templated context.

    Each field becomes ``name=<JSON value>`` and the parts, sorted by name,
    are encoded as a JSON array. Neither the template order nor the context
    insertion order affects the result. Values keep their JSON type
    (``42`` and ``"42"`` differ) and no value can spill into a neighbouring
    part. Fields absent from the context (or set to None) are left out.
    """
    return canonical_json(
        [
            f"{name}={canonical_json(context[name])}"
            for name in sorted(set(template))
            if context.get(name) is not None
        ]
    )


def generate(template: Iterable[str], context: Mapping[str, Any]) -> str:
    """Derive the fixed-length idempotency key for a context."""
    return _stable_hash(canonical_key(template, context))


def action_fingerprint(action_type: str, scope: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Fingerprint of an action request, independent of parameter ordering."""
    return _stable_hash(canonical_json({"action_type": action_type, "scope": scope, "params": params or {}}))


LOGICAL_ACTION_TEMPLATE = ("action_type", "target_scope", "content_fingerprint")


def logical_action_key(action_type: str, target_scope: str, content_fingerprint: str) -> str:
    """Key shared by every LogicalAction with the same identity triple."""
    return generate(
        LOGICAL_ACTION_TEMPLATE,
        {
            "action_type": action_type,
            "target_scope": target_scope,
            "content_fingerprint": content_fingerprint,
        },
    )
