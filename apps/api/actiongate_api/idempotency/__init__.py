from .keys import action_fingerprint, canonical_json, canonical_key, generate, logical_action_key

__all__ = [
    "action_fingerprint",
    "canonical_json",
    "canonical_key",
    "generate",
    "logical_action_key",
]
