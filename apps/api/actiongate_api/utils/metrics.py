"""Prometheus metrics."""

from prometheus_client import Counter, Histogram

# Policy metrics
policy_evaluations = Counter(
    "actiongate_policy_evaluations_total",
    "Total policy evaluations",
    ["action_type", "reason_code"],
)

policy_evaluation_duration = Histogram(
    "actiongate_policy_evaluation_duration_seconds",
    "Policy evaluation duration",
)

# Execution metrics
executions = Counter(
    "actiongate_executions_total",
    "Recorded action executions",
    ["action_type", "status"],
)

# Publisher metrics
publishes = Counter(
    "actiongate_publishes_total",
    "External record publishes",
    ["mode"],
)

publish_races = Counter(
    "actiongate_publish_races_total",
    "Create attempts rejected as duplicates and resolved by re-resolve",
)

external_api_errors = Counter(
    "actiongate_external_api_errors_total",
    "External record API errors",
    ["code"],
)
