"""Database models - import all models here for Alembic discovery."""

from actiongate_api.models.ledger import ExecutionClaim, ExecutionRecord, PolicyDecisionRecord
from actiongate_api.models.policy import PolicyDocumentRecord
from actiongate_api.models.publish import PublishEvent

__all__ = [
    "PolicyDocumentRecord",
    "PolicyDecisionRecord",
    "ExecutionRecord",
    "ExecutionClaim",
    "PublishEvent",
]
