"""Storage and activation of versioned policy documents."""

import logging
from typing import NamedTuple, Optional

from sqlalchemy.orm import Session

from actiongate_api.models import PolicyDocumentRecord
from actiongate_api.policy.schema import PolicyDocument, PolicyRule
from actiongate_api.utils.clock import utcnow

logger = logging.getLogger(__name__)


class PolicyVersionNotFoundError(LookupError):
    """No published policy document has the requested hash."""


class ActivePolicy(NamedTuple):
    document: PolicyDocument
    document_hash: str
    version: str


class PolicyStore:
    """Publishes, activates and reads policy documents."""

    def __init__(self, db: Session):
        """Initialize policy store."""
        self.db = db

    def get_record(self, document_hash: str) -> Optional[PolicyDocumentRecord]:
        return (
            self.db.query(PolicyDocumentRecord)
            .filter(PolicyDocumentRecord.document_hash == document_hash)
            .first()
        )

    def publish(self, document: PolicyDocument) -> PolicyDocumentRecord:
        """Store a document. Publishing identical content returns the existing row."""
        document_hash = document.document_hash
        existing = self.get_record(document_hash)
        if existing:
            return existing

        record = PolicyDocumentRecord(
            version=document.version,
            document_hash=document_hash,
            document_json=document.canonical(),
            is_active=False,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info(
            "Policy document published",
            extra={"version": document.version, "document_hash": document_hash, "rules": len(document.rules)},
        )
        return record

    def activate(self, document_hash: str) -> PolicyDocumentRecord:
        """Make one published document the only active one."""
        record = self.get_record(document_hash)
        if not record:
            raise PolicyVersionNotFoundError(f"Policy document {document_hash} not found")

        self.db.query(PolicyDocumentRecord).filter(
            PolicyDocumentRecord.is_active == True,  # noqa: E712
            PolicyDocumentRecord.id != record.id,
        ).update({"is_active": False}, synchronize_session=False)
        record.is_active = True
        record.activated_at = utcnow()
        self.db.commit()
        self.db.refresh(record)
        logger.info("Policy document activated", extra={"version": record.version, "document_hash": document_hash})
        return record

    def get_active(self) -> Optional[ActivePolicy]:
        """Parse the active document; None when nothing is active."""
        record = (
            self.db.query(PolicyDocumentRecord)
            .filter(PolicyDocumentRecord.is_active == True)  # noqa: E712
            .order_by(PolicyDocumentRecord.activated_at.desc())
            .first()
        )
        if not record:
            return None
        document = PolicyDocument.from_dict(record.document_json)
        return ActivePolicy(document=document, document_hash=record.document_hash, version=record.version)

    def rule_for(self, action_type: str) -> Optional[tuple[PolicyRule, ActivePolicy]]:
        """Registry lookup of the active rule for an action type."""
        active = self.get_active()
        if active is None:
            return None
        rule = active.document.registry().get(action_type)
        if rule is None:
            return None
        return rule, active
