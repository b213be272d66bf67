"""Versioned policy document model."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String

from actiongate_api.db.base import Base


class PolicyDocumentRecord(Base):
    """Published policy document.

    ``document_json`` is immutable once written; a rule change is a new row
    with a new ``document_hash``. Only ``is_active``/``activated_at`` move.
    """

    __tablename__ = "policy_documents"

    id = Column(Integer, primary_key=True, index=True)
    version = Column(String(100), nullable=False, index=True)
    document_hash = Column(String(64), nullable=False, unique=True, index=True)
    document_json = Column(JSON, nullable=False)
    is_active = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    activated_at = Column(DateTime, nullable=True)
