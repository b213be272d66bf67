"""Publish backlink log."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text

from actiongate_api.db.base import Base


class PublishEvent(Base):
    """Append-only record linking a logical action to its external record."""

    __tablename__ = "publish_events"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(String(64), nullable=False, index=True)
    action_type = Column(String(100), nullable=False)
    scope = Column(String(255), nullable=False, index=True)
    marker = Column(String(255), nullable=False, index=True)
    idempotency_key = Column(String(64), nullable=False, index=True)
    external_id = Column(String(100), nullable=False)
    external_url = Column(Text, nullable=True)
    mode = Column(String(20), nullable=False)  # created, updated
    rendered_hash = Column(String(64), nullable=False)
    labels_json = Column(JSON, nullable=True)
    warnings_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
