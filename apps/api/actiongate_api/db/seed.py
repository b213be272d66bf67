"""Seed data for development and testing."""

import json
import logging
from pathlib import Path
from typing import Optional

from sqlalchemy.orm import Session

from actiongate_api.models import PolicyDocumentRecord
from actiongate_api.policy.schema import PolicyDocument, PolicyDocumentError
from actiongate_api.policy.store import PolicyStore
from actiongate_api.settings import get_settings

logger = logging.getLogger(__name__)

DEFAULT_POLICY_DOCUMENT = {
    "version": "actiongate-default-v1",
    "enforcementMode": "strict",
    "rules": [
        {
            "actionType": "rerun_checks",
            "allowedEnvs": ["staging", "prod"],
            "cooldownSeconds": 300,
            "maxRunsPerWindow": 3,
            "windowSeconds": 3600,
            "idempotencyKeyTemplate": ["owner", "repo", "prNumber", "runId"],
            "requiresApproval": False,
            "description": "Re-run failed CI checks on a pull request",
        },
        {
            "actionType": "publish_record",
            "allowedEnvs": ["staging", "prod"],
            "cooldownSeconds": 0,
            "maxRunsPerWindow": 30,
            "windowSeconds": 3600,
            "idempotencyKeyTemplate": ["target_scope", "content_fingerprint"],
            "requiresApproval": False,
            "description": "Create or update the canonical external record for a finding",
        },
        {
            "actionType": "merge",
            "allowedEnvs": ["prod"],
            "cooldownSeconds": 600,
            "maxRunsPerWindow": 5,
            "windowSeconds": 86400,
            "idempotencyKeyTemplate": ["owner", "repo", "prNumber", "headSha"],
            "requiresApproval": True,
            "description": "Merge a pull request",
        },
    ],
}


def load_policy_document(path: Optional[str] = None) -> PolicyDocument:
    """Document from ``path`` (or the configured path), else the built-in default."""
    path = path or get_settings().policy_document_path
    if not path:
        return PolicyDocument.from_dict(DEFAULT_POLICY_DOCUMENT)
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise PolicyDocumentError(f"Cannot read policy document {path}: {e}") from e
    return PolicyDocument.from_dict(raw)


def seed_policy(db: Session, path: Optional[str] = None) -> PolicyDocumentRecord:
    """Publish and activate the seed policy document."""
    document = load_policy_document(path)
    store = PolicyStore(db)
    record = store.publish(document)
    if not record.is_active:
        record = store.activate(record.document_hash)
    logger.info("Seeded policy", extra={"version": record.version, "document_hash": record.document_hash})
    return record


def seed_all(db: Session, path: Optional[str] = None) -> PolicyDocumentRecord:
    """Seed all data."""
    return seed_policy(db, path)
