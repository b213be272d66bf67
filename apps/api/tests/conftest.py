"""Pytest configuration and fixtures."""

import os

# Application engine (used by /ready) points at SQLite unless told otherwise
os.environ.setdefault("DATABASE_URL", "sqlite://")

import threading  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from actiongate_api.db.base import Base  # noqa: E402
from actiongate_api import models  # noqa: E402,F401
from actiongate_api.external.errors import DuplicateRecordError  # noqa: E402
from actiongate_api.external.types import ExternalRecord, RecordContent  # noqa: E402
from actiongate_api.identity.resolver import extract_marker_from_body  # noqa: E402
from actiongate_api.policy.schema import PolicyDocument  # noqa: E402
from actiongate_api.policy.store import PolicyStore  # noqa: E402

# Use test database URL from environment or default to SQLite in-memory
TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL",
    "sqlite:///:memory:"
)

RERUN_CHECKS_RULE = {
    "actionType": "rerun_checks",
    "allowedEnvs": ["staging", "prod"],
    "cooldownSeconds": 300,
    "maxRunsPerWindow": 3,
    "windowSeconds": 3600,
    "idempotencyKeyTemplate": ["owner", "repo", "prNumber", "runId"],
}


@pytest.fixture(scope="function")
def db():
    """
    Create a test database session.

    Set TEST_DATABASE_URL to run against a real PostgreSQL instance.
    """
    if TEST_DATABASE_URL.startswith("sqlite"):
        # SQLite in-memory for fast unit tests
        engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(TEST_DATABASE_URL)

    Base.metadata.create_all(engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


def activate_rules(db: Session, *rules: dict, version: str = "test-v1") -> str:
    """Publish and activate a document holding ``rules``; returns its hash."""
    store = PolicyStore(db)
    record = store.publish(PolicyDocument.from_dict({"version": version, "rules": list(rules)}))
    store.activate(record.document_hash)
    return record.document_hash


@pytest.fixture
def rerun_checks_policy(db: Session) -> str:
    """Active policy with the rerun_checks rule."""
    return activate_rules(db, RERUN_CHECKS_RULE)


class FakeRecordStore:
    """In-memory external record system.

    Like the real API it rejects a create whose body marker is already
    present in the scope, which is what surfaces create races.
    """

    def __init__(self, reject_duplicates: bool = True):
        self.reject_duplicates = reject_duplicates
        self.records: dict[int, tuple[str, ExternalRecord]] = {}
        self.next_id = 1
        self.lock = threading.Lock()
        self.search_calls = 0
        self.create_calls = 0
        self.update_calls = 0
        self.before_search = None

    def search(self, scope: str, marker: str) -> list[ExternalRecord]:
        if self.before_search is not None:
            self.before_search()
        with self.lock:
            self.search_calls += 1
            return [
                record.model_copy(deep=True)
                for record_scope, record in self.records.values()
                if record_scope == scope and (marker in record.title or marker in (record.body or ""))
            ]

    def create(self, scope: str, content: RecordContent) -> ExternalRecord:
        with self.lock:
            self.create_calls += 1
            marker = extract_marker_from_body(content.body)
            if self.reject_duplicates and marker:
                for record_scope, record in self.records.values():
                    if record_scope == scope and extract_marker_from_body(record.body) == marker:
                        raise DuplicateRecordError("HTTP 422: Validation Failed: issue already exists", 422)
            external_id = self.next_id
            self.next_id += 1
            record = ExternalRecord(
                external_id=external_id,
                url=f"https://example.test/{scope}/issues/{external_id}",
                title=content.title,
                body=content.body,
                labels=list(content.labels),
            )
            self.records[external_id] = (scope, record)
            return record.model_copy(deep=True)

    def update(self, scope: str, external_id: int, content: RecordContent) -> ExternalRecord:
        with self.lock:
            self.update_calls += 1
            record_scope, record = self.records[external_id]
            updated = record.model_copy(
                update={"title": content.title, "body": content.body, "labels": list(content.labels)}
            )
            self.records[external_id] = (record_scope, updated)
            return updated.model_copy(deep=True)

    def add_label(self, external_id: int, label: str) -> None:
        """Simulate a user curating the record in the external system."""
        with self.lock:
            scope, record = self.records[external_id]
            self.records[external_id] = (scope, record.model_copy(update={"labels": record.labels + [label]}))


@pytest.fixture
def record_store() -> FakeRecordStore:
    return FakeRecordStore()
