"""Types exchanged with the external record API."""

from typing import Optional, Protocol

from pydantic import BaseModel, Field


class ExternalRecord(BaseModel):
    """A record as returned by the external system."""

    external_id: int
    url: str
    title: str = ""
    body: Optional[str] = None
    labels: list[str] = Field(default_factory=list)
    state: str = "open"


class RecordContent(BaseModel):
    """Content fields owned by the publisher."""

    title: str
    body: str
    labels: list[str] = Field(default_factory=list)


class ExternalRecordRef(BaseModel):
    """Back-reference to a record the external system owns."""

    external_id: int
    url: str
    match_confidence: float = 1.0


class ExternalRecordClient(Protocol):
    """Operations consumed from the external record API."""

    def search(self, scope: str, marker: str) -> list[ExternalRecord]:
        ...

    def create(self, scope: str, content: RecordContent) -> ExternalRecord:
        ...

    def update(self, scope: str, external_id: int, content: RecordContent) -> ExternalRecord:
        ...
