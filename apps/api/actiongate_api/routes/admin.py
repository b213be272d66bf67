"""Admin routes for policy document management."""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from actiongate_api.db.session import get_db
from actiongate_api.policy.schema import PolicyDocument, PolicyDocumentError
from actiongate_api.policy.store import PolicyStore, PolicyVersionNotFoundError

router = APIRouter(prefix="/admin", tags=["admin"])


class PolicyDocumentResponse(BaseModel):
    """Published policy document."""

    version: str
    document_hash: str
    is_active: bool
    created_at: datetime
    activated_at: Optional[datetime] = None
    document_json: dict[str, Any]
    dropped_rules: list[str] = []

    class Config:
        from_attributes = True


@router.post("/policies", response_model=PolicyDocumentResponse, status_code=status.HTTP_201_CREATED)
async def publish_policy(
    document: dict[str, Any] = Body(...),
    activate: bool = False,
    db: Session = Depends(get_db),
):
    """Publish a policy document, optionally activating it."""
    try:
        parsed = PolicyDocument.from_dict(document)
    except PolicyDocumentError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    store = PolicyStore(db)
    record = store.publish(parsed)
    if activate:
        record = store.activate(record.document_hash)

    response = PolicyDocumentResponse.model_validate(record)
    response.dropped_rules = list(parsed.dropped_rules)
    return response


@router.post("/policies/{document_hash}/activate", response_model=PolicyDocumentResponse)
async def activate_policy(
    document_hash: str,
    db: Session = Depends(get_db),
):
    """Make a published document the active policy."""
    try:
        record = PolicyStore(db).activate(document_hash)
    except PolicyVersionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return record


@router.get("/policies/active", response_model=PolicyDocumentResponse)
async def get_active_policy(db: Session = Depends(get_db)):
    """Currently active policy document."""
    store = PolicyStore(db)
    active = store.get_active()
    if active is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active policy document")
    record = store.get_record(active.document_hash)
    response = PolicyDocumentResponse.model_validate(record)
    response.dropped_rules = list(active.document.dropped_rules)
    return response
