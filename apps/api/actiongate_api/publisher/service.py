"""Race-safe create-or-update publishing of external records."""

import hashlib
import logging
import uuid
from typing import Callable, Iterable, Optional, TypeVar

from sqlalchemy.orm import Session

from actiongate_api.external.errors import DuplicateRecordError, ExternalAPIError, classify_exception
from actiongate_api.external.types import ExternalRecord, ExternalRecordClient, ExternalRecordRef, RecordContent
from actiongate_api.identity.resolver import (
    CanonicalIdentityResolver,
    ResolveResult,
    body_with_marker,
    title_with_marker,
)
from actiongate_api.idempotency.keys import canonical_json
from actiongate_api.models import PublishEvent
from actiongate_api.publisher.schemas import MODE_CREATED, MODE_UPDATED, LogicalAction, PublishResult
from actiongate_api.settings import Settings, get_settings
from actiongate_api.utils.metrics import external_api_errors, publish_races, publishes

logger = logging.getLogger(__name__)

CREATE_RACE_WARNING = "CREATE_RACE_DETECTED"

T = TypeVar("T")


def _dedupe(labels: Iterable[str]) -> list[str]:
    seen = set()
    result = []
    for label in labels:
        if label and label not in seen:
            seen.add(label)
            result.append(label)
    return result


def render_content(action: LogicalAction) -> RecordContent:
    """Render the content fields with identity markers embedded."""
    marker = action.marker
    return RecordContent(
        title=title_with_marker(marker, action.title),
        body=body_with_marker(marker, action.body, action.content_fingerprint),
        labels=_dedupe(action.labels),
    )


def rendered_hash(content: RecordContent) -> str:
    """Hash of the rendered content, recorded for every publish."""
    return hashlib.sha256(canonical_json(content.model_dump()).encode("utf-8")).hexdigest()


def merge_labels(content_labels: Iterable[str], existing_labels: Iterable[str]) -> list[str]:
    """Content labels first, then every label already on the record.

    Labels curated in the external system (status labels, triage labels)
    are never removed by an update.
    """
    return _dedupe(list(content_labels) + list(existing_labels))


class ActionPublisher:
    """Create-or-update publisher driven by canonical identity resolution."""

    def __init__(
        self,
        resolver: CanonicalIdentityResolver,
        client: ExternalRecordClient,
        db: Optional[Session] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize publisher.

        ``db`` is optional; without it no publish backlink is written.
        """
        self.resolver = resolver
        self.client = client
        self.db = db
        self.settings = settings or get_settings()

    def _external(self, fn: Callable[..., T], *args) -> T:
        try:
            return fn(*args)
        except ExternalAPIError as exc:
            external_api_errors.labels(code=exc.code).inc()
            raise
        except Exception as exc:
            error = classify_exception(exc)
            external_api_errors.labels(code=error.code).inc()
            raise error from exc

    def _create(self, scope: str, content: RecordContent) -> ExternalRecord:
        labels = list(content.labels)
        if self.settings.initial_status_label:
            labels.append(self.settings.initial_status_label)
        create_content = content.model_copy(update={"labels": _dedupe(labels)})
        return self._external(self.client.create, scope, create_content)

    def _update(self, scope: str, resolved: ResolveResult, content: RecordContent) -> ExternalRecord:
        existing = resolved.record.labels if resolved.record else []
        update_content = content.model_copy(update={"labels": merge_labels(content.labels, existing)})
        return self._external(self.client.update, scope, resolved.ref.external_id, update_content)

    def publish(self, action: LogicalAction, request_id: Optional[str] = None) -> PublishResult:
        """
        Publish a logical action: update its record if one exists, else create it.

        A create rejected as a duplicate is treated as a lost race: resolve
        once more and update the winner's record. If the record still cannot
        be found the original error propagates.
        """
        request_id = request_id or str(uuid.uuid4())
        scope = action.target_scope
        marker = action.marker
        content = render_content(action)

        resolved = self.resolver.resolve(scope, marker, action.content_fingerprint)
        warnings = list(resolved.warnings)

        if resolved.found:
            record = self._update(scope, resolved, content)
            mode = MODE_UPDATED
            confidence = resolved.ref.match_confidence
        else:
            try:
                record = self._create(scope, content)
                mode = MODE_CREATED
                confidence = 1.0
            except DuplicateRecordError as create_error:
                logger.warning(
                    "Create rejected as duplicate, re-resolving",
                    extra={"request_id": request_id, "scope": scope, "marker": marker},
                )
                retry = self.resolver.resolve(scope, marker, action.content_fingerprint)
                if not retry.found:
                    raise create_error
                publish_races.inc()
                warnings.extend(w for w in retry.warnings if w not in warnings)
                warnings.append(CREATE_RACE_WARNING)
                record = self._update(scope, retry, content)
                mode = MODE_UPDATED
                confidence = retry.ref.match_confidence

        ref = ExternalRecordRef(external_id=record.external_id, url=record.url, match_confidence=confidence)
        result = PublishResult(
            request_id=request_id,
            ref=ref,
            mode=mode,
            marker=marker,
            idempotency_key=action.idempotency_key,
            rendered_hash=rendered_hash(content),
            labels_applied=list(record.labels),
            warnings=warnings,
        )
        if self.db is not None:
            result.publish_event_id = self._record_event(action, result)

        publishes.labels(mode=mode).inc()
        logger.info(
            "Published external record",
            extra={
                "request_id": request_id,
                "action_type": action.action_type,
                "scope": scope,
                "external_id": record.external_id,
                "mode": mode,
            },
        )
        return result

    def _record_event(self, action: LogicalAction, result: PublishResult) -> int:
        event = PublishEvent(
            request_id=result.request_id,
            action_type=action.action_type,
            scope=action.target_scope,
            marker=result.marker,
            idempotency_key=result.idempotency_key,
            external_id=str(result.ref.external_id),
            external_url=result.ref.url,
            mode=result.mode,
            rendered_hash=result.rendered_hash,
            labels_json=result.labels_applied,
            warnings_json=result.warnings,
        )
        self.db.add(event)
        self.db.commit()
        return event.id
