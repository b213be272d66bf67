from .schemas import MODE_CREATED, MODE_UPDATED, LogicalAction, PublishResult
from .service import ActionPublisher, merge_labels, render_content, rendered_hash

__all__ = [
    "MODE_CREATED",
    "MODE_UPDATED",
    "ActionPublisher",
    "LogicalAction",
    "PublishResult",
    "merge_labels",
    "render_content",
    "rendered_hash",
]
