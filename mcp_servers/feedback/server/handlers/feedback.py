"""
Feedback tool handlers - waiting for, reading and managing browser feedback.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from ...errors import RelayUnreachable
from ..types import ToolResult

if TYPE_CHECKING:
    from ...config import FeedbackConfig
    from ...coordinator import InstanceCoordinator

NO_PENDING = "No pending feedback."
NO_CLIENTS = "No browser clients connected. Make sure the widget script is loaded in your app."
FETCH_FAILED = "Could not fetch feedback. Is the feedback server running?"
DELETE_FAILED = "Could not delete feedback. Is the feedback server running?"
ANNOTATE_FAILED = "Could not send annotation request. Is the feedback server running?"

_DATA_URL_RE = re.compile(r"^data:(image/[A-Za-z0-9.+-]+);base64,(.+)$", re.DOTALL)


def split_screenshot(item: dict[str, Any]) -> tuple[dict[str, Any], tuple[str, str] | None]:
    """Pull a data-URL screenshot out of an item so it travels as an image block."""
    shot = item.get("screenshot")
    m = _DATA_URL_RE.match(shot) if isinstance(shot, str) else None
    if m is None:
        return item, None
    stripped = dict(item)
    stripped["screenshot"] = f"<attached as image content ({m.group(1)})>"
    return stripped, (m.group(2), m.group(1))


def feedback_result(items: list[dict[str, Any]], *, header: str = "", single: bool = False) -> ToolResult:
    stripped: list[dict[str, Any]] = []
    images: list[tuple[str, str]] = []
    for item in items:
        light, image = split_screenshot(item)
        stripped.append(light)
        if image is not None:
            images.append(image)
    body = json.dumps(stripped[0] if single else stripped, indent=2, ensure_ascii=False)
    text = f"{header}\n\n{body}" if header else body
    return ToolResult.with_images(text, images, data=items[0] if single else items)


def handle_wait_for_browser_feedback(
    config: FeedbackConfig, coordinator: InstanceCoordinator, args: dict[str, Any]
) -> ToolResult:
    try:
        item = coordinator.wait_for_feedback(args.get("timeout_seconds"))
    except RelayUnreachable:
        return ToolResult.error(FETCH_FAILED)
    return feedback_result([item], single=True)


def handle_get_pending_feedback(
    config: FeedbackConfig, coordinator: InstanceCoordinator, args: dict[str, Any]
) -> ToolResult:
    try:
        items = coordinator.get_pending(clear=args.get("clear") is not False)
    except RelayUnreachable:
        return ToolResult.error(FETCH_FAILED)
    if not items:
        return ToolResult.text(NO_PENDING, data=[])
    return feedback_result(items)


def handle_preview_pending_feedback(
    config: FeedbackConfig, coordinator: InstanceCoordinator, args: dict[str, Any]
) -> ToolResult:
    try:
        summary = coordinator.preview()
    except RelayUnreachable:
        return ToolResult.error(FETCH_FAILED)
    if not summary.get("count"):
        return ToolResult.text(NO_PENDING, data=summary)
    return ToolResult.json(summary)


def handle_delete_pending_feedback(
    config: FeedbackConfig, coordinator: InstanceCoordinator, args: dict[str, Any]
) -> ToolResult:
    item_id = args.get("id")
    if not isinstance(item_id, str) or not item_id:
        return ToolResult.error("Error: id is required")
    try:
        deleted = coordinator.delete(item_id)
    except RelayUnreachable:
        return ToolResult.error(DELETE_FAILED)
    if deleted:
        return ToolResult.text(f"Feedback {item_id} deleted successfully.", data=True)
    return ToolResult.text(f"Feedback {item_id} not found.", data=False)


def handle_wait_for_multiple_feedback(
    config: FeedbackConfig, coordinator: InstanceCoordinator, args: dict[str, Any]
) -> ToolResult:
    message = args.get("message") if isinstance(args.get("message"), str) else None
    try:
        batch = coordinator.wait_for_multiple(message, args.get("timeout_seconds"))
    except RelayUnreachable:
        return ToolResult.error(FETCH_FAILED)
    if batch.clients == 0:
        return ToolResult.text(NO_CLIENTS, data=[])
    if not batch.items:
        if batch.timed_out:
            return ToolResult.text("No feedback was submitted within the timeout period.", data=[])
        return ToolResult.text("User clicked Done but no feedback was submitted.", data=[])
    return feedback_result(batch.items, header=f"Received {len(batch.items)} feedback item(s):")


def handle_get_connection_status(
    config: FeedbackConfig, coordinator: InstanceCoordinator, args: dict[str, Any]
) -> ToolResult:
    return ToolResult.json(coordinator.connection_status())


def handle_request_annotation(
    config: FeedbackConfig, coordinator: InstanceCoordinator, args: dict[str, Any]
) -> ToolResult:
    message = args.get("message") if isinstance(args.get("message"), str) else None
    try:
        count = coordinator.request_annotation(message)
    except RelayUnreachable:
        return ToolResult.error(ANNOTATE_FAILED)
    if count == 0:
        return ToolResult.text(NO_CLIENTS, data=0)
    return ToolResult.text(
        f"Annotation request sent to {count} connected browser(s). "
        "The user will see a prompt asking them to annotate.",
        data=count,
    )


FEEDBACK_HANDLERS: dict[str, Any] = {
    "wait_for_browser_feedback": handle_wait_for_browser_feedback,
    "get_pending_feedback": handle_get_pending_feedback,
    "preview_pending_feedback": handle_preview_pending_feedback,
    "delete_pending_feedback": handle_delete_pending_feedback,
    "wait_for_multiple_feedback": handle_wait_for_multiple_feedback,
    "get_connection_status": handle_get_connection_status,
    "request_annotation": handle_request_annotation,
}
