"""Wire messages exchanged with the browser widget over the /ws channel.

Inbound messages are parsed into a closed set of variants so the relay has a
single place that decides what each message means. Outbound messages are plain
dicts built by the helpers at the bottom.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

from .errors import MalformedMessage

CONNECTED_TEXT = "Connected to browser feedback server"


@dataclass(frozen=True, slots=True)
class FeedbackSubmitted:
    payload: dict[str, Any]


@dataclass(frozen=True, slots=True)
class DeleteRequested:
    id: str


@dataclass(frozen=True, slots=True)
class BatchCompleted:
    count: int = 0


@dataclass(frozen=True, slots=True)
class UnknownMessage:
    type: str


InboundMessage = Union[FeedbackSubmitted, DeleteRequested, BatchCompleted, UnknownMessage]


def parse_inbound(raw: str | bytes) -> InboundMessage:
    try:
        msg = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedMessage(f"not JSON: {exc}") from exc
    if not isinstance(msg, dict):
        raise MalformedMessage("message must be a JSON object")

    mtype = msg.get("type")
    if not isinstance(mtype, str) or not mtype:
        raise MalformedMessage("message has no type")

    if mtype == "feedback":
        payload = msg.get("payload")
        if not isinstance(payload, dict):
            raise MalformedMessage("feedback without an object payload")
        return FeedbackSubmitted(payload=payload)

    if mtype == "delete_feedback":
        # Always answerable: a missing or odd id just matches nothing.
        item_id = msg.get("id")
        return DeleteRequested(id="" if item_id is None else str(item_id))

    if mtype == "feedback_batch_complete":
        try:
            count = int(msg.get("count") or 0)
        except (TypeError, ValueError):
            count = 0
        return BatchCompleted(count=count)

    return UnknownMessage(type=mtype)


# ─────────────────────────────────────────────────────────────────────────────
# Outbound
# ─────────────────────────────────────────────────────────────────────────────


def connected_message() -> dict[str, Any]:
    return {"type": "connected", "message": CONNECTED_TEXT}


def pending_status_message(summary: dict[str, Any]) -> dict[str, Any]:
    return {"type": "pending_status", "count": summary.get("count", 0), "items": summary.get("items", [])}


def feedback_received_message(item_id: Any) -> dict[str, Any]:
    return {"type": "feedback_received", "id": item_id}


def feedback_deleted_message(item_id: str, success: bool) -> dict[str, Any]:
    return {"type": "feedback_deleted", "id": item_id, "success": bool(success)}


def request_annotation_message(message: str) -> dict[str, Any]:
    return {"type": "request_annotation", "message": message}


def request_multiple_annotations_message(message: str) -> dict[str, Any]:
    return {"type": "request_multiple_annotations", "message": message}
