"""
Type definitions for MCP server responses and handlers.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..config import FeedbackConfig
    from ..coordinator import InstanceCoordinator


@dataclass(slots=True)
class ToolContent:
    """Single content item in tool response."""

    type: str  # "text" or "image"
    text: str | None = None
    data: str | None = None  # base64 for images
    mime_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP content format."""
        if self.type == "image":
            return {"type": "image", "data": self.data, "mimeType": self.mime_type}
        return {"type": "text", "text": self.text}


@dataclass(slots=True)
class ToolResult:
    """Result of a tool execution."""

    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False
    # Raw payload for tests and in-process callers; not part of the MCP wire format.
    data: Any | None = None

    @classmethod
    def text(cls, text: str, data: Any | None = None) -> ToolResult:
        return cls(content=[ToolContent(type="text", text=text or "")], data=data)

    @classmethod
    def json(cls, data: Any) -> ToolResult:
        """Pretty-printed JSON text content."""
        return cls(content=[ToolContent(type="text", text=json.dumps(data, indent=2, ensure_ascii=False))], data=data)

    @classmethod
    def error(cls, message: str, *, details: dict[str, Any] | None = None) -> ToolResult:
        return cls(content=[ToolContent(type="text", text=message)], is_error=True, data=details)

    @classmethod
    def with_images(cls, text: str, images: list[tuple[str, str]], data: Any | None = None) -> ToolResult:
        """Text followed by one image block per (base64, mime type) pair; empty images are skipped."""
        content = [ToolContent(type="text", text=text or "")]
        for data_b64, mime_type in images:
            if data_b64:
                content.append(ToolContent(type="image", data=data_b64, mime_type=mime_type))
        return cls(content=content, data=data)

    def to_content_list(self) -> list[dict[str, Any]]:
        """Convert to MCP content list format."""
        return [c.to_dict() for c in self.content]

    @property
    def first_text(self) -> str:
        return next((c.text or "" for c in self.content if c.type == "text"), "")


HandlerFunc = Callable[["FeedbackConfig", "InstanceCoordinator", dict[str, Any]], ToolResult]
