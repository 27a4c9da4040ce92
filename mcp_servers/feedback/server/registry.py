"""
Tool registry with dispatch table for MCP server.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..errors import FeedbackTimeout, RelayClosed, RelayUnreachable
from .types import HandlerFunc, ToolResult

if TYPE_CHECKING:
    from ..config import FeedbackConfig
    from ..coordinator import InstanceCoordinator

logger = logging.getLogger("mcp.feedback.registry")

UNREACHABLE_TEXT = "Could not reach the feedback server. Is the feedback server running?"


class ToolRegistry:
    """Name -> handler table. Errors raised by handlers become error results here."""

    def __init__(self) -> None:
        self._handlers: dict[str, HandlerFunc] = {}

    def register(self, name: str, handler: HandlerFunc) -> None:
        self._handlers[name] = handler

    def register_many(self, handlers: dict[str, HandlerFunc]) -> None:
        self._handlers.update(handlers)

    def has(self, name: str) -> bool:
        return name in self._handlers

    def dispatch(
        self,
        name: str,
        config: FeedbackConfig,
        coordinator: InstanceCoordinator,
        arguments: dict[str, Any],
    ) -> ToolResult:
        """
        Dispatch tool call to appropriate handler.

        Raises:
            KeyError: If tool not found
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise KeyError(f"Unknown tool: {name}")

        try:
            return handler(config, coordinator, arguments)
        except FeedbackTimeout as exc:
            logger.info("tool=%s timed out", name)
            return ToolResult.error(str(exc))
        except RelayUnreachable as exc:
            logger.warning("tool=%s relay unreachable: %s", name, exc)
            return ToolResult.error(UNREACHABLE_TEXT, details={"reason": str(exc)})
        except RelayClosed as exc:
            return ToolResult.error(str(exc))

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers.keys())

    def __len__(self) -> int:
        return len(self._handlers)


def create_default_registry() -> ToolRegistry:
    from .handlers import ALL_HANDLERS

    registry = ToolRegistry()
    registry.register_many(ALL_HANDLERS)
    return registry
