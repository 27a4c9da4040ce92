"""
Tool handlers organized by domain.

All handlers follow the signature: (config, coordinator, arguments) -> ToolResult
"""

from typing import Any

from .feedback import FEEDBACK_HANDLERS
from .project import PROJECT_HANDLERS

ALL_HANDLERS: dict[str, Any] = {
    **PROJECT_HANDLERS,
    **FEEDBACK_HANDLERS,
}

__all__ = [
    "ALL_HANDLERS",
    "FEEDBACK_HANDLERS",
    "PROJECT_HANDLERS",
]
