from __future__ import annotations

from dataclasses import dataclass, field

from .config import FeedbackConfig
from .connection_registry import ConnectionRegistry
from .feedback_queue import FeedbackQueue


@dataclass
class FeedbackContext:
    """Process state shared by the relay endpoint and the coordinator.

    Built once at startup, before any listener binds, and handed to every
    component that needs it.
    """

    config: FeedbackConfig
    queue: FeedbackQueue = field(default_factory=FeedbackQueue)
    registry: ConnectionRegistry = field(default_factory=ConnectionRegistry)


def create_context(config: FeedbackConfig | None = None) -> FeedbackContext:
    return FeedbackContext(config=config or FeedbackConfig.from_env())
