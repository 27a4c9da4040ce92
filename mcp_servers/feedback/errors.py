"""Error taxonomy for the feedback relay.

NotFound is deliberately absent: deleting an unknown id is a boolean result.
"""

from __future__ import annotations


class FeedbackError(Exception):
    pass


class FeedbackTimeout(FeedbackError):
    def __init__(self, message: str = "Timeout waiting for browser feedback") -> None:
        super().__init__(message)


class RelayUnreachable(FeedbackError):
    """The owning instance could not be reached from a proxy."""


class RelayClosed(FeedbackError):
    def __init__(self, message: str = "Feedback server is shutting down") -> None:
        super().__init__(message)


class MalformedMessage(FeedbackError):
    pass
