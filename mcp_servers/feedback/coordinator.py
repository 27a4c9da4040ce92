from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from .context import FeedbackContext
from .errors import FeedbackTimeout, RelayClosed, RelayUnreachable
from .http_client import RelayClient
from .messages import request_annotation_message, request_multiple_annotations_message
from .relay_endpoint import RelayEndpoint

logger = logging.getLogger("mcp.feedback.coordinator")

OWNER = "owner"
PROXY = "proxy"

DEFAULT_BATCH_MESSAGE = "Submit all your feedback, then click 'Done' when finished."
DEFAULT_ANNOTATION_MESSAGE = "Please annotate the issue you'd like to report."
PROXY_NOTE = "Status fetched from running server (this MCP instance is proxying)"
PROXY_STATUS_ERROR = "Could not connect to feedback server. Is it running?"


@dataclass(slots=True)
class BatchResult:
    """Outcome of a multi-feedback collection.

    `clients` is 0 when nobody was connected and no request was sent;
    `timed_out` is only set by the polling (proxy) path when nothing arrived.
    """

    items: list[dict[str, Any]] = field(default_factory=list)
    clients: int = 0
    timed_out: bool = False


class InstanceCoordinator:
    """Decides once at startup whether this process owns the relay or proxies to it.

    Owner: the bind succeeded and every operation goes straight to the in-process
    endpoint. Proxy: the port is held by a sibling and every operation becomes an
    HTTP call against it. There is no re-election; a proxy stays a proxy.
    """

    def __init__(
        self,
        ctx: FeedbackContext,
        *,
        endpoint: RelayEndpoint | None = None,
        client: RelayClient | None = None,
    ) -> None:
        self.ctx = ctx
        self.config = ctx.config
        self._endpoint = endpoint or RelayEndpoint(ctx)
        self._client = client or RelayClient(ctx.config)
        self._role: str | None = None
        self._stop = threading.Event()

    @property
    def role(self) -> str | None:
        return self._role

    @property
    def is_owner(self) -> bool:
        return self._role == OWNER

    def start(self) -> str:
        if self._role is not None:
            return self._role

        if self._endpoint.start():
            self._role = OWNER
            return self._role

        self._role = PROXY
        err = self._endpoint.bind_error
        if self._endpoint.port_conflict:
            logger.info(
                "port %d is already in use by another instance; tool calls will proxy to it",
                self.config.port,
            )
        else:
            logger.error("relay failed to bind %s: %s; tool calls will proxy", self.config.base_url, err)
        return self._role

    def shutdown(self) -> None:
        """Release blocked waits and, when owning, close connections and the listener."""
        self._stop.set()
        self.ctx.queue.close()
        if self.is_owner:
            self._endpoint.stop(timeout=self.config.shutdown_grace)

    # ─────────────────────────────────────────────────────────────────────────
    # Operations
    # ─────────────────────────────────────────────────────────────────────────

    def connection_status(self) -> dict[str, Any]:
        base = {"serverUrl": self.config.base_url, "widgetUrl": self.config.widget_url, "role": self._role}
        if self.is_owner:
            st = self._endpoint.status()
            return {
                "connected": st["connectedCount"] > 0,
                "clientCount": st["connectedCount"],
                "pendingCount": st["pendingCount"],
                **base,
            }
        try:
            st = self._client.status()
        except RelayUnreachable as exc:
            logger.warning("status check failed: %s", exc)
            return {"connected": False, "clientCount": 0, **base, "error": PROXY_STATUS_ERROR}
        clients = int(st.get("connectedClients") or 0)
        return {
            "connected": clients > 0,
            "clientCount": clients,
            "pendingCount": int(st.get("pendingFeedback") or 0),
            **base,
            "note": PROXY_NOTE,
        }

    def get_pending(self, clear: bool = True) -> list[dict[str, Any]]:
        if self.is_owner:
            return self._endpoint.read_and_maybe_clear(clear)
        return self._client.read_and_maybe_clear(clear)

    def preview(self) -> dict[str, Any]:
        if self.is_owner:
            return self._endpoint.summarize()
        return self._client.pending_summary()

    def delete(self, item_id: str) -> bool:
        if self.is_owner:
            return self._endpoint.delete(item_id)
        return self._client.delete(item_id)

    def request_annotation(self, message: str | None = None) -> int:
        """Push an annotation prompt; returns how many browsers received it."""
        msg = request_annotation_message(message or DEFAULT_ANNOTATION_MESSAGE)
        if self.is_owner:
            if self._endpoint.status()["connectedCount"] == 0:
                return 0
            return self._endpoint.broadcast(msg)
        return self._client.broadcast(msg)

    def wait_for_feedback(self, timeout: float | None = None) -> dict[str, Any]:
        timeout = self._timeout(timeout)
        if self.is_owner:
            return self._endpoint.wait_one(timeout)
        return self._poll_for_one(timeout)

    def wait_for_multiple(self, message: str | None = None, timeout: float | None = None) -> BatchResult:
        timeout = self._timeout(timeout)
        request = request_multiple_annotations_message(message or DEFAULT_BATCH_MESSAGE)
        if self.is_owner:
            return self._collect_batch_owner(request, timeout)
        return self._collect_batch_proxy(request, timeout)

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _timeout(self, timeout: float | None) -> float:
        try:
            value = float(timeout) if timeout is not None else 0.0
        except (TypeError, ValueError):
            value = 0.0
        return value if value > 0 else self.config.default_wait_timeout

    def _sleep(self, seconds: float) -> None:
        if self._stop.wait(seconds):
            raise RelayClosed()

    def _poll_for_one(self, timeout: float) -> dict[str, Any]:
        # Claim the oldest remote item by deleting it; whoever deletes it owns it.
        # Do not switch this to a clear=true read: that drops every item behind the first.
        deadline = time.monotonic() + timeout
        while True:
            items = self._client.read_and_maybe_clear(False)
            for item in items[:1]:
                item_id = item.get("id")
                if not isinstance(item_id, str) or not item_id:
                    logger.warning("remote feedback item has no id; taking the whole queue")
                    taken = self._client.read_and_maybe_clear(True)
                    if taken:
                        return taken[0]
                elif self._client.delete(item_id):
                    return item
            if time.monotonic() >= deadline:
                raise FeedbackTimeout()
            self._sleep(min(self.config.poll_interval, max(0.0, deadline - time.monotonic())))

    def _collect_batch_owner(self, request: dict[str, Any], timeout: float) -> BatchResult:
        if self._endpoint.status()["connectedCount"] == 0:
            return BatchResult(clients=0)

        self._endpoint.read_and_maybe_clear(True)
        listener = self._endpoint.open_batch()
        clients = self._endpoint.broadcast(request)
        logger.info("requested multiple annotations from %d browser(s)", clients)
        items = self._endpoint.wait_for_batch(listener, timeout)
        return BatchResult(items=items, clients=max(clients, 1))

    def _collect_batch_proxy(self, request: dict[str, Any], timeout: float) -> BatchResult:
        st = self._client.status()
        if int(st.get("connectedClients") or 0) == 0:
            return BatchResult(clients=0)

        self._client.read_and_maybe_clear(True)
        clients = self._client.broadcast(request)
        logger.info("requested multiple annotations from %d browser(s) via the owning instance", clients)

        # No Done signal crosses processes: some items followed by a quiet
        # period counts as completion.
        collected: list[dict[str, Any]] = []
        start = time.monotonic()
        last_item_at = start
        while time.monotonic() - start < timeout:
            items = self._client.read_and_maybe_clear(True)
            now = time.monotonic()
            if items:
                collected.extend(items)
                last_item_at = now
            elif collected and now - last_item_at > self.config.batch_idle_timeout:
                break
            self._sleep(self.config.poll_interval)

        return BatchResult(items=collected, clients=max(clients, 1), timed_out=not collected)
