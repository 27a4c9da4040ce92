from __future__ import annotations

import threading
from collections import deque
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Any

from .errors import FeedbackTimeout, RelayClosed

SUMMARY_DESCRIPTION_LIMIT = 100


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def summarize_item(item: dict[str, Any]) -> dict[str, Any]:
    """Light projection of a feedback item (no screenshot, no logs)."""
    element = item.get("element")
    selector = element.get("selector") if isinstance(element, dict) else None
    description = item.get("description")
    return {
        "id": item.get("id"),
        "timestamp": item.get("timestamp") or item.get("receivedAt"),
        "description": description[:SUMMARY_DESCRIPTION_LIMIT] if isinstance(description, str) else "",
        "selector": selector if isinstance(selector, str) else "",
    }


class FeedbackQueue:
    """Ordered store of pending feedback plus the callers blocked waiting for it.

    Invariants:
    - A submitted item goes to exactly one place: the oldest waiter, or storage.
    - A waiter is removed either by resolution or by its own timeout, never both.

    Every mutation happens under one mutex, so the queue is safe to share between
    the relay loop thread and tool worker threads. Broadcasting the new state is
    the caller's job; the queue only reports whether anything changed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: deque[dict[str, Any]] = deque()
        self._waiters: deque[Future] = deque()
        self._closed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def waiter_count(self) -> int:
        with self._lock:
            return len(self._waiters)

    # ─────────────────────────────────────────────────────────────────────────
    # Producer side
    # ─────────────────────────────────────────────────────────────────────────

    def submit(self, payload: dict[str, Any]) -> tuple[dict[str, Any], bool]:
        """Stamp and deliver an item.

        Returns (item, delivered) where delivered is True when a waiter took it
        and False when it was stored.
        """
        item = dict(payload)
        item["receivedAt"] = _now_iso()
        with self._lock:
            while self._waiters:
                fut = self._waiters.popleft()
                if fut.done():
                    continue
                fut.set_result(item)
                return item, True
            self._items.append(item)
        return item, False

    # ─────────────────────────────────────────────────────────────────────────
    # Consumer side
    # ─────────────────────────────────────────────────────────────────────────

    def take_one(self) -> dict[str, Any] | None:
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def wait_one(self, timeout: float) -> dict[str, Any]:
        """Return the oldest item, blocking up to `timeout` seconds for one to arrive."""
        with self._lock:
            if self._closed:
                raise RelayClosed()
            if self._items:
                return self._items.popleft()
            fut: Future = Future()
            self._waiters.append(fut)

        try:
            return fut.result(timeout=max(0.0, float(timeout)))
        except FutureTimeoutError:
            with self._lock:
                try:
                    self._waiters.remove(fut)
                    still_waiting = True
                except ValueError:
                    still_waiting = False
            if still_waiting:
                raise FeedbackTimeout() from None
            # submit() won the race against the deadline; the item is ours.
            return fut.result()

    def drain(self, clear: bool) -> list[dict[str, Any]]:
        with self._lock:
            snapshot = list(self._items)
            if clear:
                self._items.clear()
        return snapshot

    def delete_by_id(self, item_id: Any) -> bool:
        """Remove every pending item carrying `item_id`; True if any was removed."""
        with self._lock:
            kept = [item for item in self._items if item.get("id") != item_id]
            removed = len(kept) != len(self._items)
            if removed:
                self._items = deque(kept)
        return removed

    def summarize(self) -> dict[str, Any]:
        with self._lock:
            items = list(self._items)
        return {"count": len(items), "items": [summarize_item(it) for it in items]}

    def close(self) -> None:
        """Fail every outstanding waiter; used on process shutdown."""
        with self._lock:
            self._closed = True
            waiters = list(self._waiters)
            self._waiters.clear()
        for fut in waiters:
            if not fut.done():
                fut.set_exception(RelayClosed())
