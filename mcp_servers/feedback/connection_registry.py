from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
import threading
from typing import Any

from .messages import pending_status_message

logger = logging.getLogger("mcp.feedback.connections")


class ConnectionRegistry:
    """Live browser connections, keyed by a process-local connection id.

    Membership reflects openness on a best-effort basis: a connection that has
    gone half-closed stays registered until its handler exits, but sends to it
    are skipped and never raise.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        # NOTE: typed as Any so the registry does not depend on a specific
        # websocket response class (aiohttp in production, fakes in tests).
        self._connections: dict[str, Any] = {}

    def add(self, ws: Any) -> str:
        conn_id = f"conn-{next(self._ids)}"
        with self._lock:
            self._connections[conn_id] = ws
        return conn_id

    def remove(self, conn_id: str) -> None:
        with self._lock:
            self._connections.pop(conn_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def ids(self) -> set[str]:
        with self._lock:
            return set(self._connections)

    def snapshot(self) -> list[tuple[str, Any]]:
        with self._lock:
            return list(self._connections.items())

    # ─────────────────────────────────────────────────────────────────────────
    # Sending (must run on the relay event loop)
    # ─────────────────────────────────────────────────────────────────────────

    @staticmethod
    async def send(ws: Any, payload: dict[str, Any]) -> bool:
        if getattr(ws, "closed", True):
            return False
        try:
            await ws.send_str(json.dumps(payload, ensure_ascii=False))
        except Exception as exc:  # noqa: BLE001
            logger.debug("send failed: %s", exc)
            return False
        return True

    async def broadcast(self, payload: dict[str, Any]) -> int:
        """Send to every open connection; returns how many sends succeeded."""
        targets = [ws for _conn_id, ws in self.snapshot()]
        if not targets:
            return 0
        results = await asyncio.gather(*[self.send(ws, payload) for ws in targets], return_exceptions=True)
        return sum(1 for r in results if r is True)

    async def broadcast_pending_status(self, summary: dict[str, Any]) -> int:
        return await self.broadcast(pending_status_message(summary))

    async def close_all(self) -> None:
        for _conn_id, ws in self.snapshot():
            with contextlib.suppress(Exception):
                await ws.close()
