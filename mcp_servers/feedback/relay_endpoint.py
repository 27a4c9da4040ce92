from __future__ import annotations

import asyncio
import contextlib
import errno
import logging
import threading
from collections.abc import Coroutine
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from aiohttp import WSMsgType, web

from .context import FeedbackContext
from .errors import FeedbackTimeout, MalformedMessage, RelayClosed
from .messages import (
    BatchCompleted,
    DeleteRequested,
    FeedbackSubmitted,
    connected_message,
    feedback_deleted_message,
    feedback_received_message,
    parse_inbound,
    pending_status_message,
)

logger = logging.getLogger("mcp.feedback.relay")

WIDGET_PATH = Path(__file__).resolve().parent / "assets" / "widget.js"
WIDGET_URL_PLACEHOLDER = "__WEBSOCKET_URL__"
WS_PATH = "/ws"
MAX_WS_MESSAGE_BYTES = 32 * 1024 * 1024

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


@web.middleware
async def _cors_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    if request.method == "OPTIONS":
        resp: web.StreamResponse = web.Response(status=200)
    else:
        try:
            resp = await handler(request)
        except web.HTTPException as exc:
            exc.headers.update(CORS_HEADERS)
            raise
    if not resp.prepared:
        resp.headers.update(CORS_HEADERS)
    return resp


@dataclass(slots=True, eq=False)
class BatchListener:
    connections: set[str]
    future: Future = field(default_factory=Future)


class RelayEndpoint:
    """The single network listener of the owning instance.

    One aiohttp application serves both the HTTP surface (widget script, status,
    queue read/delete, broadcast) and the /ws duplex channel used by browser
    widgets. The server runs on its own daemon thread with a private asyncio
    loop; the public methods below are synchronous and safe to call from tool
    worker threads.
    """

    def __init__(self, ctx: FeedbackContext, *, widget_path: Path | None = None) -> None:
        self.ctx = ctx
        self.config = ctx.config
        self._queue = ctx.queue
        self._registry = ctx.registry
        self._widget_path = widget_path or WIDGET_PATH

        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stopping: asyncio.Event | None = None
        self._listening = False
        self._bind_error: OSError | None = None
        self._batch_listeners: list[BatchListener] = []

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def start(self, *, wait_timeout: float = 5.0) -> bool:
        """Try to bind the shared port. Returns True when this process now listens."""
        if self._thread is not None and self._thread.is_alive():
            return self.listening

        self._ready.clear()
        t = threading.Thread(target=self._run_thread, name="feedback-relay", daemon=True)
        self._thread = t
        t.start()

        if not self._ready.wait(timeout=max(0.05, float(wait_timeout))):
            logger.error("relay did not finish binding within %.1fs", wait_timeout)
            self.stop(timeout=1.0)
            return False
        return self.listening

    def stop(self, *, timeout: float = 2.0) -> None:
        loop = self._loop
        stopping = self._stopping
        if loop is not None and stopping is not None:
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(stopping.set)

        with self._lock:
            listeners = list(self._batch_listeners)
            self._batch_listeners.clear()
        for listener in listeners:
            if not listener.future.done():
                listener.future.set_exception(RelayClosed())

        t = self._thread
        if t is not None:
            t.join(timeout=timeout)
            if t.is_alive():
                logger.warning("relay thread still running after %.1fs", timeout)

    @property
    def listening(self) -> bool:
        with self._lock:
            return self._listening

    @property
    def bind_error(self) -> OSError | None:
        with self._lock:
            return self._bind_error

    @property
    def port_conflict(self) -> bool:
        err = self.bind_error
        return err is not None and getattr(err, "errno", None) == errno.EADDRINUSE

    # ─────────────────────────────────────────────────────────────────────────
    # Synchronous facade (tool worker threads)
    # ─────────────────────────────────────────────────────────────────────────

    def status(self) -> dict[str, int]:
        return {"connectedCount": len(self._registry), "pendingCount": len(self._queue)}

    def wait_one(self, timeout: float) -> dict[str, Any]:
        had_pending = len(self._queue) > 0
        item = self._queue.wait_one(timeout)
        if had_pending:
            self._notify_changed()
        return item

    def read_and_maybe_clear(self, clear: bool) -> list[dict[str, Any]]:
        items = self._queue.drain(clear)
        if clear and items:
            self._notify_changed()
        return items

    def summarize(self) -> dict[str, Any]:
        return self._queue.summarize()

    def delete(self, item_id: str) -> bool:
        deleted = self._queue.delete_by_id(item_id)
        if deleted:
            self._notify_changed()
        return deleted

    def broadcast(self, message: dict[str, Any], *, timeout: float = 5.0) -> int:
        fut = self._submit(self._registry.broadcast(message))
        if fut is None:
            return 0
        try:
            return int(fut.result(timeout=timeout))
        except FutureTimeoutError:
            logger.warning("broadcast did not complete within %.1fs", timeout)
            return 0

    def open_batch(self) -> BatchListener:
        """Register a completion listener bound to the connections open right now.

        Register before broadcasting the batch request so an early Done is not lost.
        """
        listener = BatchListener(connections=self._registry.ids())
        with self._lock:
            self._batch_listeners.append(listener)
        return listener

    def wait_for_batch(self, listener: BatchListener, timeout: float) -> list[dict[str, Any]]:
        """Block until the batch completes; the queue is snapshotted and cleared with it."""
        try:
            return listener.future.result(timeout=max(0.0, float(timeout)))
        except FutureTimeoutError:
            with self._lock:
                still_waiting = listener in self._batch_listeners
                if still_waiting:
                    self._batch_listeners.remove(listener)
            if still_waiting:
                raise FeedbackTimeout("Timeout waiting for feedback") from None
            return listener.future.result()

    # ─────────────────────────────────────────────────────────────────────────
    # Loop bridging
    # ─────────────────────────────────────────────────────────────────────────

    def _submit(self, coro: Coroutine[Any, Any, Any]) -> Future | None:
        loop = self._loop
        if loop is None or loop.is_closed() or not self.listening:
            coro.close()
            return None
        try:
            return asyncio.run_coroutine_threadsafe(coro, loop)
        except RuntimeError:
            coro.close()
            return None

    def _notify_changed(self) -> None:
        self._submit(self._broadcast_pending_status())

    async def _broadcast_pending_status(self) -> int:
        return await self._registry.broadcast_pending_status(self._queue.summarize())

    # ─────────────────────────────────────────────────────────────────────────
    # Server (relay thread)
    # ─────────────────────────────────────────────────────────────────────────

    def _run_thread(self) -> None:
        try:
            asyncio.run(self._run_async())
        finally:
            self._ready.set()

    def _build_app(self) -> web.Application:
        app = web.Application(middlewares=[_cors_middleware])
        app.router.add_get("/widget.js", self._handle_widget)
        app.router.add_get("/status", self._handle_status)
        app.router.add_get("/feedback", self._handle_get_feedback)
        app.router.add_get("/pending-summary", self._handle_pending_summary)
        app.router.add_delete("/feedback/{item_id}", self._handle_delete_feedback)
        app.router.add_post("/broadcast", self._handle_broadcast)
        app.router.add_get(WS_PATH, self._handle_ws)
        return app

    async def _run_async(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._stopping = asyncio.Event()

        runner = web.AppRunner(self._build_app(), access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self.config.host, self.config.port)
        try:
            await site.start()
        except OSError as exc:
            with self._lock:
                self._bind_error = exc
            await runner.cleanup()
            self._ready.set()
            return

        with self._lock:
            self._listening = True
            self._bind_error = None
        self._ready.set()
        logger.info("relay listening on %s (widget at %s)", self.config.base_url, self.config.widget_url)

        try:
            await self._stopping.wait()
        finally:
            with self._lock:
                self._listening = False
            await self._registry.close_all()
            await runner.cleanup()
            logger.info("relay closed")

    # ─────────────────────────────────────────────────────────────────────────
    # HTTP surface
    # ─────────────────────────────────────────────────────────────────────────

    async def _handle_widget(self, request: web.Request) -> web.Response:
        try:
            content = self._widget_path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("widget asset unreadable: %s", exc)
            return web.Response(status=500, text="Error loading widget")
        body = content.replace(WIDGET_URL_PLACEHOLDER, self.config.ws_url)
        return web.Response(text=body, content_type="application/javascript")

    async def _handle_status(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "running",
                "connectedClients": len(self._registry),
                "pendingFeedback": len(self._queue),
            }
        )

    async def _handle_get_feedback(self, request: web.Request) -> web.Response:
        clear = str(request.query.get("clear", "true")).strip().lower() != "false"
        items = self._queue.drain(clear)
        if clear and items:
            await self._broadcast_pending_status()
        return web.json_response({"feedback": items})

    async def _handle_pending_summary(self, request: web.Request) -> web.Response:
        return web.json_response(self._queue.summarize())

    async def _handle_delete_feedback(self, request: web.Request) -> web.Response:
        item_id = request.match_info["item_id"]
        deleted = self._queue.delete_by_id(item_id)
        if deleted:
            logger.info("deleted feedback id=%s", item_id)
            await self._broadcast_pending_status()
        return web.json_response(
            {"success": deleted, "message": "Feedback deleted" if deleted else "Feedback not found"},
            status=200 if deleted else 404,
        )

    async def _handle_broadcast(self, request: web.Request) -> web.Response:
        try:
            message = await request.json()
        except ValueError:
            return web.json_response({"error": "Invalid JSON"}, status=400)
        if not isinstance(message, dict):
            return web.json_response({"error": "Invalid JSON"}, status=400)
        count = await self._registry.broadcast(message)
        return web.json_response({"success": True, "clientCount": count})

    # ─────────────────────────────────────────────────────────────────────────
    # Duplex channel
    # ─────────────────────────────────────────────────────────────────────────

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(max_msg_size=MAX_WS_MESSAGE_BYTES)
        await ws.prepare(request)

        conn_id = self._registry.add(ws)
        logger.info("client connected (%s). Total: %d", conn_id, len(self._registry))
        try:
            await self._registry.send(ws, connected_message())
            await self._registry.send(ws, pending_status_message(self._queue.summarize()))
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._on_message(conn_id, ws, msg.data)
                elif msg.type == WSMsgType.BINARY:
                    await self._on_message(conn_id, ws, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("channel error on %s: %s", conn_id, ws.exception())
                    break
        finally:
            self._registry.remove(conn_id)
            logger.info("client disconnected (%s). Total: %d", conn_id, len(self._registry))
        return ws

    async def _on_message(self, conn_id: str, ws: web.WebSocketResponse, raw: str | bytes) -> None:
        try:
            msg = parse_inbound(raw)
        except MalformedMessage as exc:
            logger.warning("dropping malformed message from %s: %s", conn_id, exc)
            return

        if isinstance(msg, FeedbackSubmitted):
            item, delivered = self._queue.submit(msg.payload)
            logger.info("received feedback id=%s (%s)", item.get("id"), "delivered" if delivered else "queued")
            await self._registry.send(ws, feedback_received_message(item.get("id")))
            await self._broadcast_pending_status()
        elif isinstance(msg, DeleteRequested):
            deleted = self._queue.delete_by_id(msg.id)
            if deleted:
                logger.info("deleted feedback id=%s", msg.id)
                await self._broadcast_pending_status()
            await self._registry.send(ws, feedback_deleted_message(msg.id, deleted))
        elif isinstance(msg, BatchCompleted):
            await self._complete_batch(conn_id, msg)
        else:
            logger.debug("ignoring message type=%s from %s", msg.type, conn_id)

    async def _complete_batch(self, conn_id: str, msg: BatchCompleted) -> None:
        with self._lock:
            matched = [lst for lst in self._batch_listeners if conn_id in lst.connections]
            for lst in matched:
                self._batch_listeners.remove(lst)
        if not matched:
            logger.debug("batch complete from %s with no listener", conn_id)
            return

        items = self._queue.drain(clear=True)
        logger.info("batch complete from %s: %d item(s), widget counted %d", conn_id, len(items), msg.count)
        for lst in matched:
            if not lst.future.done():
                lst.future.set_result(list(items))
        if items:
            await self._broadcast_pending_status()
