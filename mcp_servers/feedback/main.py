"""
MCP server that relays annotated feedback from a browser widget to the assistant.

This module provides the entry point and the stdio JSON-RPC protocol handling.
Tool dispatch is handled via the registry in server/registry.py.
"""

from __future__ import annotations

import json
import logging
import os
import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import suppress
from typing import Any

from .config import FeedbackConfig
from .context import create_context
from .coordinator import InstanceCoordinator
from .errors import FeedbackError
from .server.contract import initialize_result, select_protocol, tools_list
from .server.redaction import redact_jsonrpc_for_log, redact_tool_arguments
from .server.registry import ToolRegistry, create_default_registry
from .server.types import ToolResult


def _log_level() -> int:
    level = getattr(logging, FeedbackConfig.from_env().log_level, None)
    return level if isinstance(level, int) else logging.INFO


logging.basicConfig(
    level=_log_level(),
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger("mcp.feedback")

__all__ = ["McpServer", "main"]

_write_lock = threading.Lock()


def _trace_enabled() -> bool:
    return os.environ.get("FEEDBACK_MCP_TRACE") == "1"


def _write_message(payload: dict[str, Any]) -> None:
    """Write JSON-RPC message to stdout."""
    line = (json.dumps(payload, ensure_ascii=False) + "\n").encode()
    if _trace_enabled():
        logger.info("send %s", redact_jsonrpc_for_log(payload))
    with _write_lock:
        sys.stdout.buffer.write(line)
        sys.stdout.buffer.flush()


def _read_message() -> dict[str, Any] | None:
    """Read JSON-RPC message from stdin. Returns None at EOF and {} for lines to skip."""
    line = sys.stdin.buffer.readline()
    if not line:
        return None
    line = line.strip()
    if not line:
        return {}
    try:
        msg = json.loads(line.decode())
    except ValueError as exc:
        logger.warning("ignoring unparseable frame: %s", exc)
        return {}
    if not isinstance(msg, dict):
        return {}
    if _trace_enabled():
        logger.info("recv %s", redact_jsonrpc_for_log(msg))
    return msg


class McpServer:
    """MCP server with registry-based tool dispatch on a worker pool."""

    def __init__(
        self,
        config: FeedbackConfig | None = None,
        *,
        coordinator: InstanceCoordinator | None = None,
        registry: ToolRegistry | None = None,
        max_workers: int = 16,
    ) -> None:
        self.config = config or FeedbackConfig.from_env()
        self.coordinator = coordinator or InstanceCoordinator(create_context(self.config))
        self.registry = registry or create_default_registry()
        # Blocking waits must not stop the transport from reading further requests.
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="feedback-tool")
        self._shutdown_lock = threading.Lock()
        self._shutting_down = False

    def start(self) -> str:
        role = self.coordinator.start()
        logger.info("browser feedback MCP ready (role=%s, widget=%s)", role, self.config.widget_url)
        return role

    def shutdown(self, reason: str, *, force_exit: bool = False) -> None:
        """Release waits and close the relay.

        With `force_exit`, a daemon timer ends the process after the grace period
        in case pool workers or relay I/O are still pending.
        """
        with self._shutdown_lock:
            if self._shutting_down:
                return
            self._shutting_down = True

        logger.info("shutting down: %s", reason)
        if force_exit:
            grace = self.config.shutdown_grace if self.coordinator.is_owner else 0.5
            timer = threading.Timer(grace, _force_exit, args=(grace,))
            timer.daemon = True
            timer.start()
        self.coordinator.shutdown()
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ─────────────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────────────

    def handle_initialize(self, request_id: Any, params: dict[str, Any] | None = None) -> None:
        requested = (params or {}).get("protocolVersion") if isinstance(params, dict) else None
        protocol = select_protocol(requested)
        _write_message({"jsonrpc": "2.0", "id": request_id, "result": initialize_result(protocol)})

    def handle_list_tools(self, request_id: Any) -> None:
        _write_message({"jsonrpc": "2.0", "id": request_id, "result": {"tools": tools_list()}})

    def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Run a tool and always return a result; no exception escapes."""
        logger.info("tool=%s args=%s", name, redact_tool_arguments(arguments))
        try:
            if not name:
                return ToolResult.error("Missing tool name")
            if not self.registry.has(name):
                return ToolResult.error(f"Unknown tool: {name}")
            return self.registry.dispatch(name, self.config, self.coordinator, arguments)
        except FeedbackError as exc:
            logger.info("tool=%s failed: %s", name, exc)
            return ToolResult.error(str(exc))
        except Exception as exc:
            logger.exception("tool_call_failed")
            return ToolResult.error(str(exc))

    def handle_call_tool(self, request_id: Any, name: str, arguments: dict[str, Any]) -> None:
        result = self.call_tool(name, arguments)
        _write_message(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {"content": result.to_content_list(), "isError": result.is_error},
            }
        )

    def dispatch(self, message: dict[str, Any]) -> None:
        """Dispatch incoming JSON-RPC message to appropriate handler."""
        if not message:
            return

        method = message.get("method")
        request_id = message.get("id")
        params = message.get("params") or {}

        if method == "initialize":
            self.handle_initialize(request_id, params)
        elif isinstance(method, str) and method.startswith("notifications/"):
            return
        elif method == "tools/list":
            self.handle_list_tools(request_id)
        elif method == "tools/call":
            name = params.get("name") if isinstance(params, dict) else None
            arguments = params.get("arguments") if isinstance(params, dict) else None
            if not isinstance(arguments, dict):
                arguments = {}
            try:
                self._executor.submit(self.handle_call_tool, request_id, name or "", arguments)
            except RuntimeError:
                # Pool already shut down.
                _write_message(
                    {
                        "jsonrpc": "2.0",
                        "id": request_id,
                        "error": {"code": -32603, "message": "Server is shutting down"},
                    }
                )
        elif method == "ping":
            _write_message({"jsonrpc": "2.0", "id": request_id, "result": {}})
        else:
            _write_message(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "error": {"code": -32601, "message": f"Method {method} not found"},
                }
            )


def _force_exit(grace: float) -> None:
    logger.warning("forcing exit after %.1fs", grace)
    os._exit(0)


def main() -> None:
    """Main entry point for MCP server."""
    server = McpServer()
    server.start()

    def _on_signal(signum: int, _frame: Any) -> None:
        server.shutdown(signal.Signals(signum).name, force_exit=True)
        raise SystemExit(0)

    for sig in (signal.SIGTERM, signal.SIGINT):
        with suppress(ValueError, OSError):
            signal.signal(sig, _on_signal)

    try:
        while True:
            message = _read_message()
            if message is None:
                break
            server.dispatch(message)
    finally:
        server.shutdown("stdin closed", force_exit=True)


if __name__ == "__main__":
    main()
