from __future__ import annotations

import json
import socket

import pytest

from mcp_servers.feedback.config import FeedbackConfig
from mcp_servers.feedback.main import McpServer
from mcp_servers.feedback.server.contract import SERVER_INFO, tools_list
from mcp_servers.feedback.server.handlers.feedback import NO_CLIENTS, NO_PENDING, split_screenshot

EXPECTED_TOOLS = {
    "install_widget",
    "uninstall_widget",
    "get_widget_snippet",
    "wait_for_browser_feedback",
    "get_pending_feedback",
    "preview_pending_feedback",
    "delete_pending_feedback",
    "wait_for_multiple_feedback",
    "get_connection_status",
    "request_annotation",
    "open_in_browser",
}


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


@pytest.fixture()
def server():
    srv = McpServer(FeedbackConfig(port=_free_port()))
    assert srv.start() == "owner"
    try:
        yield srv
    finally:
        srv.shutdown("test finished")


def _queue(srv: McpServer):  # noqa: ANN202
    return srv.coordinator.ctx.queue


def test_tool_list_matches_registry(server: McpServer) -> None:
    names = {t["name"] for t in tools_list()}
    assert names == EXPECTED_TOOLS
    assert set(server.registry.tool_names) == EXPECTED_TOOLS
    for tool in tools_list():
        assert tool["inputSchema"]["type"] == "object"


def test_initialize_and_list_over_stdio(server: McpServer, capsys: pytest.CaptureFixture[str]) -> None:
    server.dispatch({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": "2024-11-05"}})
    server.dispatch({"jsonrpc": "2.0", "method": "notifications/initialized"})
    server.dispatch({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
    server.dispatch({"jsonrpc": "2.0", "id": 3, "method": "ping"})
    server.dispatch({"jsonrpc": "2.0", "id": 4, "method": "resources/list"})

    lines = [json.loads(ln) for ln in capsys.readouterr().out.splitlines() if ln.strip()]
    assert [m["id"] for m in lines] == [1, 2, 3, 4]
    assert lines[0]["result"]["protocolVersion"] == "2024-11-05"
    assert lines[0]["result"]["serverInfo"] == SERVER_INFO
    assert len(lines[1]["result"]["tools"]) == len(EXPECTED_TOOLS)
    assert lines[2]["result"] == {}
    assert lines[3]["error"]["code"] == -32601


def test_unknown_tool_is_an_error_result(server: McpServer) -> None:
    res = server.call_tool("does_not_exist", {})
    assert res.is_error is True
    assert "Unknown tool" in res.first_text


def test_connection_status(server: McpServer) -> None:
    res = server.call_tool("get_connection_status", {})
    data = json.loads(res.first_text)
    assert data["connected"] is False
    assert data["clientCount"] == 0
    assert data["role"] == "owner"
    assert data["widgetUrl"].endswith("/widget.js")


def test_pending_feedback_flow(server: McpServer) -> None:
    assert server.call_tool("get_pending_feedback", {}).first_text == NO_PENDING
    assert server.call_tool("preview_pending_feedback", {}).first_text == NO_PENDING

    _queue(server).submit({"id": "a", "description": "broken", "screenshot": "data:image/jpeg;base64,QUJD"})
    preview = json.loads(server.call_tool("preview_pending_feedback", {}).first_text)
    assert preview["count"] == 1
    assert "screenshot" not in preview["items"][0]

    peek = server.call_tool("get_pending_feedback", {"clear": False})
    assert len(_queue(server)) == 1
    content = peek.to_content_list()
    assert content[1] == {"type": "image", "data": "QUJD", "mimeType": "image/jpeg"}
    assert "QUJD" not in content[0]["text"]

    server.call_tool("get_pending_feedback", {})
    assert len(_queue(server)) == 0


def test_delete_pending_feedback(server: McpServer) -> None:
    assert server.call_tool("delete_pending_feedback", {}).first_text == "Error: id is required"
    _queue(server).submit({"id": "a"})
    assert server.call_tool("delete_pending_feedback", {"id": "a"}).first_text == "Feedback a deleted successfully."
    assert server.call_tool("delete_pending_feedback", {"id": "a"}).first_text == "Feedback a not found."


def test_wait_for_browser_feedback(server: McpServer) -> None:
    _queue(server).submit({"id": "ready", "description": "now"})
    res = server.call_tool("wait_for_browser_feedback", {"timeout_seconds": 1})
    assert res.is_error is False
    assert json.loads(res.first_text)["id"] == "ready"

    res = server.call_tool("wait_for_browser_feedback", {"timeout_seconds": 0.2})
    assert res.is_error is True
    assert res.first_text == "Timeout waiting for browser feedback"


def test_prompts_without_clients(server: McpServer) -> None:
    assert server.call_tool("request_annotation", {"message": "look here"}).first_text == NO_CLIENTS
    assert server.call_tool("wait_for_multiple_feedback", {"timeout_seconds": 1}).first_text == NO_CLIENTS


def test_widget_snippet_uses_configured_port(server: McpServer) -> None:
    text = server.call_tool("get_widget_snippet", {}).first_text
    assert f'<script src="{server.config.widget_url}"></script>' in text


def test_split_screenshot_leaves_plain_values() -> None:
    item = {"id": "a", "screenshot": None}
    assert split_screenshot(item) == (item, None)
    light, image = split_screenshot({"id": "b", "screenshot": "data:image/png;base64,AAAA"})
    assert image == ("AAAA", "image/png")
    assert light["screenshot"].startswith("<attached")


def test_shutdown_rejects_new_tool_calls(capsys: pytest.CaptureFixture[str]) -> None:
    srv = McpServer(FeedbackConfig(port=_free_port()))
    srv.start()
    srv.shutdown("test")
    srv.dispatch({"jsonrpc": "2.0", "id": 9, "method": "tools/call", "params": {"name": "get_connection_status"}})
    out = [json.loads(ln) for ln in capsys.readouterr().out.splitlines() if ln.strip()]
    assert out[-1]["error"]["code"] == -32603


def test_proxy_tools_degrade_when_owner_is_gone() -> None:
    port = _free_port()
    owner = McpServer(FeedbackConfig(port=port))
    proxy = McpServer(FeedbackConfig(port=port, http_timeout=1.0, poll_interval=0.05))
    assert owner.start() == "owner"
    try:
        assert proxy.start() == "proxy"
        owner.shutdown("owner exits")

        calls = [
            ("get_pending_feedback", {}),
            ("preview_pending_feedback", {}),
            ("delete_pending_feedback", {"id": "a"}),
            ("wait_for_browser_feedback", {"timeout_seconds": 1}),
            ("wait_for_multiple_feedback", {"timeout_seconds": 1}),
            ("request_annotation", {"message": "look"}),
        ]
        for name, args in calls:
            res = proxy.call_tool(name, args)
            assert res.is_error is True, name
            assert "Is the feedback server running?" in res.first_text, name

        status = json.loads(proxy.call_tool("get_connection_status", {}).first_text)
        assert status["connected"] is False
        assert status["role"] == "proxy"
    finally:
        proxy.shutdown("test finished")
        owner.shutdown("test finished")
