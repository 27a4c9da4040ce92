from __future__ import annotations

import asyncio
import json
import socket
import threading
import time
import urllib.request
from dataclasses import replace
from typing import Any

import pytest

from mcp_servers.feedback.config import FeedbackConfig
from mcp_servers.feedback.context import create_context
from mcp_servers.feedback.coordinator import OWNER, PROXY, InstanceCoordinator
from mcp_servers.feedback.errors import FeedbackTimeout, RelayClosed, RelayUnreachable
from mcp_servers.feedback.http_client import RelayClient

websockets = pytest.importorskip("websockets")


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


async def _recv_type(ws: Any, mtype: str) -> dict[str, Any]:
    while True:
        msg = json.loads(await asyncio.wait_for(ws.recv(), timeout=5))
        if msg.get("type") == mtype:
            return msg


def _config(port: int) -> FeedbackConfig:
    return FeedbackConfig(port=port, poll_interval=0.05, batch_idle_timeout=0.5, http_timeout=2.0)


@pytest.fixture()
def pair():
    port = _free_port()
    owner = InstanceCoordinator(create_context(_config(port)))
    proxy = InstanceCoordinator(create_context(_config(port)))
    assert owner.start() == OWNER
    assert proxy.start() == PROXY
    try:
        yield owner, proxy
    finally:
        proxy.shutdown()
        owner.shutdown()


def test_second_instance_proxies_with_identical_status(pair) -> None:  # noqa: ANN001
    owner, proxy = pair
    owner.ctx.queue.submit({"id": "a"})

    async def _main() -> None:
        async with websockets.connect(owner.config.ws_url, ping_interval=None) as ws:
            await _recv_type(ws, "pending_status")
            with urllib.request.urlopen(f"{owner.config.base_url}/status", timeout=3) as resp:
                direct = json.loads(resp.read())
            via_proxy = await asyncio.to_thread(proxy.connection_status)
            via_owner = await asyncio.to_thread(owner.connection_status)

            assert via_proxy["clientCount"] == direct["connectedClients"] == 1
            assert via_proxy["pendingCount"] == direct["pendingFeedback"] == 1
            assert via_proxy["connected"] is True
            assert via_proxy["role"] == PROXY
            assert "note" in via_proxy
            assert via_owner["clientCount"] == 1
            assert via_owner["role"] == OWNER

    asyncio.run(_main())


def test_proxy_read_preview_delete(pair) -> None:  # noqa: ANN001
    owner, proxy = pair
    owner.ctx.queue.submit({"id": "a", "description": "first"})
    owner.ctx.queue.submit({"id": "b", "description": "second"})

    assert proxy.preview()["count"] == 2
    assert [it["id"] for it in proxy.get_pending(clear=False)] == ["a", "b"]
    assert proxy.delete("a") is True
    assert proxy.delete("a") is False
    assert [it["id"] for it in proxy.get_pending(clear=True)] == ["b"]
    assert len(owner.ctx.queue) == 0


def test_proxy_wait_claims_only_the_oldest_item(pair) -> None:  # noqa: ANN001
    owner, proxy = pair
    owner.ctx.queue.submit({"id": "a"})
    owner.ctx.queue.submit({"id": "b"})

    assert proxy.wait_for_feedback(2.0)["id"] == "a"
    assert [it["id"] for it in owner.ctx.queue.drain(clear=False)] == ["b"]


def test_proxy_wait_picks_up_later_submission(pair) -> None:  # noqa: ANN001
    owner, proxy = pair
    got: list[dict[str, Any]] = []
    t = threading.Thread(target=lambda: got.append(proxy.wait_for_feedback(3.0)), daemon=True)
    t.start()
    time.sleep(0.2)
    owner.ctx.queue.submit({"id": "late"})
    t.join(timeout=3.0)
    assert got and got[0]["id"] == "late"
    assert len(owner.ctx.queue) == 0


def test_proxy_wait_times_out(pair) -> None:  # noqa: ANN001
    _owner, proxy = pair
    t0 = time.monotonic()
    with pytest.raises(FeedbackTimeout):
        proxy.wait_for_feedback(0.3)
    assert time.monotonic() - t0 >= 0.29


def test_owner_wait_times_out(pair) -> None:  # noqa: ANN001
    owner, _proxy = pair
    with pytest.raises(FeedbackTimeout):
        owner.wait_for_feedback(0.2)


def test_request_annotation_without_clients(pair) -> None:  # noqa: ANN001
    owner, proxy = pair
    assert owner.request_annotation("look") == 0
    assert proxy.request_annotation("look") == 0


def test_batch_without_clients_sends_nothing(pair) -> None:  # noqa: ANN001
    owner, proxy = pair
    assert owner.wait_for_multiple("go", 1.0).clients == 0
    assert proxy.wait_for_multiple("go", 1.0).clients == 0


def test_owner_batch_completes_on_done(pair) -> None:  # noqa: ANN001
    owner, _proxy = pair
    owner.ctx.queue.submit({"id": "stale"})

    async def _main() -> Any:
        async with websockets.connect(owner.config.ws_url, ping_interval=None) as ws:
            await _recv_type(ws, "pending_status")
            task = asyncio.create_task(asyncio.to_thread(owner.wait_for_multiple, "report all", 5.0))
            req = await _recv_type(ws, "request_multiple_annotations")
            assert req["message"] == "report all"
            await ws.send(json.dumps({"type": "feedback", "payload": {"id": "m1"}}))
            await _recv_type(ws, "feedback_received")
            await ws.send(json.dumps({"type": "feedback_batch_complete", "count": 1}))
            return await asyncio.wait_for(task, timeout=5)

    batch = asyncio.run(_main())
    assert [it["id"] for it in batch.items] == ["m1"]
    assert batch.clients == 1
    assert len(owner.ctx.queue) == 0


def test_proxy_batch_ends_after_quiet_period(pair) -> None:  # noqa: ANN001
    owner, proxy = pair

    async def _main() -> Any:
        async with websockets.connect(owner.config.ws_url, ping_interval=None) as ws:
            await _recv_type(ws, "pending_status")
            task = asyncio.create_task(asyncio.to_thread(proxy.wait_for_multiple, None, 10.0))
            await _recv_type(ws, "request_multiple_annotations")
            for n in range(2):
                await ws.send(json.dumps({"type": "feedback", "payload": {"id": f"p{n}"}}))
                await _recv_type(ws, "feedback_received")
            return await asyncio.wait_for(task, timeout=8)

    t0 = time.monotonic()
    batch = asyncio.run(_main())
    assert sorted(it["id"] for it in batch.items) == ["p0", "p1"]
    assert batch.timed_out is False
    assert time.monotonic() - t0 < 8


def test_proxy_batch_times_out_empty(pair) -> None:  # noqa: ANN001
    owner, proxy = pair

    async def _main() -> Any:
        async with websockets.connect(owner.config.ws_url, ping_interval=None) as ws:
            await _recv_type(ws, "pending_status")
            return await asyncio.to_thread(proxy.wait_for_multiple, None, 0.5)

    batch = asyncio.run(_main())
    assert batch.items == []
    assert batch.timed_out is True


def test_proxy_does_not_take_over_when_owner_exits(pair) -> None:  # noqa: ANN001
    owner, proxy = pair
    owner.shutdown()

    status = proxy.connection_status()
    assert status["connected"] is False
    assert "error" in status
    assert proxy.role == PROXY
    with pytest.raises(RelayUnreachable):
        proxy.get_pending()


def test_shutdown_releases_proxy_poll(pair) -> None:  # noqa: ANN001
    _owner, proxy = pair
    errors: list[BaseException] = []

    def _wait() -> None:
        try:
            proxy.wait_for_feedback(30.0)
        except RelayClosed as exc:
            errors.append(exc)

    t = threading.Thread(target=_wait, daemon=True)
    t.start()
    time.sleep(0.2)
    proxy.shutdown()
    t.join(timeout=3.0)
    assert len(errors) == 1


def test_relay_client_unreachable() -> None:
    client = RelayClient(replace(FeedbackConfig(), port=_free_port(), http_timeout=1.0))
    with pytest.raises(RelayUnreachable):
        client.status()
    with pytest.raises(RelayUnreachable):
        client.broadcast({"type": "request_annotation", "message": "x"})
