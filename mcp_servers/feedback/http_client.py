from __future__ import annotations

import json
import urllib.parse
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .config import FeedbackConfig
from .errors import RelayUnreachable


class RelayClient:
    """HTTP client for the relay surface served by the owning sibling process."""

    def __init__(self, config: FeedbackConfig) -> None:
        self.config = config

    def _request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        accept_status: tuple[int, ...] = (200,),
    ) -> tuple[int, Any]:
        url = f"{self.config.base_url}{path}"
        data = None
        headers = {"User-Agent": "browser-feedback-mcp/0.1"}
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = Request(url, data=data, method=method, headers=headers)
        try:
            with urlopen(req, timeout=self.config.http_timeout) as resp:
                status = resp.status
                raw = resp.read()
        except HTTPError as exc:
            status = exc.code
            raw = exc.read() if exc.fp is not None else b""
            if status not in accept_status:
                raise RelayUnreachable(f"{method} {path} returned HTTP {status}") from exc
        except (TimeoutError, URLError, OSError) as exc:
            raise RelayUnreachable(f"{method} {path} failed: {exc}") from exc

        if status not in accept_status:
            raise RelayUnreachable(f"{method} {path} returned HTTP {status}")
        try:
            return status, json.loads(raw.decode("utf-8") or "null")
        except ValueError as exc:
            raise RelayUnreachable(f"{method} {path} returned a non-JSON body") from exc

    # ─────────────────────────────────────────────────────────────────────────
    # Relay surface
    # ─────────────────────────────────────────────────────────────────────────

    def status(self) -> dict[str, Any]:
        _status, data = self._request("GET", "/status")
        if not isinstance(data, dict):
            raise RelayUnreachable("GET /status returned an unexpected body")
        return data

    def read_and_maybe_clear(self, clear: bool = True) -> list[dict[str, Any]]:
        flag = "true" if clear else "false"
        _status, data = self._request("GET", f"/feedback?clear={flag}")
        items = data.get("feedback") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise RelayUnreachable("GET /feedback returned an unexpected body")
        return [it for it in items if isinstance(it, dict)]

    def pending_summary(self) -> dict[str, Any]:
        _status, data = self._request("GET", "/pending-summary")
        if not isinstance(data, dict):
            raise RelayUnreachable("GET /pending-summary returned an unexpected body")
        return data

    def delete(self, item_id: str) -> bool:
        path = "/feedback/" + urllib.parse.quote(str(item_id), safe="")
        status, data = self._request("DELETE", path, accept_status=(200, 404))
        if status == 404:
            return False
        return bool(data.get("success")) if isinstance(data, dict) else False

    def broadcast(self, message: dict[str, Any]) -> int:
        _status, data = self._request("POST", "/broadcast", body=message)
        if not isinstance(data, dict):
            raise RelayUnreachable("POST /broadcast returned an unexpected body")
        try:
            return int(data.get("clientCount") or 0)
        except (TypeError, ValueError):
            return 0
