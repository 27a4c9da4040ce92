"""Redaction for trace logs.

Feedback payloads carry full-page screenshots and console logs; none of that
belongs in a log line. Strings are truncated and image blocks are replaced with
a short placeholder.
"""

from __future__ import annotations

import os
from typing import Any

_DEFAULT_MAX_CHARS = 512


def _max_chars() -> int:
    raw = (os.environ.get("FEEDBACK_MCP_TRACE_MAX_CHARS") or "").strip()
    try:
        return max(16, int(raw)) if raw else _DEFAULT_MAX_CHARS
    except ValueError:
        return _DEFAULT_MAX_CHARS


def truncate_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + f"… <truncated len={len(text)}>"


def _redact_any(value: Any, max_chars: int) -> Any:
    if isinstance(value, dict):
        if value.get("type") == "image" and isinstance(value.get("data"), str):
            out = dict(value)
            out["data"] = f"<omitted image base64 len={len(value['data'])}>"
            return out
        return {k: _redact_any(v, max_chars) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact_any(v, max_chars) for v in value]
    if isinstance(value, str):
        if value.startswith("data:"):
            return f"<omitted data url len={len(value)}>"
        return truncate_text(value, max_chars)
    return value


def redact_jsonrpc_for_log(payload: dict[str, Any], *, max_text_chars: int | None = None) -> dict[str, Any]:
    """Copy of a JSON-RPC frame that is safe to log."""
    limit = max_text_chars if max_text_chars is not None else _max_chars()
    redacted = _redact_any(payload, limit)
    return redacted if isinstance(redacted, dict) else {}


def redact_tool_arguments(args: dict[str, Any]) -> dict[str, Any]:
    return redact_jsonrpc_for_log(args, max_text_chars=200)
