from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_PORT = 9877
DEFAULT_HOST = "127.0.0.1"


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name) or default)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name) or default)
    except Exception:
        return default


@dataclass
class FeedbackConfig:
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    http_timeout: float = 5.0
    log_level: str = "INFO"
    poll_interval: float = 0.5
    batch_idle_timeout: float = 5.0
    default_wait_timeout: float = 300.0
    shutdown_grace: float = 2.0

    @classmethod
    def from_env(cls) -> FeedbackConfig:
        port = _env_int("FEEDBACK_PORT", DEFAULT_PORT)
        if port < 1 or port > 65535:
            port = DEFAULT_PORT
        host = (os.environ.get("FEEDBACK_HOST") or DEFAULT_HOST).strip() or DEFAULT_HOST
        timeout = _env_float("FEEDBACK_HTTP_TIMEOUT", 5.0)
        level = (os.environ.get("FEEDBACK_LOG_LEVEL") or "INFO").strip().upper() or "INFO"
        return cls(
            port=port,
            host=host,
            http_timeout=max(0.1, timeout),
            log_level=level,
        )

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def widget_url(self) -> str:
        return f"{self.base_url}/widget.js"

    @property
    def ws_url(self) -> str:
        return f"ws://{self.host}:{self.port}/ws"
