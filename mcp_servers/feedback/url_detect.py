"""Project URL detection from common configuration files, and opening it."""

from __future__ import annotations

import logging
import re
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("mcp.feedback.url_detect")

_ENV_PATTERNS = (
    re.compile(r"""^(?:APP_URL|BASE_URL|SITE_URL|PROJECT_URL|HOSTNAME)=["']?([^"'\s]+)["']?""", re.MULTILINE),
    re.compile(r"""^(?:VIRTUAL_HOST|COMPOSE_DOMAIN)=["']?([^"'\s]+)["']?""", re.MULTILINE),
)
_COMPOSE_PATTERNS = (
    re.compile(r"""VIRTUAL_HOST[=:]\s*["']?([^"'\s]+)["']?"""),
    re.compile(r"""traefik\.http\.routers\.[^.]+\.rule[=:]\s*["']?Host\(`([^`]+)`\)["']?"""),
)
_PACKAGE_JSON_PATTERNS = (
    re.compile(r'"homepage"\s*:\s*"([^"]+)"'),
    re.compile(r'"proxy"\s*:\s*"([^"]+)"'),
)


@dataclass(frozen=True, slots=True)
class _Strategy:
    file: str
    patterns: tuple[re.Pattern[str], ...]
    add_scheme: bool = True


STRATEGIES = (
    _Strategy(".env", _ENV_PATTERNS),
    _Strategy(".env.local", _ENV_PATTERNS),
    _Strategy("docker-compose.yml", _COMPOSE_PATTERNS),
    _Strategy("docker-compose.override.yml", _COMPOSE_PATTERNS),
    _Strategy("package.json", _PACKAGE_JSON_PATTERNS, add_scheme=False),
)

NOT_DETECTED_HINT = (
    "Searched in:\n"
    "- .env (APP_URL, BASE_URL, SITE_URL, VIRTUAL_HOST, etc.)\n"
    "- .env.local\n"
    "- docker-compose.yml (VIRTUAL_HOST, traefik labels)\n"
    "- docker-compose.override.yml\n"
    "- package.json (homepage, proxy)\n\n"
    "Please provide an explicit URL using the 'url' parameter."
)


def _with_scheme(value: str) -> str:
    if value.startswith("http://") or value.startswith("https://"):
        return value
    return f"https://{value}"


def detect_project_url(project_dir: Path) -> tuple[str, str] | None:
    """Return (url, source file name) for the first match, in strategy order."""
    for strategy in STRATEGIES:
        path = project_dir / strategy.file
        if not path.is_file():
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("skipping %s: %s", path, exc)
            continue
        for pattern in strategy.patterns:
            m = pattern.search(content)
            if m:
                value = m.group(1)
                return (_with_scheme(value) if strategy.add_scheme else value), strategy.file
    return None


def opener_command(url: str, platform: str | None = None) -> list[str]:
    platform = platform or sys.platform
    if platform == "darwin":
        return ["open", url]
    if platform.startswith("win"):
        return ["cmd", "/c", "start", "", url]
    return ["xdg-open", url]


def open_url(url: str, *, timeout: float = 10.0) -> None:
    """Open `url` with the platform opener. Raises OSError or subprocess errors on failure."""
    subprocess.run(opener_command(url), check=True, timeout=timeout, capture_output=True)
