"""Inject and remove the widget <script> tag in a project's HTML entry point."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from .errors import FeedbackError

logger = logging.getLogger("mcp.feedback.widget_install")

MARKER_ID = "browser-feedback-widget-script"
COMMENT_PREFIX = "<!-- Browser Feedback Widget"

ENTRY_POINT_CANDIDATES = (
    "index.html",
    "public/index.html",
    "src/index.html",
    "app/index.html",
    "dist/index.html",
    "build/index.html",
    "www/index.html",
    "static/index.html",
)

_JS_REGEX_SPECIALS = set(".+?^${}()|[]\\/")

_REMOVE_PATTERNS = (
    re.compile(r"\n?<!-- Browser Feedback Widget[^>]*-->[\s\S]*?" + MARKER_ID + r"[\s\S]*?</script>"),
    re.compile(r'\n?<script[^>]*src="http://[^"/]+:\d+/widget\.js"[^>]*></script>'),
    re.compile(r'\n?<script[^>]*id="' + MARKER_ID + r'"[^>]*>[\s\S]*?</script>'),
)


class WidgetInstallError(FeedbackError):
    pass


@dataclass(slots=True)
class InstallResult:
    path: Path
    installed: bool
    mode: str = ""


def hostname_pattern_to_regex(pattern: str) -> str:
    """Glob to anchored JS regex source; '*' matches any run of characters, dots included."""
    out = []
    for ch in pattern:
        if ch == "*":
            out.append(".*")
        elif ch in _JS_REGEX_SPECIALS:
            out.append("\\" + ch)
        else:
            out.append(ch)
    return "^" + "".join(out) + "$"


def build_script_tag(widget_url: str, *, dev_only: bool, allowed_hostnames: list[str]) -> str:
    if not dev_only:
        return f'\n{COMMENT_PREFIX} -->\n<script src="{widget_url}" id="{MARKER_ID}"></script>'

    checks = " || ".join(f"/{hostname_pattern_to_regex(p)}/i.test(h)" for p in allowed_hostnames) or "false"
    return f"""
{COMMENT_PREFIX} (dev only) -->
<script>
  (function() {{
    var h = location.hostname;
    var isDevHost = {checks};
    if (isDevHost) {{
      var s = document.createElement('script');
      s.src = '{widget_url}';
      s.id = '{MARKER_ID}';
      document.body.appendChild(s);
    }}
  }})();
</script>"""


def is_installed(content: str, widget_url: str) -> bool:
    return MARKER_ID in content or widget_url in content


def inject(content: str, tag: str) -> str:
    for closing in ("</body>", "</html>"):
        if closing in content:
            return content.replace(closing, tag + "\n" + closing, 1)
    return content + tag


def remove(content: str) -> str:
    for pattern in _REMOVE_PATTERNS:
        content = pattern.sub("", content)
    return re.sub(r"\n{3,}", "\n\n", content)


def _resolve(project_dir: Path, file_path: str) -> Path:
    p = Path(file_path).expanduser()
    return p if p.is_absolute() else project_dir / p


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise WidgetInstallError(f"Could not read {path}: {exc}") from exc


def _write(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise WidgetInstallError(f"Could not write {path}: {exc}") from exc


def find_entry_point(project_dir: Path) -> Path | None:
    for candidate in ENTRY_POINT_CANDIDATES:
        path = project_dir / candidate
        if path.is_file():
            return path
    return None


def find_installed(project_dir: Path, widget_url: str) -> Path | None:
    for candidate in ENTRY_POINT_CANDIDATES:
        path = project_dir / candidate
        if path.is_file() and is_installed(_read(path), widget_url):
            return path
    return None


def install_widget(
    project_dir: Path,
    widget_url: str,
    *,
    file_path: str | None = None,
    dev_only: bool = True,
    allowed_hostnames: list[str],
) -> InstallResult:
    if file_path:
        path = _resolve(project_dir, file_path)
    else:
        found = find_entry_point(project_dir)
        if found is None:
            searched = "\n".join(f"  - {c}" for c in ENTRY_POINT_CANDIDATES)
            raise WidgetInstallError(
                f"Could not auto-detect HTML file in {project_dir}. Searched for:\n{searched}\n\n"
                "Please specify the file_path explicitly."
            )
        path = found

    if not path.is_file():
        raise WidgetInstallError(f"File not found: {path}")

    content = _read(path)
    if is_installed(content, widget_url):
        return InstallResult(path=path, installed=False)

    tag = build_script_tag(widget_url, dev_only=dev_only, allowed_hostnames=allowed_hostnames)
    _write(path, inject(content, tag))
    mode = (
        f"Development only (allowed hostnames: {', '.join(allowed_hostnames)})" if dev_only else "Always loaded"
    )
    logger.info("installed widget into %s (%s)", path, "dev only" if dev_only else "always")
    return InstallResult(path=path, installed=True, mode=mode)


def uninstall_widget(project_dir: Path, widget_url: str, *, file_path: str | None = None) -> InstallResult:
    if file_path:
        path = _resolve(project_dir, file_path)
    else:
        found = find_installed(project_dir, widget_url)
        if found is None:
            raise WidgetInstallError(f"Could not find any HTML file with the widget installed in {project_dir}.")
        path = found

    if not path.is_file():
        raise WidgetInstallError(f"File not found: {path}")

    content = _read(path)
    if not is_installed(content, widget_url):
        return InstallResult(path=path, installed=False)

    _write(path, remove(content))
    logger.info("removed widget from %s", path)
    return InstallResult(path=path, installed=True)
