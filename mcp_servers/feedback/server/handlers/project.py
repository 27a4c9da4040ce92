"""
Project tool handlers - widget installation and opening the app.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ...url_detect import NOT_DETECTED_HINT, detect_project_url, open_url
from ...widget_install import WidgetInstallError, install_widget, uninstall_widget
from ..definitions import DEFAULT_DEV_HOSTNAMES
from ..types import ToolResult

if TYPE_CHECKING:
    from ...config import FeedbackConfig
    from ...coordinator import InstanceCoordinator

logger = logging.getLogger("mcp.feedback.project")


def _project_dir(args: dict[str, Any]) -> Path:
    raw = args.get("project_dir")
    return Path(raw).expanduser() if isinstance(raw, str) and raw.strip() else Path.cwd()


def _file_path(args: dict[str, Any]) -> str | None:
    raw = args.get("file_path")
    return raw if isinstance(raw, str) and raw.strip() else None


def handle_install_widget(config: FeedbackConfig, coordinator: InstanceCoordinator, args: dict[str, Any]) -> ToolResult:
    allowed = args.get("allowed_hostnames")
    if not isinstance(allowed, list) or not allowed:
        allowed = list(DEFAULT_DEV_HOSTNAMES)
    try:
        res = install_widget(
            _project_dir(args),
            config.widget_url,
            file_path=_file_path(args),
            dev_only=args.get("dev_only") is not False,
            allowed_hostnames=[str(h) for h in allowed],
        )
    except WidgetInstallError as exc:
        return ToolResult.error(str(exc))

    if not res.installed:
        return ToolResult.text(f"Widget already installed in {res.path}", data=str(res.path))
    return ToolResult.text(
        "Widget installed successfully!\n\n"
        f"**File:** {res.path}\n"
        f"**Mode:** {res.mode}\n\n"
        'The floating "Add annotation" button will appear when you load the page.\n\n'
        "Next steps:\n"
        "1. Refresh your browser to load the widget\n"
        "2. Use `wait_for_browser_feedback` to receive feedback from the browser",
        data=str(res.path),
    )


def handle_uninstall_widget(
    config: FeedbackConfig, coordinator: InstanceCoordinator, args: dict[str, Any]
) -> ToolResult:
    try:
        res = uninstall_widget(_project_dir(args), config.widget_url, file_path=_file_path(args))
    except WidgetInstallError as exc:
        return ToolResult.error(str(exc))
    if not res.installed:
        return ToolResult.text(f"Widget not found in {res.path}", data=str(res.path))
    return ToolResult.text(f"Widget uninstalled successfully from {res.path}", data=str(res.path))


def handle_get_widget_snippet(
    config: FeedbackConfig, coordinator: InstanceCoordinator, args: dict[str, Any]
) -> ToolResult:
    snippet = f'<script src="{config.widget_url}"></script>'
    return ToolResult.text(
        "Add this script tag to your web application's HTML (typically before </body>):\n\n"
        f"{snippet}\n\n"
        'Once added, a small "Add annotation" button will appear in the bottom-right corner of your app.\n\n'
        "Users can:\n"
        "1. Click the button to activate annotation mode\n"
        "2. Click on any element to select it\n"
        "3. Add a description of the issue\n"
        "4. Optionally include console logs\n"
        "5. Send the feedback to the assistant\n\n"
        "Use install_widget for a version that only loads on development hostnames.",
        data=snippet,
    )


def handle_open_in_browser(config: FeedbackConfig, coordinator: InstanceCoordinator, args: dict[str, Any]) -> ToolResult:
    project_dir = _project_dir(args)
    url = args.get("url") if isinstance(args.get("url"), str) and args["url"].strip() else None
    source: str | None = None

    if url is None:
        detected = detect_project_url(project_dir)
        if detected is None:
            return ToolResult.text(f"Could not detect project URL in {project_dir}.\n\n{NOT_DETECTED_HINT}")
        url, source = detected

    if args.get("open") is not True:
        return ToolResult.text(f"Detected URL: {url}\nSource: {source}" if source else f"URL: {url}", data=url)

    try:
        open_url(url)
    except (OSError, subprocess.SubprocessError) as exc:
        logger.warning("could not open %s: %s", url, exc)
        return ToolResult.error(f"Failed to open browser: {exc}\n\nURL: {url}\n\nYou can open it manually.")
    text = f"Opened {url} in your default browser."
    if source:
        text += f"\n\nDetected from: {source}"
    return ToolResult.text(text, data=url)


PROJECT_HANDLERS: dict[str, Any] = {
    "install_widget": handle_install_widget,
    "uninstall_widget": handle_uninstall_widget,
    "get_widget_snippet": handle_get_widget_snippet,
    "open_in_browser": handle_open_in_browser,
}
