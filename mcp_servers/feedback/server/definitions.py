"""Tool schema definitions."""

from __future__ import annotations

from typing import Any

DEFAULT_DEV_HOSTNAMES = ["localhost", "127.0.0.1", "*.local", "*.local.*", "*.test", "*.dev", "*.ddev.site"]


def _tool(name: str, description: str, properties: dict[str, Any] | None = None, required: list[str] | None = None) -> dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "inputSchema": {
            "type": "object",
            "properties": properties or {},
            "required": required or [],
        },
    }


WIDGET_TOOLS: list[dict[str, Any]] = [
    _tool(
        "install_widget",
        "Install the feedback widget into a web application by injecting the script tag into an HTML file. "
        "Auto-detects common entry points (index.html, public/index.html, ...) when no file_path is given.",
        {
            "file_path": {
                "type": "string",
                "description": "HTML file to inject the widget into. Auto-detected when omitted.",
            },
            "project_dir": {
                "type": "string",
                "description": "Project directory to search for HTML files. Defaults to the current working directory.",
            },
            "dev_only": {
                "type": "boolean",
                "default": True,
                "description": "Wrap the script in a hostname check so it only loads in development (default: true).",
            },
            "allowed_hostnames": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Hostnames or patterns allowed when dev_only is true. '*' matches any characters "
                "including dots ('*.local.*' matches 'app.local.example.dk'). Defaults to: "
                + ", ".join(DEFAULT_DEV_HOSTNAMES),
            },
        },
    ),
    _tool(
        "uninstall_widget",
        "Remove the feedback widget from a web application by removing the injected script tag.",
        {
            "file_path": {
                "type": "string",
                "description": "HTML file to remove the widget from. When omitted, common entry points containing the widget are searched.",
            },
            "project_dir": {
                "type": "string",
                "description": "Project directory to search. Defaults to the current working directory.",
            },
        },
    ),
    _tool(
        "get_widget_snippet",
        "Get the HTML snippet that loads the feedback widget. Prefer install_widget for automatic installation.",
    ),
]

FEEDBACK_TOOLS: list[dict[str, Any]] = [
    _tool(
        "wait_for_browser_feedback",
        "Wait for feedback from the browser widget. Blocks until the user submits feedback and returns the "
        "screenshot, element info, console logs and description. After receiving feedback, act on it instead of "
        "calling this tool again; only call it again when more feedback is explicitly needed.",
        {
            "timeout_seconds": {
                "type": "number",
                "default": 300,
                "description": "Maximum time to wait for feedback (default: 300 seconds).",
            },
        },
    ),
    _tool(
        "get_pending_feedback",
        "Get all feedback submitted so far. Use this to collect several annotations at once. Returns an array of "
        "feedback items.",
        {
            "clear": {
                "type": "boolean",
                "default": True,
                "description": "Clear the pending feedback after retrieving it (default: true).",
            },
        },
    ),
    _tool(
        "preview_pending_feedback",
        "Preview pending feedback without consuming it. Returns summaries (id, timestamp, description, selector).",
    ),
    _tool(
        "delete_pending_feedback",
        "Delete a pending feedback item by id, e.g. one submitted by mistake.",
        {"id": {"type": "string", "description": "The id of the feedback item to delete."}},
        required=["id"],
    ),
    _tool(
        "wait_for_multiple_feedback",
        "Ask the user to submit several feedback items and click 'Done'. Shows a prompt in the browser and "
        "returns all submitted items.",
        {
            "message": {
                "type": "string",
                "description": "Message shown to the user (default: 'Submit all your feedback, then click Done when finished').",
            },
            "timeout_seconds": {
                "type": "number",
                "default": 300,
                "description": "Maximum time to wait (default: 300 seconds).",
            },
        },
    ),
    _tool(
        "get_connection_status",
        "Check whether any browser clients are connected to the feedback server.",
    ),
    _tool(
        "request_annotation",
        "Show a prompt in connected browsers asking the user to annotate something specific. Follow up with a "
        "single wait_for_browser_feedback call.",
        {"message": {"type": "string", "description": "What the user should annotate."}},
        required=["message"],
    ),
]

PROJECT_TOOLS: list[dict[str, Any]] = [
    _tool(
        "open_in_browser",
        "Detect the project URL from configuration files (.env, docker-compose.yml, package.json) or use an "
        "explicit URL, and optionally open it in the default browser.",
        {
            "url": {"type": "string", "description": "Explicit URL. Detected from project configuration when omitted."},
            "project_dir": {
                "type": "string",
                "description": "Project directory to search for configuration files. Defaults to the current working directory.",
            },
            "open": {
                "type": "boolean",
                "default": False,
                "description": "Open the URL in the default browser (default: false, only return it).",
            },
        },
    ),
]

TOOL_DEFINITIONS: list[dict[str, Any]] = [*WIDGET_TOOLS, *FEEDBACK_TOOLS, *PROJECT_TOOLS]
