from __future__ import annotations

import re
from pathlib import Path

import pytest

from mcp_servers.feedback.server.definitions import DEFAULT_DEV_HOSTNAMES
from mcp_servers.feedback.widget_install import (
    MARKER_ID,
    WidgetInstallError,
    hostname_pattern_to_regex,
    inject,
    install_widget,
    remove,
    uninstall_widget,
)

WIDGET_URL = "http://127.0.0.1:9877/widget.js"
PAGE = "<html>\n<body>\n<h1>App</h1>\n</body>\n</html>\n"


@pytest.mark.parametrize(
    ("pattern", "host", "matches"),
    [
        ("localhost", "localhost", True),
        ("localhost", "localhost.evil.com", False),
        ("127.0.0.1", "127.0.0.1", True),
        ("127.0.0.1", "127x0x0x1", False),
        ("*.local", "app.local", True),
        ("*.local.*", "app.local.example.dk", True),
        ("*.test", "a.b.test", True),
        ("*.test", "test", False),
    ],
)
def test_hostname_patterns(pattern: str, host: str, matches: bool) -> None:
    # The JS regex source is also valid Python regex syntax for these inputs.
    rx = re.compile(hostname_pattern_to_regex(pattern).replace("\\/", "/"), re.IGNORECASE)
    assert bool(rx.match(host)) is matches


def test_inject_prefers_body_then_html_then_append() -> None:
    assert inject("<body></body>", "<x/>") == "<body><x/>\n</body>"
    assert inject("<html></html>", "<x/>") == "<html><x/>\n</html>"
    assert inject("plain", "<x/>") == "plain<x/>"


def test_install_auto_detects_entry_point(tmp_path: Path) -> None:
    (tmp_path / "public").mkdir()
    page = tmp_path / "public" / "index.html"
    page.write_text(PAGE, encoding="utf-8")

    res = install_widget(tmp_path, WIDGET_URL, allowed_hostnames=list(DEFAULT_DEV_HOSTNAMES))
    assert res.installed is True
    assert res.path == page
    content = page.read_text(encoding="utf-8")
    assert MARKER_ID in content
    assert content.index(MARKER_ID) < content.index("</body>")
    assert "isDevHost" in content
    assert "Development only" in res.mode

    again = install_widget(tmp_path, WIDGET_URL, allowed_hostnames=["localhost"])
    assert again.installed is False


def test_install_always_on(tmp_path: Path) -> None:
    page = tmp_path / "index.html"
    page.write_text(PAGE, encoding="utf-8")
    res = install_widget(tmp_path, WIDGET_URL, dev_only=False, allowed_hostnames=[])
    assert res.mode == "Always loaded"
    assert f'<script src="{WIDGET_URL}" id="{MARKER_ID}"></script>' in page.read_text(encoding="utf-8")


def test_install_errors(tmp_path: Path) -> None:
    with pytest.raises(WidgetInstallError, match="Could not auto-detect"):
        install_widget(tmp_path, WIDGET_URL, allowed_hostnames=["localhost"])
    with pytest.raises(WidgetInstallError, match="File not found"):
        install_widget(tmp_path, WIDGET_URL, file_path="missing.html", allowed_hostnames=["localhost"])


@pytest.mark.parametrize("dev_only", [True, False])
def test_uninstall_restores_page(tmp_path: Path, dev_only: bool) -> None:
    page = tmp_path / "index.html"
    page.write_text(PAGE, encoding="utf-8")
    install_widget(tmp_path, WIDGET_URL, dev_only=dev_only, allowed_hostnames=["localhost"])

    res = uninstall_widget(tmp_path, WIDGET_URL)
    assert res.installed is True
    content = page.read_text(encoding="utf-8")
    assert MARKER_ID not in content
    assert "widget.js" not in content
    assert "<h1>App</h1>" in content

    assert uninstall_widget(tmp_path, WIDGET_URL, file_path="index.html").installed is False


def test_uninstall_without_install(tmp_path: Path) -> None:
    (tmp_path / "index.html").write_text(PAGE, encoding="utf-8")
    with pytest.raises(WidgetInstallError, match="Could not find any HTML file"):
        uninstall_widget(tmp_path, WIDGET_URL)


def test_remove_plain_script_tag_and_collapse_blank_lines() -> None:
    content = '<body>\n\n\n<script src="http://localhost:9877/widget.js"></script>\n</body>'
    out = remove(content)
    assert "widget.js" not in out
    assert "\n\n\n" not in out
