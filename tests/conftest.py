"""Shared fixtures for the hotserve test-suite."""

import pytest

from helpers import INDEX_HTML, make_config
from hotserve.app import LiveReloadServer


@pytest.fixture
def site(tmp_path):
    """A small static site with hidden and dependency-cache directories."""
    root = tmp_path / "site"
    root.mkdir()
    (root / "index.html").write_text(INDEX_HTML)
    (root / "style.css").write_text("body { color: red; }")
    (root / "docs").mkdir()
    (root / "docs" / "index.html").write_text("<html><body>docs</body></html>")
    (root / "assets").mkdir()
    (root / "assets" / "app.js").write_text("console.log('hi');")
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main")
    (root / "node_modules").mkdir()
    (root / "node_modules" / "lib.js").write_text("module.exports = {};")
    return root


@pytest.fixture
def running_server(site):
    """A started server on an ephemeral port using the polling detector."""
    server = LiveReloadServer(make_config(site))
    server.start()
    yield server
    server.stop()
