"""Injection of the live-reload client script into served HTML."""
from __future__ import annotations

import json
import re

MARKER = b"data-hotserve"

_CLIENT_TEMPLATE = """
<script data-hotserve>
(function() {
    var source = new EventSource(%(endpoint)s);
    source.addEventListener('connected', function(event) {
        console.log('[hotserve] live reload connected', event.data);
    });
    source.addEventListener('reload', function(event) {
        console.log('[hotserve] change detected, reloading', event.data);
        window.location.reload();
    });
    source.onerror = function() {
        console.log('[hotserve] live reload disconnected');
        source.close();
        setTimeout(function() { window.location.reload(); }, %(delay_ms)d);
    };
})();
</script>
"""

_INJECTED = re.compile(rb"<script\s+" + MARKER + rb"\b", re.IGNORECASE)
_BODY_CLOSE = re.compile(rb"</body\s*>", re.IGNORECASE)
_HTML_CLOSE = re.compile(rb"</html\s*>", re.IGNORECASE)


def render_client_script(endpoint: str, reconnect_delay: float = 2.0) -> bytes:
    """Build the script block that connects a page to the push endpoint."""

    script = _CLIENT_TEMPLATE % {
        "endpoint": json.dumps(endpoint),
        "delay_ms": int(reconnect_delay * 1000),
    }
    return script.encode("utf-8")


def inject_script(html: bytes, script: bytes) -> bytes:
    """Insert ``script`` before ``</body>``, else before ``</html>``, else at the end.

    Documents that already carry the client script are returned unchanged.
    """

    if _INJECTED.search(html) is not None:
        return html
    for pattern in (_BODY_CLOSE, _HTML_CLOSE):
        match = pattern.search(html)
        if match is not None:
            return html[: match.start()] + script + html[match.start():]
    return html + script
