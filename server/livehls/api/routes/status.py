from __future__ import annotations

import html
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from livehls.api.deps import get_container
from livehls.core.settings import MANIFEST_EXT

router = APIRouter()


_PAGE = """<html>
  <head><title>{name}</title></head>
  <body>
    <h1>{name}</h1>
    <p>Port: {port}</p>
    <p>Status: active</p>
    <h2>Active streams</h2>
    <ul>
{items}
    </ul>
    <h2>Test a stream</h2>
    <button onclick="fetch('/api/start-stream', {{method: 'POST', headers: {{'Content-Type': 'application/json'}}, body: JSON.stringify({{streamKey: 'test'}})}}).then(() => location.reload())">
      Create a test stream
    </button>
  </body>
</html>
"""


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/", response_class=HTMLResponse)
def index(container=Depends(get_container)):
    server = container.cfg.server
    items = "\n".join(
        f'      <li><a href="/live/{html.escape(k)}{MANIFEST_EXT}">{html.escape(k)}</a></li>'
        for k in container.registry.keys()
    )
    return HTMLResponse(
        _PAGE.format(name=html.escape(server.name), port=server.port, items=items)
    )


@router.get("/status")
def status(container=Depends(get_container)):
    server = container.cfg.server
    entries = container.registry.list_active()
    return {
        "status": "active",
        "server": server.name,
        "port": server.port,
        "activeStreams": [e.key for e in entries],
        "streams": [
            {
                "streamKey": e.key,
                "kind": e.kind.value,
                "startTime": e.start_time.isoformat(),
                "running": container.supervisor.is_running(e.key),
                "hlsUrl": e.playback_url,
            }
            for e in entries
        ],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
