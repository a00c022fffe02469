from __future__ import annotations

from typing import Any, Dict, Optional

from livehls.clients.http_client import HttpClient


class ControlPlaneClient:
    """
    Chat/admin service endpoint that is told when streams appear or vanish.

    Example:
      CONTROL_PLANE_URL=http://localhost:3000/api/stream/detect
    """

    def __init__(self, url: str, timeout_s: float = 5.0, http: Optional[HttpClient] = None):
        self.url = url
        self.http = http or HttpClient(
            base_url=url,
            timeout_s=timeout_s,
            default_headers={"Content-Type": "application/json"},
        )

    def stream_event(
        self,
        action: str,
        stream_key: str,
        title: str,
        description: str,
        thumbnail: str,
        relay_url: Optional[str],
        playback_url: Optional[str],
    ) -> Dict[str, Any]:
        body = self.http.post(
            "",
            {
                "action": action,
                "streamKey": stream_key,
                "title": title,
                "description": description,
                "thumbnail": thumbnail,
                "relayUrl": relay_url,
                "playbackUrl": playback_url,
            },
        )
        if not isinstance(body, dict):
            raise RuntimeError(f"Unexpected control plane response: {body!r}")
        return body

