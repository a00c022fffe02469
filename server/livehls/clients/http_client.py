from __future__ import annotations

from typing import Any, Dict, Optional

import requests


class HttpClient:
    """Thin JSON-over-HTTP helper. Stateless, safe to share between threads."""

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 10.0,
        default_headers: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.headers = dict(default_headers or {})

    def url(self, path: str) -> str:
        if not path:
            return self.base_url
        return f"{self.base_url}/{path.lstrip('/')}"

    def post(self, path: str, payload: Dict[str, Any]) -> Any:
        return self._request("POST", path, payload)

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = self.url(path)
        try:
            r = requests.request(
                method, url, json=payload, headers=self.headers, timeout=self.timeout_s
            )
            r.raise_for_status()
        except requests.exceptions.ConnectionError as e:
            raise RuntimeError(f"Connection failed: {url}") from e
        except requests.exceptions.Timeout as e:
            raise RuntimeError(f"Timed out after {self.timeout_s}s: {url}") from e
        except requests.exceptions.HTTPError as e:
            detail: Any
            try:
                detail = r.json()
            except ValueError:
                detail = r.text
            raise RuntimeError(f"{method} {url} failed ({r.status_code}): {detail}") from e

        try:
            return r.json()
        except ValueError as e:
            raise RuntimeError(f"{method} {url} returned non-JSON body") from e
