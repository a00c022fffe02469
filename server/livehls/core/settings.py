from __future__ import annotations

import os
import re
from typing import Optional
from urllib.parse import urlsplit

from livehls.core.errors import InvalidRelayUrlError, InvalidStreamKeyError


STREAM_KIND_RELAY = "relay"
STREAM_KIND_TEST = "test"

MANIFEST_EXT = ".m3u8"
SEGMENT_EXT = ".ts"

DEFAULT_STREAM_KEY = "test"
DEFAULT_CLEANUP_DELAY_S = 30.0
DEFAULT_VERIFY_DELAY_S = 5.0

_STREAM_KEY_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

# network protocols ffmpeg may pull a relay from; no file:, pipe: or lavfi
RELAY_SCHEMES = frozenset({"rtmp", "rtmps", "rtsp", "rtsps", "srt", "http", "https"})


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().strip('"')
    return value or default


def env_float(name: str, default: float) -> float:
    try:
        return float(str(os.getenv(name, str(default))).strip())
    except Exception:
        return default


def env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, str(default))).strip())
    except Exception:
        return default


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def validate_stream_key(value: Optional[str]) -> str:
    """
    Stream keys end up in file names and URL paths, so only a conservative
    token alphabet is accepted (no dots, slashes or whitespace).
    """
    key = str(value or "").strip()
    if not _STREAM_KEY_RE.match(key):
        raise InvalidStreamKeyError(f"Invalid stream key: {value!r}")
    return key


def validate_relay_url(value: Optional[str]) -> str:
    url = str(value or "").strip()
    parts = urlsplit(url)
    if parts.scheme.lower() not in RELAY_SCHEMES or not parts.hostname:
        raise InvalidRelayUrlError(f"Unsupported relay URL: {value!r}")
    return url
