from __future__ import annotations

import logging
import os
import re
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from livehls.core.errors import InvalidSegmentPathError, SegmentNotFoundError
from livehls.core.settings import MANIFEST_EXT, SEGMENT_EXT, validate_stream_key

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    MANIFEST_EXT: "application/vnd.apple.mpegurl",
    SEGMENT_EXT: "video/mp2t",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*$")


class SegmentStore:
    """
    Flat directory holding one manifest plus rotating segments per stream key:

        <root>/<key>.m3u8
        <root>/<key>-<n>.ts

    Segments are rotated by ffmpeg itself. The store only resolves files for
    the HTTP front and purges what a finished process left behind.
    """

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._timers: Dict[str, List[threading.Timer]] = {}
        self._closed = False

    # -------------------------
    # Layout
    # -------------------------
    def manifest_path(self, key: str) -> Path:
        key = validate_stream_key(key)
        return self.root / f"{key}{MANIFEST_EXT}"

    def segment_pattern(self, key: str) -> Path:
        key = validate_stream_key(key)
        return self.root / f"{key}-%d{SEGMENT_EXT}"

    def segment_files(self, key: str) -> List[Path]:
        key = validate_stream_key(key)
        rx = re.compile(rf"^{re.escape(key)}-\d+{re.escape(SEGMENT_EXT)}$")
        try:
            names = os.listdir(self.root)
        except FileNotFoundError:
            return []
        return sorted(self.root / n for n in names if rx.match(n))

    # -------------------------
    # Serving
    # -------------------------
    def resolve(self, filename: str) -> Path:
        name = str(filename or "")
        if (
            not name
            or "/" in name
            or "\\" in name
            or "\x00" in name
            or ".." in name
            or not _SAFE_NAME_RE.match(name)
        ):
            raise InvalidSegmentPathError(f"Invalid file name: {filename!r}")

        path = (self.root / name).resolve()
        if path.parent != self.root:
            raise InvalidSegmentPathError(f"Invalid file name: {filename!r}")
        if not path.is_file():
            raise SegmentNotFoundError(f"File not found: {name}")
        return path

    @staticmethod
    def content_type(filename: str) -> str:
        return CONTENT_TYPES.get(os.path.splitext(filename)[1].lower(), DEFAULT_CONTENT_TYPE)

    # -------------------------
    # Cleanup
    # -------------------------
    def purge(self, key: str) -> int:
        """Delete the manifest and any leftover segments. Returns files removed."""
        removed = 0
        for path in [self.manifest_path(key), *self.segment_files(key)]:
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("[%s] failed to delete %s: %s", key, path.name, e)
        if removed:
            logger.info("[%s] cleaned up %d file(s)", key, removed)
        return removed

    def schedule_cleanup(
        self,
        key: str,
        delay_s: float,
        in_use: Optional[Callable[[], bool]] = None,
    ) -> threading.Timer:
        """
        Purge ``key`` after ``delay_s`` so in-flight readers can finish.
        ``in_use`` is checked when the timer fires; returning True keeps the
        files (a newer process owns them).
        """
        key = validate_stream_key(key)
        timer: Optional[threading.Timer] = None

        def _run() -> None:
            with self._lock:
                pending = self._timers.get(key, [])
                if timer in pending:
                    pending.remove(timer)
                if not pending:
                    self._timers.pop(key, None)
            try:
                if in_use is not None and in_use():
                    logger.info("[%s] cleanup skipped, files belong to a newer process", key)
                    return
                self.purge(key)
            except Exception:
                logger.exception("[%s] cleanup failed", key)

        if self._closed:
            delay_s = 0.0
        timer = threading.Timer(max(0.0, float(delay_s)), _run)
        timer.daemon = True
        timer.name = f"segment-cleanup-{key}"
        with self._lock:
            self._timers.setdefault(key, []).append(timer)
        timer.start()
        logger.debug("[%s] cleanup scheduled in %.1fs", key, delay_s)
        return timer

    def pending_keys(self) -> List[str]:
        with self._lock:
            return sorted(self._timers)

    def cancel_pending(self, key: Optional[str] = None) -> List[str]:
        """Cancel scheduled cleanups for ``key`` (all keys when omitted)."""
        with self._lock:
            if key is None:
                timers = self._timers
                self._timers = {}
            else:
                timers = {key: self._timers.pop(key)} if key in self._timers else {}
        for items in timers.values():
            for t in items:
                t.cancel()
        return sorted(timers)

    def flush_pending(self) -> None:
        """
        Run every scheduled cleanup now (shutdown path). Cleanups scheduled
        afterwards are not delayed any more.
        """
        self._closed = True
        for key in self.cancel_pending():
            self.purge(key)
