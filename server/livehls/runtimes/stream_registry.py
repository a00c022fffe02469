from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from livehls.core.settings import STREAM_KIND_RELAY, STREAM_KIND_TEST


class StreamKind(str, Enum):
    RELAY = STREAM_KIND_RELAY
    TEST = STREAM_KIND_TEST


@dataclass
class StreamEntry:
    key: str
    kind: StreamKind
    start_time: datetime
    is_live: bool = True
    generation: int = 0
    title: Optional[str] = None
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    relay_url: Optional[str] = None
    playback_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["kind"] = self.kind.value
        d["start_time"] = self.start_time.isoformat()
        return d


class StreamRegistry:
    """
    In-memory map of live streams. Process lifetime only: after a restart
    sources are expected to announce themselves again.

    Entries handed out are copies; the registry is the only writer.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, StreamEntry] = {}

    def register(self, key: str, kind: StreamKind, generation: int = 0, **metadata) -> StreamEntry:
        """Create or overwrite the entry for ``key`` (start time is reset)."""
        entry = StreamEntry(
            key=key,
            kind=StreamKind(kind),
            start_time=datetime.now(timezone.utc),
            generation=generation,
            **metadata,
        )
        with self._lock:
            self._entries[key] = entry
            return replace(entry)

    def unregister(self, key: str, generation: Optional[int] = None) -> Optional[StreamEntry]:
        """
        Remove ``key``. With ``generation`` set, only an entry backed by that
        process generation is removed.
        """
        with self._lock:
            cur = self._entries.get(key)
            if cur is None:
                return None
            if generation is not None and cur.generation != generation:
                return None
            self._entries.pop(key, None)
            cur.is_live = False
            return replace(cur)

    def get(self, key: str) -> Optional[StreamEntry]:
        with self._lock:
            cur = self._entries.get(key)
            return replace(cur) if cur else None

    def list_active(self) -> List[StreamEntry]:
        with self._lock:
            entries = [replace(e) for e in self._entries.values() if e.is_live]
        return sorted(entries, key=lambda e: e.start_time)

    def keys(self) -> List[str]:
        return [e.key for e in self.list_active()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
