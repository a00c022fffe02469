from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from livehls.config.config import TranscodeCfg
from livehls.core.errors import ProcessSpawnError
from livehls.core.settings import validate_stream_key
from livehls.runtimes.stream_registry import StreamEntry, StreamKind, StreamRegistry
from livehls.services.notifier import NotificationDispatcher, NotifyEvent
from livehls.services.process_manager import TranscodeProcess, TranscodeSupervisor

logger = logging.getLogger(__name__)


class KeyedLocks:
    """Per-key locks that only exist while someone holds or waits on them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._slots: Dict[str, List] = {}  # key -> [lock, users]

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            slot = self._slots.setdefault(key, [threading.Lock(), 0])
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    self._slots.pop(key, None)


class StreamRuntime:
    """
    Keeps the registry and the supervisor in step:
    - a live entry exists iff its ffmpeg process (same generation) is current
    - same-key operations run one at a time, in call order
    - notifications are sent outside the key lock, one at a time per key,
      so a stop never overtakes the start it follows
    """

    def __init__(
        self,
        registry: StreamRegistry,
        supervisor: TranscodeSupervisor,
        notifier: NotificationDispatcher,
        cfg: TranscodeCfg,
    ):
        self.registry = registry
        self.supervisor = supervisor
        self.notifier = notifier
        self.cfg = cfg

        self._locks = KeyedLocks()
        self._notify_locks = KeyedLocks()

        supervisor.subscribe(on_exit=self._on_exit, on_verified=self._on_verified)

    # -------------------------
    # Public
    # -------------------------
    def start_stream(
        self,
        key: str,
        input_spec,
        playback_url: Optional[str] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
        thumbnail: Optional[str] = None,
    ) -> StreamEntry:
        key = validate_stream_key(key)
        with self._locks.hold(key):
            try:
                proc = self.supervisor.start(key, input_spec)
            except ProcessSpawnError as e:
                # a replaced process is already gone, so is its entry
                stale = self.registry.unregister(key)
                spawn_error = e
            else:
                spawn_error = None
                entry = self.registry.register(
                    key,
                    StreamKind(input_spec.kind),
                    generation=proc.generation,
                    title=title,
                    description=description,
                    thumbnail=thumbnail,
                    relay_url=getattr(input_spec, "url", None),
                    playback_url=playback_url,
                )

        if spawn_error is not None:
            logger.error("[%s] %s", key, spawn_error)
            if stale:
                self._notify_stop(key, stale)
            raise spawn_error

        logger.info("[%s] stream registered kind=%s", key, entry.kind.value)
        return entry

    def stop_stream(self, key: str) -> bool:
        """Acknowledge a stop request; ffmpeg exit is handled asynchronously."""
        key = validate_stream_key(key)
        with self._locks.hold(key):
            stopped = self.supervisor.stop(key)
            entry = self.registry.unregister(key)

        if not (stopped or entry):
            return False

        logger.info("[%s] stream stopped", key)
        self._notify_stop(key, entry)
        return True

    def is_live(self, key: str) -> bool:
        entry = self.registry.get(key)
        return bool(entry and entry.is_live and self.supervisor.is_running(key))

    def shutdown(self) -> None:
        for key in self.supervisor.stop_all():
            self.supervisor.store.purge(key)
        for entry in self.registry.list_active():
            if self.registry.unregister(entry.key):
                self._notify_stop(entry.key, entry)

    # -------------------------
    # Supervisor events
    # -------------------------
    def _on_exit(self, proc: TranscodeProcess, returncode: Optional[int], was_current: bool) -> None:
        if not was_current:
            # stopped or replaced; whoever did that already updated the registry
            return

        with self._locks.hold(proc.key):
            entry = self.registry.unregister(proc.key, generation=proc.generation)

        if entry:
            logger.info("[%s] stream ended (ffmpeg exit code=%s)", proc.key, returncode)
            self._notify_stop(proc.key, entry)

    def _on_verified(self, proc: TranscodeProcess, produced: bool) -> None:
        # notify lock first: a stop racing this check queues its event behind ours
        with self._notify_locks.hold(proc.key):
            with self._locks.hold(proc.key):
                entry = self.registry.get(proc.key)
                if not entry or entry.generation != proc.generation:
                    return
                if not self.supervisor.is_current(proc):
                    return

                if not produced and self.cfg.unregister_on_verify_failure:
                    self.supervisor.stop(proc.key)
                    self.registry.unregister(proc.key, generation=proc.generation)
                    logger.warning("[%s] unregistered after failed verification", proc.key)
                    return

            if produced:
                logger.info("[%s] stream available at %s", proc.key, entry.playback_url)
                self.notifier.notify(NotifyEvent.START, proc.key, entry)

    def _notify_stop(self, key: str, entry: Optional[StreamEntry]) -> None:
        with self._notify_locks.hold(key):
            self.notifier.notify(NotifyEvent.STOP, key, entry)
