from __future__ import annotations

import itertools
import logging
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from livehls.config.config import TranscodeCfg
from livehls.core.errors import ProcessSpawnError
from livehls.core.settings import validate_stream_key
from livehls.services.ffmpeg import build_hls_command, resolve_ffmpeg_exe
from livehls.services.segment_store import SegmentStore

logger = logging.getLogger(__name__)

ExitHandler = Callable[["TranscodeProcess", Optional[int], bool], None]
VerifyHandler = Callable[["TranscodeProcess", bool], None]

_generations = itertools.count(1)


@dataclass
class TranscodeProcess:
    key: str
    generation: int
    popen: subprocess.Popen
    manifest_path: Path
    input_spec: object
    command: List[str]
    started_at: float = field(default_factory=time.time)

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.popen, "pid", None)

    def alive(self) -> bool:
        return self.popen.poll() is None


class TranscodeSupervisor:
    """
    Owns at most one ffmpeg process per stream key.

    Each process gets two daemon threads: one draining its merged
    stdout/stderr (ffmpeg blocks on a full pipe otherwise) and one blocked in
    ``wait()`` that publishes the exit. Verification and file cleanup are
    timers, never sleeps.
    """

    def __init__(
        self,
        store: SegmentStore,
        cfg: TranscodeCfg,
        cleanup_delay_s: float,
        spawn: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        self.store = store
        self.cfg = cfg
        self.cleanup_delay_s = float(cleanup_delay_s)
        self._spawn = spawn

        self._lock = threading.RLock()
        self.procs: Dict[str, TranscodeProcess] = {}
        self._verify_timers: Dict[int, threading.Timer] = {}
        # generation of the newest process per key; owns the key's files
        self._latest: Dict[str, int] = {}

        self._exit_handlers: List[ExitHandler] = []
        self._verify_handlers: List[VerifyHandler] = []

    def subscribe(
        self,
        on_exit: Optional[ExitHandler] = None,
        on_verified: Optional[VerifyHandler] = None,
    ) -> None:
        if on_exit:
            self._exit_handlers.append(on_exit)
        if on_verified:
            self._verify_handlers.append(on_verified)

    # -------------------------
    # Public
    # -------------------------
    def is_running(self, key: str) -> bool:
        with self._lock:
            p = self.procs.get(key)
            return bool(p and p.alive())

    def get(self, key: str) -> Optional[TranscodeProcess]:
        with self._lock:
            return self.procs.get(key)

    def is_current(self, proc: TranscodeProcess) -> bool:
        with self._lock:
            return self.procs.get(proc.key) is proc

    def running_keys(self) -> List[str]:
        with self._lock:
            return sorted(self.procs)

    def start(self, key: str, input_spec) -> TranscodeProcess:
        """
        Launch ffmpeg for ``key``. An existing process for the same key is
        terminated and reaped first (SIGKILL after ``shutdown_timeout_s``) so
        two writers never share the key's output files. Leftovers of earlier
        runs are purged before the new process starts.

        Callers serialize starts per key; see ``StreamRuntime``.
        """
        key = validate_stream_key(key)
        manifest = self.store.manifest_path(key)
        pattern = self.store.segment_pattern(key)

        with self._lock:
            old = self.procs.pop(key, None)
        if old:
            logger.info("[%s] replacing running transcode pid=%s", key, old.pid)
            self._cancel_verify(old)
            self._terminate(old)
            self._reap(old, self.cfg.shutdown_timeout_s)

        exe = resolve_ffmpeg_exe(self.cfg.ffmpeg_path)
        cmd = build_hls_command(exe, input_spec, manifest, pattern, self.cfg)

        self.store.cancel_pending(key)
        self.store.purge(key)

        with self._lock:
            try:
                pop = self._spawn(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                )
            except (OSError, ValueError) as e:
                raise ProcessSpawnError(f"Failed to launch ffmpeg for {key}: {e}") from e

            proc = TranscodeProcess(
                key=key,
                generation=next(_generations),
                popen=pop,
                manifest_path=manifest,
                input_spec=input_spec,
                command=cmd,
            )
            self.procs[key] = proc
            self._latest[key] = proc.generation

        logger.info(
            "[%s] transcode started pid=%s input=%s output=%s",
            key, proc.pid, input_spec.describe(), manifest,
        )

        threading.Thread(
            target=self._drain, args=(proc,), daemon=True, name=f"ffmpeg-out-{key}"
        ).start()
        threading.Thread(
            target=self._watch, args=(proc,), daemon=True, name=f"ffmpeg-wait-{key}"
        ).start()
        self._schedule_verify(proc)
        return proc

    def stop(self, key: str) -> bool:
        """
        Request termination. Returns immediately; the exit is reported by the
        watcher thread like any other exit.
        """
        with self._lock:
            p = self.procs.pop(key, None)
        if not p:
            return False
        self._cancel_verify(p)
        self._terminate(p)
        return True

    def stop_all(self, timeout_s: Optional[float] = None) -> List[str]:
        timeout_s = self.cfg.shutdown_timeout_s if timeout_s is None else timeout_s
        with self._lock:
            procs = list(self.procs.values())
            self.procs.clear()

        for p in procs:
            self._cancel_verify(p)
            self._terminate(p)

        deadline = time.time() + max(0.0, timeout_s)
        for p in procs:
            self._reap(p, deadline - time.time())
        return [p.key for p in procs]

    def status(self, key: str) -> dict:
        p = self.get(key)
        return {
            "running": self.is_running(key),
            "pid": p.pid if p else None,
            "generation": p.generation if p else None,
            "command": p.command if p else None,
        }

    # -------------------------
    # Internals
    # -------------------------
    def _terminate(self, p: TranscodeProcess) -> None:
        if p.popen.poll() is not None:
            return
        logger.info("[%s] stopping transcode pid=%s", p.key, p.pid)
        try:
            p.popen.terminate()
        except OSError as e:
            logger.warning("[%s] terminate failed: %s", p.key, e)

    def _reap(self, p: TranscodeProcess, timeout_s: float) -> None:
        """Wait for ``p`` to exit, SIGKILL it once ``timeout_s`` has passed."""
        try:
            p.popen.wait(timeout=max(0.0, timeout_s))
            return
        except subprocess.TimeoutExpired:
            logger.warning("[%s] ffmpeg ignored SIGTERM, killing pid=%s", p.key, p.pid)
        try:
            p.popen.kill()
            p.popen.wait(timeout=max(1.0, timeout_s))
        except subprocess.TimeoutExpired:
            logger.error("[%s] ffmpeg pid=%s still running after SIGKILL", p.key, p.pid)
        except OSError:
            pass

    def _drain(self, p: TranscodeProcess) -> None:
        stream = p.popen.stdout
        if stream is None:
            return
        try:
            for raw in iter(stream.readline, b""):
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                if "error" in line.lower():
                    logger.warning("[ffmpeg %s] %s", p.key, line)
                else:
                    logger.debug("[ffmpeg %s] %s", p.key, line)
        except (OSError, ValueError):
            # pipe closed underneath us on shutdown
            pass
        finally:
            try:
                stream.close()
            except OSError:
                pass

    def _watch(self, p: TranscodeProcess) -> None:
        try:
            returncode = p.popen.wait()
        except Exception:
            logger.exception("[%s] wait() failed", p.key)
            returncode = None
        self._handle_exit(p, returncode)

    def _handle_exit(self, p: TranscodeProcess, returncode: Optional[int]) -> None:
        with self._lock:
            was_current = self.procs.get(p.key) is p
            if was_current:
                self.procs.pop(p.key, None)
        self._cancel_verify(p)

        logger.info("[%s] transcode exited code=%s pid=%s", p.key, returncode, p.pid)

        self.store.schedule_cleanup(
            p.key,
            self.cleanup_delay_s,
            in_use=lambda: self._superseded(p),
        )

        for handler in list(self._exit_handlers):
            try:
                handler(p, returncode, was_current)
            except Exception:
                logger.exception("[%s] exit handler failed", p.key)

    def _superseded(self, p: TranscodeProcess) -> bool:
        """True once a newer process for ``p.key`` has been spawned."""
        with self._lock:
            if self._latest.get(p.key) != p.generation:
                return True
            # files are about to go; nothing left to protect for this key
            self._latest.pop(p.key, None)
            return False

    def _schedule_verify(self, p: TranscodeProcess) -> None:
        timer = threading.Timer(max(0.0, self.cfg.verify_delay_s), self._verify, args=(p,))
        timer.daemon = True
        timer.name = f"ffmpeg-verify-{p.key}"
        with self._lock:
            self._verify_timers[p.generation] = timer
        timer.start()

    def _cancel_verify(self, p: TranscodeProcess) -> None:
        with self._lock:
            timer = self._verify_timers.pop(p.generation, None)
        if timer:
            timer.cancel()

    def _verify(self, p: TranscodeProcess) -> None:
        with self._lock:
            self._verify_timers.pop(p.generation, None)
            if self.procs.get(p.key) is not p:
                return

        produced = p.manifest_path.is_file()
        if produced:
            logger.info("[%s] manifest ready: %s", p.key, p.manifest_path.name)
        else:
            logger.warning(
                "[%s] manifest not produced after %.1fs, transcode likely failed",
                p.key, self.cfg.verify_delay_s,
            )

        for handler in list(self._verify_handlers):
            try:
                handler(p, produced)
            except Exception:
                logger.exception("[%s] verify handler failed", p.key)
