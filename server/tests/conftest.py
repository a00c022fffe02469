"""Pytest configuration and fixtures."""

import io
import itertools
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import Callable, List

import pytest
from fastapi.testclient import TestClient

from livehls.config.config import AppConfig, load_config
from livehls.core.container import build_container
from livehls.main import create_app


_pids = itertools.count(4000)


class FakePopen:
    """Stands in for an ffmpeg process; exits only when told to."""

    def __init__(self, engine: "FakeEngine", args, **kwargs):
        self.engine = engine
        self.args = list(args)
        self.kwargs = kwargs
        self.pid = next(_pids)
        self.returncode = None
        self.terminated = False
        self.killed = False
        self._exited = threading.Event()
        self.stdout = io.BytesIO(engine.output)
        self.manifest = Path(self.args[-1])
        if engine.writes_manifest:
            self.manifest.write_text("#EXTM3U\n#EXT-X-VERSION:3\n")

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired(self.args, timeout)
        return self.returncode

    def terminate(self):
        self.terminated = True
        if not self.engine.ignore_sigterm:
            self.exit(-15)

    def kill(self):
        self.killed = True
        self.exit(-9)

    def exit(self, code: int = 0):
        if self.returncode is None:
            self.returncode = code
        self._exited.set()


class FakeEngine:
    """Callable used in place of ``subprocess.Popen``."""

    def __init__(self):
        self.procs: List[FakePopen] = []
        self.writes_manifest = True
        self.ignore_sigterm = False
        self.fail_with = None
        self.output = b"Input #0, lavfi, from 'testsrc':\nOpening 'test-0.ts' for writing\n"
        self._lock = threading.Lock()

    def __call__(self, args, **kwargs):
        if self.fail_with is not None:
            raise self.fail_with
        others_alive = len(self.alive())
        proc = FakePopen(self, args, **kwargs)
        proc.others_alive = others_alive
        with self._lock:
            self.procs.append(proc)
        return proc

    def alive(self) -> List[FakePopen]:
        with self._lock:
            return [p for p in self.procs if p.returncode is None]


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def cfg(tmp_path) -> AppConfig:
    c = load_config(use_env=False)
    c.store.root = str(tmp_path / "live")
    c.store.cleanup_delay_s = 0.2
    # never run; FakeEngine receives the argv
    c.transcode.ffmpeg_path = sys.executable
    c.transcode.verify_delay_s = 0.1
    c.transcode.shutdown_timeout_s = 0.5
    c.server.public_base_url = "http://localhost:8001"
    c.control_plane.url = "http://control-plane.test/api/stream/detect"
    c.control_plane.enabled = False
    return c


@pytest.fixture
def container(cfg, engine):
    c = build_container(cfg, spawn=engine)
    yield c
    c.shutdown()


@pytest.fixture
def client(cfg, engine):
    app = create_app(cfg, spawn=engine)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(name="wait_for")
def wait_for_fixture():
    return wait_for
