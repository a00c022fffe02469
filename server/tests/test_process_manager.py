"""Tests for the ffmpeg process supervisor."""

import threading
import time

import pytest

from livehls.core.errors import ProcessSpawnError
from livehls.services.ffmpeg import RelayInput, SyntheticInput
from livehls.services.process_manager import TranscodeSupervisor
from livehls.services.segment_store import SegmentStore


@pytest.fixture
def store(cfg):
    s = SegmentStore(cfg.store.root)
    yield s
    s.cancel_pending()


@pytest.fixture
def supervisor(cfg, store, engine):
    sup = TranscodeSupervisor(store, cfg.transcode, cfg.store.cleanup_delay_s, spawn=engine)
    yield sup
    sup.stop_all(timeout_s=0.5)


class Events:
    def __init__(self):
        self.exits = []
        self.verified = []
        self.exited = threading.Event()
        self.verified_evt = threading.Event()

    def on_exit(self, proc, code, was_current):
        self.exits.append((proc, code, was_current))
        self.exited.set()

    def on_verified(self, proc, produced):
        self.verified.append((proc, produced))
        self.verified_evt.set()


@pytest.fixture
def events(supervisor):
    ev = Events()
    supervisor.subscribe(on_exit=ev.on_exit, on_verified=ev.on_verified)
    return ev


def test_start_spawns_ffmpeg_with_pipes_drained(supervisor, engine, store):
    proc = supervisor.start("test", SyntheticInput())

    assert supervisor.is_running("test")
    assert proc.manifest_path == store.manifest_path("test")
    popen = engine.procs[0]
    assert popen.args[-1] == str(store.manifest_path("test"))
    assert popen.kwargs["stdout"] is not None
    assert popen.kwargs["stderr"] is not None


def test_output_is_consumed(supervisor, engine, wait_for):
    supervisor.start("test", SyntheticInput())
    popen = engine.procs[0]

    assert wait_for(lambda: popen.stdout.closed)


def test_stop_is_immediate_and_exit_is_reported_async(supervisor, engine, events):
    proc = supervisor.start("test", SyntheticInput())

    assert supervisor.stop("test") is True

    assert not supervisor.is_running("test")
    assert supervisor.get("test") is None
    assert engine.procs[0].terminated
    assert events.exited.wait(2.0)
    exited, code, was_current = events.exits[0]
    assert exited is proc
    assert code == -15
    assert was_current is False


def test_stop_unknown_key_returns_false(supervisor):
    assert supervisor.stop("nothing") is False


def test_spontaneous_exit_clears_table_and_reports_current(supervisor, engine, events):
    proc = supervisor.start("test", SyntheticInput())

    engine.procs[0].exit(0)

    assert events.exited.wait(2.0)
    assert events.exits[0] == (proc, 0, True)
    assert supervisor.get("test") is None


def test_second_start_terminates_first(supervisor, engine, events):
    first = supervisor.start("test", SyntheticInput())
    second = supervisor.start("test", RelayInput("rtmp://origin/live/test"))

    assert engine.procs[0].terminated
    assert not engine.procs[1].terminated
    assert supervisor.get("test") is second
    assert second.generation > first.generation
    assert events.exited.wait(2.0)
    assert events.exits[0][0] is first
    assert events.exits[0][2] is False
    assert len(engine.alive()) == 1


def test_spawn_failure_raises_and_leaves_no_entry(supervisor, engine):
    engine.fail_with = FileNotFoundError("ffmpeg")

    with pytest.raises(ProcessSpawnError):
        supervisor.start("test", SyntheticInput())

    assert not supervisor.is_running("test")
    assert supervisor.running_keys() == []


def test_exit_schedules_manifest_cleanup_after_grace(supervisor, engine, store, wait_for):
    supervisor.start("test", SyntheticInput())
    manifest = store.manifest_path("test")
    assert manifest.exists()

    engine.procs[0].exit(0)

    assert wait_for(lambda: store.pending_keys() == ["test"], timeout=1.0)
    assert manifest.exists()
    assert wait_for(lambda: not manifest.exists(), timeout=3.0)


def test_cleanup_spares_restarted_stream(supervisor, engine, store, cfg):
    supervisor.start("test", SyntheticInput())
    supervisor.start("test", SyntheticInput())

    # the replaced process's cleanup, if scheduled at all, has long fired
    time.sleep(cfg.store.cleanup_delay_s * 3)

    assert store.manifest_path("test").exists()
    assert supervisor.is_running("test")


def test_replacement_waits_for_old_process_to_exit(supervisor, engine):
    supervisor.start("test", SyntheticInput())
    supervisor.start("test", SyntheticInput())

    assert engine.procs[0].terminated
    assert not engine.procs[0].killed
    assert engine.procs[1].others_alive == 0


def test_replacement_kills_old_process_ignoring_sigterm(supervisor, engine, cfg):
    engine.ignore_sigterm = True
    supervisor.start("test", SyntheticInput())

    started = time.monotonic()
    supervisor.start("test", SyntheticInput())

    assert time.monotonic() - started >= cfg.transcode.shutdown_timeout_s * 0.9
    assert engine.procs[0].killed
    assert engine.procs[1].others_alive == 0
    assert len(engine.alive()) == 1


def test_earlier_cleanup_never_shortens_later_grace(supervisor, engine, store, cfg, wait_for):
    grace = cfg.store.cleanup_delay_s
    supervisor.start("test", SyntheticInput())
    engine.procs[0].exit(0)
    assert wait_for(lambda: store.pending_keys() == ["test"], timeout=1.0)

    time.sleep(grace / 2)
    supervisor.start("test", SyntheticInput())
    manifest = store.manifest_path("test")
    time.sleep(grace / 4)
    engine.procs[1].exit(0)
    exited_at = time.monotonic()

    assert wait_for(lambda: not manifest.exists(), timeout=3.0)
    assert time.monotonic() - exited_at >= grace


def test_start_purges_leftovers_of_previous_run(supervisor, store):
    manifest = store.manifest_path("test")
    manifest.write_text("#EXTM3U\n#EXT-X-ENDLIST\n")
    (store.root / "test-7.ts").write_bytes(b"old")

    supervisor.start("test", SyntheticInput())

    assert store.segment_files("test") == []
    assert "#EXT-X-ENDLIST" not in manifest.read_text()


def test_stale_manifest_does_not_pass_verification(supervisor, engine, store, events):
    store.manifest_path("test").write_text("#EXTM3U\n#EXT-X-ENDLIST\n")
    engine.writes_manifest = False

    proc = supervisor.start("test", SyntheticInput())

    assert events.verified_evt.wait(2.0)
    assert events.verified == [(proc, False)]


def test_verification_reports_manifest(supervisor, events):
    proc = supervisor.start("test", SyntheticInput())

    assert events.verified_evt.wait(2.0)
    assert events.verified == [(proc, True)]


def test_verification_reports_missing_manifest(supervisor, engine, events):
    engine.writes_manifest = False
    proc = supervisor.start("test", SyntheticInput())

    assert events.verified_evt.wait(2.0)
    assert events.verified == [(proc, False)]
    assert supervisor.is_running("test")


def test_no_verification_after_stop(supervisor, events):
    supervisor.start("test", SyntheticInput())
    supervisor.stop("test")

    assert not events.verified_evt.wait(0.4)


def test_handler_errors_do_not_break_supervision(supervisor, engine, events):
    def broken(*_args):
        raise RuntimeError("handler bug")

    supervisor.subscribe(on_exit=broken, on_verified=broken)
    supervisor.start("test", SyntheticInput())
    engine.procs[0].exit(1)

    assert events.exited.wait(2.0)
    assert supervisor.get("test") is None


def test_stop_all_kills_processes_ignoring_sigterm(supervisor, engine):
    engine.ignore_sigterm = True
    supervisor.start("a", SyntheticInput())
    supervisor.start("b", SyntheticInput())

    supervisor.stop_all(timeout_s=0.1)

    assert supervisor.running_keys() == []
    assert all(p.killed for p in engine.procs)


def test_status_snapshot(supervisor):
    proc = supervisor.start("test", SyntheticInput())

    status = supervisor.status("test")

    assert status["running"] is True
    assert status["pid"] == proc.pid
    assert supervisor.status("other") == {
        "running": False,
        "pid": None,
        "generation": None,
        "command": None,
    }
