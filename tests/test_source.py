"""Tests for the TaildirSource poll loop and its sink."""

import json
import os
import threading

import pytest

from conftest import touch_future
from taildir.config import Config
from taildir.metrics import SourceCounter
from taildir.models import Record
from taildir.sink import BatchFileSink
from taildir.source import TaildirSource


class RecordingSink:
    def __init__(self, fail_times: int = 0):
        self.batches: list[list[bytes]] = []
        self._fail_times = fail_times

    def deliver(self, records):
        if self._fail_times > 0:
            self._fail_times -= 1
            raise OSError("downstream unavailable")
        self.batches.append([r.body for r in records])


@pytest.fixture
def config(log_dir, position_file, tmp_path):
    return Config(
        file_groups={"g1": str(log_dir / r".*\.log")},
        headers={"g1": {"source": "A"}},
        position_file=position_file,
        batch_size=2,
        retry_interval=0.0,
        max_retry_interval=0.0,
        poll_interval=0.01,
        output_dir=str(tmp_path / "out"),
        watch=False,
    )


@pytest.fixture
def make_source(config):
    sources = []

    def _make(sink=None, cfg=None):
        source = TaildirSource(cfg or config, sink=sink, counter=SourceCounter())
        source.start()
        sources.append(source)
        return source

    yield _make
    for source in sources:
        source.stop()


class TestProcess:
    def test_delivers_all_lines_in_batches(self, log_dir, make_source):
        (log_dir / "a.log").write_bytes(b"1\n2\n3\n")
        sink = RecordingSink()
        source = make_source(sink)
        assert source.process() == 3
        assert sink.batches == [[b"1", b"2"], [b"3"]]
        assert source.counter.get("batches_committed") == 2
        (tf,) = list(source.reader.tail_files)
        assert tf.pos == 6

    def test_nothing_new_delivers_nothing(self, log_dir, make_source):
        (log_dir / "a.log").write_bytes(b"1\n")
        sink = RecordingSink()
        source = make_source(sink)
        source.process()
        assert source.process() == 0
        assert sink.batches == [[b"1"]]

    def test_picks_up_appends(self, log_dir, make_source):
        f = log_dir / "a.log"
        f.write_bytes(b"1\n")
        sink = RecordingSink()
        source = make_source(sink)
        source.process()
        with open(f, "ab") as fh:
            fh.write(b"2\n")
        touch_future(f)
        assert source.process() == 1
        assert sink.batches[-1] == [b"2"]

    def test_failed_delivery_is_retried_not_skipped(self, log_dir, make_source):
        (log_dir / "a.log").write_bytes(b"1\n2\n3\n")
        sink = RecordingSink(fail_times=1)
        source = make_source(sink)

        assert source.process() == 0
        (tf,) = list(source.reader.tail_files)
        assert tf.pos == 0
        assert source.counter.get("delivery_failures") == 1

        assert source.process() == 3
        assert sink.batches == [[b"1", b"2"], [b"3"]]

    def test_max_batch_count_limits_a_pass(self, log_dir, config, make_source):
        (log_dir / "a.log").write_bytes(b"1\n2\n3\n4\n5\n")
        sink = RecordingSink()
        cfg = Config(**{**config.__dict__, "max_batch_count": 1})
        source = make_source(sink, cfg)
        assert source.process() == 2
        assert source.process() == 2


class TestPositionFile:
    def test_periodic_write(self, log_dir, config, make_source):
        f = log_dir / "a.log"
        f.write_bytes(b"1\n")
        source = make_source(RecordingSink())
        source.process()
        assert source.maybe_write_position() is False
        assert source.maybe_write_position(now=float("inf")) is True

        data = json.loads(open(config.position_file).read())
        assert data == [{"inode": os.stat(f).st_ino, "pos": 2, "file": str(f)}]

    def test_stop_writes_final_position_and_restart_resumes(self, log_dir, config):
        f = log_dir / "a.log"
        f.write_bytes(b"1\n2\n")
        sink = RecordingSink()
        first = TaildirSource(config, sink=sink)
        first.start()
        first.process()
        first.stop()

        with open(f, "ab") as fh:
            fh.write(b"3\n")
        second = TaildirSource(config, sink=sink)
        second.start()
        try:
            second.process()
        finally:
            second.stop()
        assert sink.batches == [[b"1", b"2"], [b"3"]]


class TestIdleFiles:
    def test_idle_files_are_closed_then_reopened_on_growth(self, log_dir, make_source):
        f = log_dir / "a.log"
        f.write_bytes(b"1\n")
        sink = RecordingSink()
        source = make_source(sink)
        source.process()

        (tf,) = list(source.reader.tail_files)
        assert source.close_idle_files(now=float("inf")) == [tf.inode]
        assert tf.handle is None

        with open(f, "ab") as fh:
            fh.write(b"2\n")
        touch_future(f)
        assert source.process() == 1
        assert sink.batches[-1] == [b"2"]

    def test_recent_files_stay_open(self, log_dir, make_source):
        (log_dir / "a.log").write_bytes(b"1\n")
        source = make_source(RecordingSink())
        source.process()
        assert source.close_idle_files() == []


class TestRun:
    def test_run_until_shutdown(self, log_dir, config):
        (log_dir / "a.log").write_bytes(b"1\n")
        sink = RecordingSink()
        source = TaildirSource(config, sink=sink)
        shutdown = threading.Event()
        t = threading.Thread(target=source.run, args=(shutdown,), daemon=True)
        t.start()
        for _ in range(200):
            if sink.batches:
                break
            shutdown.wait(0.01)
        shutdown.set()
        t.join(timeout=5)

        assert not t.is_alive()
        assert sink.batches == [[b"1"]]
        assert os.path.exists(config.position_file)

    def test_watchdog_observer_starts_and_stops(self, log_dir, config):
        cfg = Config(**{**config.__dict__, "watch": True})
        source = TaildirSource(cfg, sink=RecordingSink())
        source.start()
        source.stop()
        source.stop()


class TestBatchFileSink:
    def test_writes_one_json_file_per_batch(self, tmp_path):
        sink = BatchFileSink(str(tmp_path / "out"))
        path = sink.deliver([Record(b"hello", {"source": "A"}), Record(b"\xffbad")])

        data = json.loads(open(path).read())
        assert data[0] == {"headers": {"source": "A"}, "body": "hello"}
        assert data[1]["body"].endswith("bad")
        assert sink.batch_count == 1
        assert os.listdir(tmp_path / "out") == [os.path.basename(path)]
