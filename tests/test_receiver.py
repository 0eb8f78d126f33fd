# tests/test_receiver.py
import itertools
import socket

import pytest

from sjcam.receiver import (
    MEGABYTE,
    FileTransferReceiver,
    ProgressReport,
    ThroughputMeter,
    TransferStatus,
)
from tests.mock_camera import DataServer


@pytest.fixture
def receiver():
    return FileTransferReceiver(timeout=5.0)


def closed_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('127.0.0.1', 0))
    address = sock.getsockname()
    sock.close()
    return address


def test_receives_file_in_chunks(receiver, tmp_path):
    server = DataServer([b"a" * 40, b"b" * 60]).start()
    path = tmp_path / "clip1.mp4"

    outcome = receiver.receive(server.address, path, 0, 100)
    server.stop()

    assert outcome.status == TransferStatus.COMPLETE
    assert outcome.bytes_received == 100
    assert path.read_bytes() == b"a" * 40 + b"b" * 60


def test_creates_missing_media_dir(receiver, tmp_path):
    server = DataServer([b"x" * 10]).start()
    path = tmp_path / "media" / "deep" / "a.jpg"

    outcome = receiver.receive(server.address, path, 0, 10)
    server.stop()

    assert outcome.ok
    assert path.stat().st_size == 10


def test_resume_drops_stale_tail(receiver, tmp_path):
    path = tmp_path / "clip1.mp4"
    path.write_bytes(b"a" * 40 + b"z" * 15)
    server = DataServer([b"b" * 60]).start()

    outcome = receiver.receive(server.address, path, 40, 100)
    server.stop()

    assert outcome.ok
    assert outcome.expected_bytes == 60
    assert path.read_bytes() == b"a" * 40 + b"b" * 60


def test_resume_pads_short_file(receiver, tmp_path):
    path = tmp_path / "clip1.mp4"
    path.write_bytes(b"a" * 10)
    server = DataServer([b"b" * 60]).start()

    outcome = receiver.receive(server.address, path, 40, 100)
    server.stop()

    assert outcome.ok
    data = path.read_bytes()
    assert len(data) == 100
    assert data[:10] == b"a" * 10
    assert data[40:] == b"b" * 60


def test_overrun_is_kept(tmp_path):
    receiver = FileTransferReceiver(chunk_size=80, timeout=5.0)
    server = DataServer([b"x" * 100 + b"y" * 20]).start()
    path = tmp_path / "clip1.mp4"

    outcome = receiver.receive(server.address, path, 0, 100)
    server.stop()

    assert outcome.ok
    assert outcome.overrun == 20
    assert path.stat().st_size == 120


def test_connect_failure_leaves_file_untouched(receiver, tmp_path):
    path = tmp_path / "clip1.mp4"
    path.write_bytes(b"a" * 55)

    outcome = receiver.receive(closed_port(), path, 40, 100)

    assert outcome.status == TransferStatus.CONNECT_FAILED
    assert not outcome.ok
    assert path.read_bytes() == b"a" * 55


def test_early_close_is_interrupted(receiver, tmp_path):
    server = DataServer([b"a" * 40]).start()
    path = tmp_path / "clip1.mp4"

    outcome = receiver.receive(server.address, path, 0, 100)
    server.stop()

    assert outcome.status == TransferStatus.INTERRUPTED
    assert outcome.bytes_received == 40
    # Partial data stays on disk for the next run
    assert path.stat().st_size == 40


def test_nothing_left_to_receive(receiver, tmp_path):
    path = tmp_path / "clip1.mp4"
    path.write_bytes(b"a" * 100)
    server = DataServer([]).start()

    outcome = receiver.receive(server.address, path, 100, 100)
    server.stop()

    assert outcome.ok
    assert outcome.bytes_received == 0
    assert path.stat().st_size == 100


@pytest.mark.parametrize("offset, total", [(-1, 100), (101, 100)])
def test_offset_outside_file_is_rejected(receiver, tmp_path, offset, total):
    with pytest.raises(ValueError):
        receiver.receive(closed_port(), tmp_path / "a.mp4", offset, total)


def test_progress_callback(tmp_path):
    reports = []
    ticks = itertools.count()
    receiver = FileTransferReceiver(
        timeout=5.0,
        on_progress=reports.append,
        clock=lambda: next(ticks) * 0.001,
    )
    size = 256 * 1024
    server = DataServer([b"x" * size]).start()

    outcome = receiver.receive(server.address, tmp_path / "big.mp4", 0, size)
    server.stop()

    assert outcome.ok
    assert reports
    assert all(r.filename == "big.mp4" for r in reports)
    assert all(r.received <= size for r in reports)


def test_progress_report_percent():
    assert ProgressReport("a", 25, 100, 1.0).percent == 25.0
    assert ProgressReport("a", 120, 100, 1.0).percent == 100.0
    assert ProgressReport("a", 0, 0, 0.0).percent == 100.0


class TestThroughputMeter:
    def setup_method(self):
        self.now = [0.0]
        self.meter = ThroughputMeter(clock=lambda: self.now[0], window=1.0, rise=0.5, drop=1.0)

    def tick(self, nbytes):
        self.now[0] += 1.0
        return self.meter.update(nbytes)

    def test_rate_over_window(self):
        self.now[0] = 0.5
        self.meter.update(MEGABYTE // 2)
        # Window not full yet, rate uses elapsed time
        assert self.meter.rate() == pytest.approx(1.0)

    def test_empty_meter(self):
        assert self.meter.rate() == 0.0

    def test_hysteresis(self):
        assert self.tick(MEGABYTE) == pytest.approx(1.0)
        # Small rise is not reported
        assert self.tick(int(1.4 * MEGABYTE)) is None
        assert self.tick(int(1.6 * MEGABYTE)) == pytest.approx(1.6)
        # Drops need to exceed 1 MB/s before they show
        assert self.tick(int(0.8 * MEGABYTE)) is None
        assert self.tick(MEGABYTE // 2) == pytest.approx(0.5)
        assert self.meter.last_reported == pytest.approx(0.5)

    def test_old_samples_expire(self):
        self.tick(MEGABYTE)
        self.now[0] += 5.0
        assert self.meter.rate() == 0.0
