# sjcam/receiver.py
"""Resumable file download over the camera data channel.

After a successful GetFile response the camera streams the requested range of
the file on the data port. There is no framing: the receiver reads until it
has ``total_size - resume_offset`` bytes or the camera hangs up.
"""

import logging
import socket
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Callable, Deque, Optional, Tuple, Union

import config

MEGABYTE = 1024 * 1024


class TransferStatus(Enum):
    COMPLETE = auto()
    CONNECT_FAILED = auto()
    INTERRUPTED = auto()
    FILE_ERROR = auto()


@dataclass
class TransferOutcome:
    status: TransferStatus
    bytes_received: int = 0
    expected_bytes: int = 0

    @property
    def ok(self) -> bool:
        return self.status == TransferStatus.COMPLETE

    @property
    def overrun(self) -> int:
        """Bytes received beyond the expected count (kept in the file)."""
        return max(self.bytes_received - self.expected_bytes, 0)


@dataclass
class ProgressReport:
    filename: str
    received: int
    expected: int
    rate_mbps: float

    @property
    def percent(self) -> float:
        if not self.expected:
            return 100.0
        return min(100.0 * self.received / self.expected, 100.0)


class ThroughputMeter:
    """Rolling transfer rate with asymmetric reporting hysteresis.

    ``update`` returns the current rate in MB/s only when it is more than
    ``rise`` above or ``drop`` below the last reported rate, which keeps the
    log quiet during small slowdowns while still showing trends.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        window: float = config.PROGRESS_WINDOW_SEC,
        rise: float = config.PROGRESS_RISE_MBPS,
        drop: float = config.PROGRESS_DROP_MBPS,
    ):
        self.clock = clock
        self.window = window
        self.rise = rise
        self.drop = drop
        self.last_reported: float = 0.0
        self._start = clock()
        self._samples: Deque[Tuple[float, int]] = deque()
        self._window_bytes = 0

    def rate(self) -> float:
        """Current MB/s over the sliding window."""
        now = self.clock()
        self._expire(now)
        if self._samples:
            span = now - self._samples[0][0]
        else:
            span = 0.0
        # Early in the transfer the window is not full yet
        span = max(span, min(now - self._start, self.window))
        if span <= 0:
            return 0.0
        return self._window_bytes / span / MEGABYTE

    def update(self, nbytes: int) -> Optional[float]:
        now = self.clock()
        self._samples.append((now, nbytes))
        self._window_bytes += nbytes
        current = self.rate()
        delta = current - self.last_reported
        if delta > self.rise or delta < -self.drop:
            self.last_reported = current
            return current
        return None

    def _expire(self, now: float) -> None:
        while self._samples and now - self._samples[0][0] >= self.window:
            _, nbytes = self._samples.popleft()
            self._window_bytes -= nbytes


class FileTransferReceiver:
    """
    Blocking receiver for one file on the data channel.

    Data-channel problems never raise: they are logged and returned as a
    ``TransferOutcome`` so the session can move on to the next file. Running
    the tool again resumes from the size left on disk.
    """

    def __init__(
        self,
        chunk_size: int = config.RECEIVE_CHUNK_SIZE,
        timeout: Optional[float] = config.DATA_TIMEOUT,
        on_progress: Optional[Callable[[ProgressReport], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        logger=None,
    ):
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.on_progress = on_progress
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    def receive(
        self,
        address: Tuple[str, int],
        local_path: Union[str, Path],
        resume_offset: int,
        total_size: int,
    ) -> TransferOutcome:
        if not 0 <= resume_offset <= total_size:
            raise ValueError(f"resume offset {resume_offset} outside of file size {total_size}")

        local_path = Path(local_path)
        expected = total_size - resume_offset
        host, port = address

        self.logger.info(f"[RECEIVER] Connect to data channel: {host}:{port}")
        try:
            sock = socket.create_connection(address, timeout=self.timeout)
        except OSError as e:
            self.logger.error(f"[RECEIVER] ... connection to {host}:{port} failed: {e}")
            return TransferOutcome(TransferStatus.CONNECT_FAILED, 0, expected)

        with sock:
            try:
                local_path.parent.mkdir(parents=True, exist_ok=True)
                f = open(local_path, "ab")
            except OSError as e:
                self.logger.error(f"[RECEIVER] ... cannot open {local_path}: {e}")
                return TransferOutcome(TransferStatus.FILE_ERROR, 0, expected)

            with f:
                self.logger.info(
                    f"[RECEIVER] Download task for file: {local_path.name!r} "
                    f"(full size: {total_size}, remaining: {expected})"
                )
                try:
                    # Drop a stale tail or pad a short file so appends land at resume_offset
                    f.truncate(resume_offset)
                except OSError as e:
                    self.logger.error(f"[RECEIVER] ... truncate to {resume_offset} bytes failed: {e}")
                    return TransferOutcome(TransferStatus.FILE_ERROR, 0, expected)
                return self._stream(sock, f, local_path.name, expected)

    def _stream(self, sock: socket.socket, f, filename: str, expected: int) -> TransferOutcome:
        received = 0
        meter = ThroughputMeter(clock=self.clock)

        while received < expected:
            try:
                chunk = sock.recv(self.chunk_size)
            except OSError as e:
                self.logger.error(f"[RECEIVER] File not received by error: {e} ({received}/{expected} bytes)")
                return TransferOutcome(TransferStatus.INTERRUPTED, received, expected)
            if not chunk:
                self.logger.error(
                    f"[RECEIVER] Connection closed early: {received}/{expected} bytes of {filename}"
                )
                return TransferOutcome(TransferStatus.INTERRUPTED, received, expected)

            try:
                f.write(chunk)
            except OSError as e:
                self.logger.error(f"[RECEIVER] Write to {filename} failed: {e}")
                return TransferOutcome(TransferStatus.FILE_ERROR, received, expected)
            received += len(chunk)

            rate = meter.update(len(chunk))
            if rate is not None:
                self._report(ProgressReport(filename, received, expected, rate))

        outcome = TransferOutcome(TransferStatus.COMPLETE, received, expected)
        self.logger.info(f"[RECEIVER] ✓ Download complete: {outcome.overrun} trail bytes")
        return outcome

    def _report(self, report: ProgressReport) -> None:
        if self.on_progress is not None:
            self.on_progress(report)
            return
        self.logger.info(
            f"[RECEIVER] {report.filename}: {report.percent:5.1f}% "
            f"({report.received}/{report.expected} bytes) {report.rate_mbps:.2f} MB/s"
        )
