# sjcam/control_channel.py
"""TCP transport for the JSON control channel.

The camera writes JSON objects back to back without any delimiter, and a
single recv() may hold half an object or several of them. ``JsonStreamSplitter``
cuts the byte stream into one raw document per object; decoding the
documents is left to the dispatcher.
"""

import codecs
import json
import logging
import socket
from typing import List, Optional, Tuple


class ControlChannelClosed(ConnectionError):
    """The control connection is gone. Fatal for the session."""


class JsonStreamSplitter:
    """Splits concatenated JSON objects into raw text documents.

    Brace depth is tracked outside of string literals, so a document is
    complete as soon as its outermost object closes. Text that does not start
    an object is returned on its own so the caller can report it.
    """

    def __init__(self):
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, data: bytes) -> List[str]:
        self._buffer += self._decoder.decode(data)
        documents = []
        while True:
            document = self._next_document()
            if document is None:
                return documents
            documents.append(document)

    @property
    def pending(self) -> str:
        return self._buffer

    def _next_document(self) -> Optional[str]:
        buf = self._buffer
        start = len(buf) - len(buf.lstrip())
        if start == len(buf):
            self._buffer = ""
            return None

        if buf[start] != "{":
            end = buf.find("{", start)
            if end == -1:
                end = len(buf)
            self._buffer = buf[end:]
            return buf[start:end].strip()

        depth = 0
        in_string = False
        escape = False
        for i in range(start, len(buf)):
            ch = buf[i]
            if in_string:
                if escape:
                    escape = False
                elif ch == "\\":
                    escape = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch in "{[":
                depth += 1
            elif ch in "}]":
                depth -= 1
                if depth == 0:
                    self._buffer = buf[i + 1:]
                    return buf[start:i + 1]
        # Incomplete, wait for more bytes
        return None


class ControlChannel:
    """Blocking request/response stream on the camera control port."""

    RECV_SIZE = 4096

    def __init__(self, address: Tuple[str, int], timeout: Optional[float] = None, logger=None):
        self.address = address
        self.timeout = timeout
        self.sock: Optional[socket.socket] = None
        self.logger = logger or logging.getLogger(__name__)
        self._splitter = JsonStreamSplitter()
        self._ready: List[str] = []

    def connect(self) -> "ControlChannel":
        host, port = self.address
        self.logger.info(f"[CONTROL] Connecting to {host}:{port}...")
        try:
            self.sock = socket.create_connection(self.address, timeout=self.timeout)
        except OSError as e:
            raise ControlChannelClosed(f"Cannot connect to {host}:{port}: {e}") from e
        self.logger.info(f"[CONTROL] ✓ Connected to {host}:{port}")
        return self

    def close(self):
        if self.sock:
            try:
                self.sock.close()
            finally:
                self.sock = None

    def __enter__(self):
        if self.sock is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def send(self, request) -> None:
        """Encode a request dataclass and write it to the camera."""
        if self.sock is None:
            raise ControlChannelClosed("Control channel is not connected")
        document = request.to_dict()
        payload = json.dumps(document).encode("utf-8")
        self.logger.debug(f"[CONTROL] → {document}")
        try:
            self.sock.sendall(payload)
        except OSError as e:
            raise ControlChannelClosed(f"Send failed: {e}") from e

    def receive(self) -> str:
        """Block until the next complete document arrives and return its raw text."""
        if self.sock is None:
            raise ControlChannelClosed("Control channel is not connected")
        while not self._ready:
            try:
                data = self.sock.recv(self.RECV_SIZE)
            except OSError as e:
                raise ControlChannelClosed(f"Receive failed: {e}") from e
            if not data:
                raise ControlChannelClosed("Camera closed the control connection")
            self._ready.extend(self._splitter.feed(data))
        raw = self._ready.pop(0)
        self.logger.debug(f"[CONTROL] ← {raw}")
        return raw
