# tests/test_control_channel.py
import json
import socket

import pytest

from sjcam.control_channel import ControlChannel, ControlChannelClosed, JsonStreamSplitter
from sjcam.protocol.messages import GetFileRequest, TokenRequest


class TestJsonStreamSplitter:
    def test_single_document(self):
        splitter = JsonStreamSplitter()
        assert splitter.feed(b'{"rval": 0, "msg_id": 257, "param": 1}') == [
            '{"rval": 0, "msg_id": 257, "param": 1}'
        ]
        assert splitter.pending == ""

    def test_back_to_back_documents(self):
        splitter = JsonStreamSplitter()
        docs = splitter.feed(b'{"msg_id": 13}{"msg_id": 261}  {"msg_id": 7}')
        assert [json.loads(d)["msg_id"] for d in docs] == [13, 261, 7]

    def test_document_split_across_reads(self):
        splitter = JsonStreamSplitter()
        assert splitter.feed(b'{"rval": 0, "msg_id": 2049, "param": ["a.mp4,1",') == []
        assert splitter.feed(b' "b.mp4,2"]}{"msg') == ['{"rval": 0, "msg_id": 2049, "param": ["a.mp4,1", "b.mp4,2"]}']
        assert splitter.pending == '{"msg'

    def test_braces_inside_strings(self):
        splitter = JsonStreamSplitter()
        raw = '{"param": "we}ird{ \\"name\\" }", "msg_id": 1}'
        assert splitter.feed(raw.encode("utf-8")) == [raw]

    def test_multibyte_character_split(self):
        splitter = JsonStreamSplitter()
        data = '{"model": "Kamera ü"}'.encode("utf-8")
        cut = data.index(b"\xc3") + 1
        assert splitter.feed(data[:cut]) == []
        assert splitter.feed(data[cut:]) == ['{"model": "Kamera ü"}']

    def test_garbage_before_document(self):
        splitter = JsonStreamSplitter()
        assert splitter.feed(b'garbage {"msg_id": 7}') == ["garbage", '{"msg_id": 7}']


@pytest.fixture
def channel_pair():
    ours, theirs = socket.socketpair()
    channel = ControlChannel(("192.168.42.1", 7878))
    channel.sock = ours
    yield channel, theirs
    channel.close()
    theirs.close()


def test_send_writes_json(channel_pair):
    channel, camera = channel_pair
    channel.send(GetFileRequest(3, 40, "/tmp/SD0/DCIM/100MEDIA/a.mp4"))
    received = json.loads(camera.recv(4096).decode("utf-8"))
    assert received == {"msg_id": 1285, "token": 3, "offset": 40, "param": "/tmp/SD0/DCIM/100MEDIA/a.mp4"}


def test_receive_returns_documents_in_order(channel_pair):
    channel, camera = channel_pair
    camera.sendall(b'{"rval": 0, "msg_id": 257, "param": 4}{"rval": 0, "msg_id": 11, "media_folder": "/x"}')
    assert json.loads(channel.receive())["msg_id"] == 257
    assert json.loads(channel.receive())["msg_id"] == 11


def test_receive_after_camera_hangs_up(channel_pair):
    channel, camera = channel_pair
    camera.sendall(b'{"msg_id": 7}')
    camera.close()
    assert channel.receive() == '{"msg_id": 7}'
    with pytest.raises(ControlChannelClosed):
        channel.receive()


def test_unconnected_channel():
    channel = ControlChannel(("192.168.42.1", 7878))
    with pytest.raises(ControlChannelClosed):
        channel.send(TokenRequest())
    with pytest.raises(ControlChannelClosed):
        channel.receive()


def test_connect_failure_is_channel_closed():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('127.0.0.1', 0))
    address = sock.getsockname()
    sock.close()

    with pytest.raises(ControlChannelClosed):
        ControlChannel(address, timeout=2.0).connect()


def test_context_manager_connects_and_closes():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(('127.0.0.1', 0))
    server.listen(1)
    try:
        with ControlChannel(server.getsockname(), timeout=2.0) as channel:
            assert channel.sock is not None
        assert channel.sock is None
    finally:
        server.close()
