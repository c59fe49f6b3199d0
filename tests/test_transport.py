from __future__ import annotations

import array
import hashlib
import json
import os
import socket
import threading
import time

import pytest

from cftp.constants import END_OF_STREAM, TYPE_FILE
from cftp.exceptions import (
    AlreadyClosedError,
    AlreadyConnectedError,
    ConnectionError,
    DecodeError,
    NotConnectedError,
)
from cftp.message import FileRequest, FileResponse, pack_frame
from cftp.transport import ContentFileTransporter, SocketTransporter


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    ta, tb = SocketTransporter(a), SocketTransporter(b)
    yield ta, tb
    ta.close()
    tb.close()


@pytest.fixture
def listener():
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.bind(("127.0.0.1", 0))
    srv.listen(1)
    yield srv
    srv.close()


def test_implements_protocol(pair):
    ta, _ = pair
    assert isinstance(ta, ContentFileTransporter)


def test_end_to_end_transfer(pair):
    client, server = pair
    body = os.urandom(1000)
    digest = hashlib.md5(body).hexdigest()

    request = FileRequest(type=TYPE_FILE, content_file_id="abc", range_start=0, range_end=999)
    client.send_request(request)
    assert server.receive_request() == request

    response = FileResponse(status=200, type=TYPE_FILE, content_length=1000, md5=digest)
    server.send_response(response)
    server.send_raw_bytes(body)
    assert client.receive_response() == response

    buf = bytearray(1000)
    got = 0
    while got < 1000:
        n = client.read_raw_bytes(buf, got, 1000 - got)
        assert n > 0
        got += n
    assert bytes(buf) == body


def test_send_raw_bytes_offset_and_length(pair):
    ta, tb = pair
    ta.send_raw_bytes(b"0123456789", 3, 4)
    buf = bytearray(8)
    n = tb.read_raw_bytes(buf, 2, 4)
    assert n > 0
    assert bytes(buf[2 : 2 + n]) == b"3456"[:n]


def test_raw_bounds_checked(pair):
    ta, _ = pair
    with pytest.raises(ValueError):
        ta.send_raw_bytes(b"abc", 2, 5)
    with pytest.raises(ValueError):
        ta.read_raw_bytes(bytearray(4), -1, 2)


def test_read_zero_length(pair):
    ta, _ = pair
    assert ta.read_raw_bytes(bytearray(4), 0, 0) == 0


def test_read_raw_end_of_stream(pair):
    ta, tb = pair
    tb.close()
    assert ta.read_raw_bytes(bytearray(16)) == END_OF_STREAM


def test_stream_accessors_share_handles(pair):
    ta, tb = pair
    out = ta.get_output_stream()
    assert out is ta.get_output_stream()
    out.write(FileResponse(status=404).to_frame())
    out.flush()
    assert tb.receive_response().status == 404
    assert tb.get_input_stream() is tb.get_input_stream()


def test_peer_closes_mid_frame(pair):
    ta, tb = pair
    tb.send_raw_bytes(b"\x00\x40{\"type\"")
    tb.close()
    with pytest.raises(ConnectionError):
        ta.receive_request()


def test_missing_field_is_decode_error(pair):
    ta, tb = pair
    obj = FileResponse().to_dict()
    del obj["md5"]
    tb.send_raw_bytes(pack_frame(json.dumps(obj)))
    with pytest.raises(DecodeError) as exc:
        ta.receive_response()
    assert exc.value.field == "md5"


def test_normalization_applied_on_receive(pair):
    ta, tb = pair
    tb.send_request(FileRequest(content_file_id="x", range_start=50, range_end=10, page=-10))
    req = ta.receive_request()
    assert (req.range_start, req.range_end, req.page) == (0, -1, -1)


def test_not_connected():
    t = SocketTransporter()
    try:
        assert not t.is_closed
        with pytest.raises(NotConnectedError):
            t.send_request(FileRequest())
        with pytest.raises(NotConnectedError):
            t.receive_request()
        with pytest.raises(NotConnectedError):
            t.send_response(FileResponse())
        with pytest.raises(NotConnectedError):
            t.receive_response()
        with pytest.raises(NotConnectedError):
            t.send_raw_bytes(b"x")
        with pytest.raises(NotConnectedError):
            t.read_raw_bytes(bytearray(1))
        with pytest.raises(NotConnectedError):
            t.get_input_stream()
        with pytest.raises(NotConnectedError):
            t.get_output_stream()
    finally:
        t.close()


def test_connect_then_reject_second_connect(listener):
    t = SocketTransporter()
    try:
        t.connect(listener.getsockname())
        conn, _ = listener.accept()
        with SocketTransporter(conn) as peer:
            t.send_request(FileRequest(content_file_id="abc"))
            assert peer.receive_request().content_file_id == "abc"
            with pytest.raises(AlreadyConnectedError):
                t.connect(listener.getsockname())
    finally:
        t.close()


def test_connect_refused_is_connection_error():
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    address = probe.getsockname()
    probe.close()

    t = SocketTransporter()
    try:
        with pytest.raises(ConnectionError):
            t.connect(address)
    finally:
        t.close()


def test_closed_socket_at_construction():
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.close()
    t = SocketTransporter(s)
    assert t.is_closed
    with pytest.raises(AlreadyClosedError):
        t.connect(("127.0.0.1", 1))


def test_everything_fails_after_close(pair):
    ta, _ = pair
    ta.close()
    assert ta.is_closed
    calls = [
        lambda: ta.connect(("127.0.0.1", 1)),
        lambda: ta.send_request(FileRequest()),
        lambda: ta.receive_request(),
        lambda: ta.send_response(FileResponse()),
        lambda: ta.receive_response(),
        lambda: ta.send_raw_bytes(b"x"),
        lambda: ta.read_raw_bytes(bytearray(1)),
        lambda: ta.get_input_stream(),
        lambda: ta.get_output_stream(),
    ]
    for call in calls:
        with pytest.raises(AlreadyClosedError):
            call()


def test_close_twice(pair):
    ta, _ = pair
    ta.close()
    ta.close()
    assert ta.is_closed


def test_close_unconnected():
    t = SocketTransporter()
    t.close()
    assert t.is_closed


def test_concurrent_sends_do_not_interleave(pair):
    ta, tb = pair
    per_thread = 200

    def writer(tag: str) -> None:
        for i in range(per_thread):
            ta.send_request(FileRequest(content_file_id=f"{tag}-{i}", custom_data=tag * 500))

    threads = [threading.Thread(target=writer, args=(tag,)) for tag in ("a", "b")]
    for th in threads:
        th.start()

    seen = {"a": [], "b": []}
    for _ in range(2 * per_thread):
        req = tb.receive_request()
        tag, index = req.content_file_id.split("-")
        assert req.custom_data == tag * 500
        seen[tag].append(int(index))

    for th in threads:
        th.join()
    assert seen["a"] == list(range(per_thread))
    assert seen["b"] == list(range(per_thread))


def test_is_closed_does_not_block_and_shutdown_unblocks_receive(pair):
    ta, _ = pair
    errors = []
    started = threading.Event()

    def receiver() -> None:
        started.set()
        try:
            ta.receive_request()
        except ConnectionError as e:
            errors.append(e)

    th = threading.Thread(target=receiver)
    th.start()
    started.wait()
    deadline = time.monotonic() + 5.0
    while not ta._lock.locked() and time.monotonic() < deadline:
        time.sleep(0.01)
    assert ta._lock.locked()
    assert ta.is_closed is False

    ta.sock.shutdown(socket.SHUT_RDWR)
    th.join(timeout=5.0)
    assert not th.is_alive()
    assert len(errors) == 1


def test_nested_frame_is_decode_error(pair):
    ta, tb = pair
    tb.send_raw_bytes(pack_frame("[" * 60000))
    with pytest.raises(DecodeError):
        ta.receive_request()


class _BrokenStream:
    def close(self) -> None:
        raise OSError("close failed")


def test_close_continues_past_failing_resource():
    a, b = socket.socketpair()
    ta = SocketTransporter(a)
    ta._input.close()
    ta._input = _BrokenStream()
    try:
        ta.close()
        assert ta.is_closed
        assert a.fileno() == -1
    finally:
        b.close()


def test_raw_offsets_count_bytes_for_wide_buffers(pair):
    ta, tb = pair
    words = array.array("i", [0x01020304, 0x05060708])
    ta.send_raw_bytes(words, 4, 4)
    buf = bytearray(4)
    got = 0
    while got < 4:
        got += tb.read_raw_bytes(buf, got, 4 - got)
    assert bytes(buf) == words.tobytes()[4:]
