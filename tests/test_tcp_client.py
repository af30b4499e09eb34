import socket
import struct

import pytest

from extkit.sockets import ResolveError, SettingsFlag
from extkit.tcp_client import TcpClient


@pytest.fixture
def listener():
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.bind(("127.0.0.1", 0))
    srv.listen(4)
    yield srv
    srv.close()


@pytest.fixture
def messages():
    return []


@pytest.fixture
def client(messages):
    c = TcpClient(messages.append)
    yield c
    c.disconnect()


def _connect(client, listener):
    client.connect("127.0.0.1", listener.getsockname()[1])
    peer, _ = listener.accept()
    return peer


def test_connect_and_fileno(client, listener):
    assert client.fileno() == -1
    peer = _connect(client, listener)
    try:
        assert client.connected
        assert client.fileno() >= 0
        client.disconnect()
        assert not client.connected
        assert client.fileno() == -1
    finally:
        peer.close()


def test_send_reaches_peer(client, listener):
    peer = _connect(client, listener)
    try:
        client.send(b"abc")
        client.send("de")
        received = b""
        while len(received) < 5:
            received += peer.recv(16)
        assert received == b"abcde"
    finally:
        peer.close()


def test_receive_full_frame(client, listener):
    peer = _connect(client, listener)
    try:
        frame = struct.pack(">II", 13, 7) + b"hello"
        peer.sendall(frame)
        assert client.receive(1024) == frame
    finally:
        peer.close()


def test_receive_zero_size_uses_buffer_limit(client, listener):
    peer = _connect(client, listener)
    header = struct.pack(">II", 0, 1)
    peer.sendall(header + b"abcd")
    peer.close()
    assert client.receive(10) == header + b"ab"


def test_receive_stops_when_peer_closes(client, listener):
    peer = _connect(client, listener)
    header = struct.pack(">II", 100, 2)
    peer.sendall(header + b"xyz")
    peer.close()
    assert client.receive(1024) == header + b"xyz"


def test_receive_not_fully_single_read(client, listener):
    peer = _connect(client, listener)
    try:
        header = struct.pack(">II", 100, 3)
        peer.sendall(header + b"abc")
        data = client.receive(1024, read_fully=False)
        assert data.startswith(header)
        assert len(data) <= 11
    finally:
        peer.close()


def test_receive_closed_before_header(client, listener):
    peer = _connect(client, listener)
    peer.close()
    assert client.receive(64) == b""


def test_send_not_connected(client, messages):
    with pytest.raises(ConnectionError):
        client.send(b"data")
    assert messages == ["[TCPClient][Error] send failed : not connected to a server."]


def test_receive_not_connected(client, messages):
    with pytest.raises(ConnectionError):
        client.receive(16)
    assert messages == ["[TCPClient][Error] recv failed : not connected to a server."]


def test_send_empty_rejected(client, listener):
    peer = _connect(client, listener)
    try:
        with pytest.raises(ValueError):
            client.send(b"")
    finally:
        peer.close()


def test_reconnect_logs_warning(client, listener, messages):
    first = _connect(client, listener)
    second = _connect(client, listener)
    try:
        assert client.connected
        assert any("[TCPClient][Warning]" in m for m in messages)
    finally:
        first.close()
        second.close()


def test_connect_refused(client, messages):
    tmp = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    tmp.bind(("127.0.0.1", 0))
    port = tmp.getsockname()[1]
    tmp.close()
    with pytest.raises(ConnectionError):
        client.connect("127.0.0.1", port)
    assert messages[-1] == "[TCPClient][Error] no such host."
    assert not client.connected


def test_connect_unknown_service(client):
    with pytest.raises(ResolveError):
        client.connect("127.0.0.1", "notaport")


def test_rcv_timeout_expires(client, listener):
    peer = _connect(client, listener)
    try:
        client.set_rcv_timeout(100)
        with pytest.raises(OSError):
            client.receive(16)
    finally:
        peer.close()


def test_timeout_not_connected_raises(client, messages):
    with pytest.raises(ConnectionError):
        client.set_snd_timeout(100)
    assert "SO_SNDTIMEO" in messages[-1]


def test_logging_disabled(listener):
    messages = []
    quiet = TcpClient(messages.append, SettingsFlag.NO_FLAGS)
    with pytest.raises(ConnectionError):
        quiet.send(b"x")
    assert messages == []


def test_context_manager_disconnects(listener):
    with TcpClient() as c:
        peer = _connect(c, listener)
        assert c.connected
    peer.close()
    assert not c.connected