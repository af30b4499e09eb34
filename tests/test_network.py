import socket
import threading
import time

import pytest

from extkit.network import (
    Network,
    NetworkInfo,
    NetworkType,
    PacketMessage,
    ReceiveHandler,
    convert_receive_msg,
)
from extkit.tcp_client import TcpClient


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _frame(msg_id, body):
    payload = body.encode("utf-8")
    total = 8 + len(payload)
    return total.to_bytes(4, "big") + msg_id.to_bytes(4, "big") + payload


def _connect_with_retry(port):
    client = TcpClient(None)
    deadline = time.monotonic() + 5
    while True:
        try:
            client.connect("127.0.0.1", port)
            return client
        except OSError:
            if time.monotonic() > deadline:
                raise
            time.sleep(0.05)


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_convert_receive_msg_decodes_header_and_body():
    packet = convert_receive_msg(_frame(7, "hello"))
    assert packet == PacketMessage(13, 7, "hello")


def test_convert_receive_msg_stops_body_at_nul():
    data = _frame(1, "hi") + b"\x00junk"
    assert convert_receive_msg(data).body == "hi"


def test_convert_receive_msg_reads_big_endian_fields():
    packet = convert_receive_msg(b"\x01\x02\x03\x04\xff\x00\x00\x01")
    assert packet.size == 0x01020304
    assert packet.msg_id == 0xFF000001
    assert packet.body == ""


def test_convert_receive_msg_rejects_short_header():
    with pytest.raises(ValueError):
        convert_receive_msg(b"\x00\x00\x00\x08\x00")


def test_network_info_validity():
    assert NetworkInfo("127.0.0.1", "srv", 5000, NetworkType.SERVER).is_valid()
    assert not NetworkInfo("127.0.0.1", "srv", 0, NetworkType.SERVER).is_valid()
    assert not NetworkInfo("", "srv", 5000, NetworkType.CLIENT).is_valid()
    assert not NetworkInfo("127.0.0.1", "", 5000, NetworkType.CLIENT).is_valid()
    assert not NetworkInfo("127.0.0.1", "srv", 5000, NetworkType.NONE).is_valid()


def test_connect_with_incomplete_info_raises():
    with pytest.raises(ValueError):
        Network(NetworkInfo()).connect()


def test_disconnect_role_mismatch_raises():
    client_net = Network(NetworkInfo("127.0.0.1", "c", 1, NetworkType.CLIENT))
    with pytest.raises(RuntimeError):
        client_net.disconnect("ABC")
    server_net = Network(NetworkInfo("127.0.0.1", "s", 1, NetworkType.SERVER))
    with pytest.raises(RuntimeError):
        server_net.disconnect()


def test_receive_handler_skips_empty_packets_and_delivers_others():
    calls = []
    done = threading.Event()

    def handler(connection, packet):
        calls.append((connection, packet))
        done.set()

    marker = object()
    receiver = ReceiveHandler(marker, "ID", handler)
    receiver.start()
    try:
        receiver.insert_packet(PacketMessage(0, 0, ""))
        packet = PacketMessage(13, 7, "hello")
        receiver.insert_packet(packet)
        assert done.wait(5)
    finally:
        receiver.stop()
    assert calls == [(marker, packet)]


def test_receive_handler_stops_delivering_after_stop():
    calls = []
    receiver = ReceiveHandler(None, "ID", lambda c, p: calls.append(p))
    receiver.start()
    receiver.stop()
    receiver.insert_packet(PacketMessage(9, 1, "x"))
    time.sleep(0.1)
    assert calls == []


def test_server_receives_packet_and_handles_disconnect():
    port = _free_port()
    received = []
    got = threading.Event()

    def handler(connection, packet):
        received.append(packet)
        got.set()

    network = Network(NetworkInfo("127.0.0.1", "server", port, NetworkType.SERVER))
    network.set_server_handler(handler)
    network.connect()
    client = _connect_with_retry(port)
    try:
        assert _wait_for(lambda: len(network.clients) == 1)
        uuid = network.clients[0]
        assert uuid == uuid.upper()

        client.send(_frame(7, "hello"))
        assert got.wait(5)
        assert received == [PacketMessage(13, 7, "hello")]

        client.disconnect()
        assert _wait_for(lambda: network.clients == [])
        assert network.disconnect(uuid) is False
    finally:
        client.disconnect()
        network.close()


def test_client_network_connects_and_disconnects():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        port = listener.getsockname()[1]
        network = Network(NetworkInfo("127.0.0.1", "client", port, NetworkType.CLIENT))
        network.connect()
        peer, _ = listener.accept()
        try:
            assert network.client.connected is True
            assert network.disconnect() is True
            assert network.client.connected is False
        finally:
            peer.close()
            network.close()