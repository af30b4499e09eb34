import socket
import ssl
import threading

import pytest

from extkit.tls_client import TlsClient


def _client():
    logs = []
    return TlsClient(logs.append), logs


def _closed_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _garbage_server():
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.bind(("127.0.0.1", 0))
    srv.listen(1)

    def serve():
        try:
            conn, _ = srv.accept()
            with conn:
                conn.recv(4096)
                conn.sendall(b"HTTP/1.0 400 Bad Request\r\n\r\n")
                conn.recv(4096)
        except OSError:
            pass

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    return srv, thread


def test_send_without_connection():
    client, logs = _client()
    with pytest.raises(ConnectionError):
        client.send(b"data")
    assert logs == [
        "[TCPSSLClient][Error] SSL send failed : not connected to an SSL server."
    ]


def test_receive_without_connection():
    client, logs = _client()
    with pytest.raises(ConnectionError):
        client.receive(16)
    assert logs == [
        "[TCPSSLClient][Error] SSL recv failed : not connected to a server."
    ]


def test_receive_rejects_non_positive_size():
    client, _ = _client()
    with pytest.raises(ValueError):
        client.receive(0)


def test_pending_without_connection():
    client, _ = _client()
    with pytest.raises(ConnectionError):
        client.pending_bytes()
    with pytest.raises(ConnectionError):
        client.has_pending()


def test_timeouts_without_connection():
    client, _ = _client()
    with pytest.raises(ConnectionError):
        client.set_rcv_timeout(100)
    with pytest.raises(ConnectionError):
        client.set_snd_timeout(100)


def test_disconnect_when_not_connected():
    client, logs = _client()
    client.disconnect()
    assert client.connected is False
    assert logs == []


def test_connect_refused_is_logged():
    client, logs = _client()
    with pytest.raises(ConnectionError):
        client.connect("127.0.0.1", _closed_port())
    assert logs[-1] == (
        "[TCPSSLClient][Error] Unable to establish a TCP connection with the server."
    )
    assert client.connected is False


def test_handshake_failure_against_plain_server():
    srv, thread = _garbage_server()
    try:
        client, logs = _client()
        with pytest.raises(ssl.SSLError):
            client.connect("127.0.0.1", srv.getsockname()[1])
        assert client.connected is False
        assert logs[-1].startswith("[TCPSSLClient][Error] SSL_connect failed (Error=")
    finally:
        thread.join(timeout=5)
        srv.close()


def test_context_manager_leaves_client_disconnected():
    with TlsClient() as client:
        with pytest.raises(ConnectionError):
            client.connect("127.0.0.1", _closed_port())
    assert client.connected is False