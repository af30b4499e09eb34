"""TCP server speaking the size/message-id framed protocol.

A message is an 8-byte header followed by its body: a 4-byte big-endian
total size (header included) and a 4-byte message identifier.
"""

from __future__ import annotations

import socket
import time

from extkit.sockets import (
    LogCallback,
    ResolveError,
    SettingsFlag,
    SocketBase,
    select_socket,
)

HEADER_FIELD_SIZE = 4
_WSAENOBUFS = 10055
_NOBUFS_RETRIES = 1000


def _is_no_buffers(exc: OSError) -> bool:
    return getattr(exc, "winerror", None) == _WSAENOBUFS


def _recv_field(sock: socket.socket) -> bytes:
    """Read one 4-byte header field; empty if the peer closed first."""
    field = bytearray()
    while len(field) < HEADER_FIELD_SIZE:
        chunk = sock.recv(HEADER_FIELD_SIZE - len(field))
        if not chunk:
            return b""
        field += chunk
    return bytes(field)


class TcpServer(SocketBase):
    """A listening TCP endpoint on every local IPv4 address."""

    def __init__(
        self,
        logger: LogCallback | None = None,
        port: int | str = 0,
        settings: SettingsFlag = SettingsFlag.ALL_FLAGS,
    ) -> None:
        super().__init__(logger, settings)
        try:
            addresses = socket.getaddrinfo(
                None,
                str(port),
                socket.AF_INET,
                socket.SOCK_STREAM,
                socket.IPPROTO_TCP,
                socket.AI_PASSIVE,
            )
        except socket.gaierror as exc:
            raise ResolveError(
                f"[TCPServer][Error] getaddrinfo failed : {exc.strerror}"
            ) from exc
        self._address = addresses[0][4]
        self._listen_sock: socket.socket | None = None

    @property
    def port(self) -> int | None:
        """The port being listened on, or None before the first listen."""
        if self._listen_sock is None:
            return None
        return self._listen_sock.getsockname()[1]

    def _ensure_listening(self) -> socket.socket:
        if self._listen_sock is not None:
            return self._listen_sock
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as exc:
            self.log(f"[TCPServer][Error] opening socket : {exc.strerror}")
            raise
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        except OSError:
            self.log(
                "[TCPServer][Error] CTCPServer::Listen : "
                "Socket error in SO_REUSEADDR call to setsockopt."
            )
            sock.close()
            raise
        try:
            sock.bind(self._address)
        except OSError as exc:
            self.log(f"[TCPServer][Error] bind failed : {exc.strerror}")
            sock.close()
            raise
        try:
            sock.listen(socket.SOMAXCONN)
        except OSError as exc:
            self.log(f"[TCPServer][Error] listen failed : {exc.strerror}")
            sock.close()
            raise
        self._listen_sock = sock
        return sock

    def listen(self, msec: int | None = None) -> socket.socket:
        """Accept one client connection and return its socket.

        With msec given, wait at most that many milliseconds for a client
        (0 waits without limit) and raise TimeoutError when none arrives;
        with msec None, block until a client connects.
        """
        sock = self._ensure_listening()

        if msec is not None:
            try:
                ready = select_socket(sock, msec)
            except (OSError, ValueError):
                self.log(
                    "[TCPServer][Error] CTCPServer::Listen : Error selecting socket."
                )
                raise
            if not ready:
                message = "[TCPServer][Error] CTCPServer::Listen : Timed out."
                self.log(message)
                raise TimeoutError(message)

        try:
            client, (host, port) = sock.accept()
        except OSError as exc:
            self.log(f"[TCPServer][Error] accept failed : {exc.strerror}")
            raise

        self.log(f"[TCPServer][Info] Incoming connection from '{host}' port '{port}'")
        return client

    def receive(
        self, client: socket.socket, size: int, read_fully: bool = True
    ) -> bytes:
        """Receive one framed message from client, header included.

        The header's total size bounds the read; a total size of 0 falls
        back to size. With read_fully the body is read until complete or
        the peer closes; otherwise a single read follows the header. An
        empty result means the peer closed the connection.
        """
        if size <= 0:
            raise ValueError("size must be positive")
        if client.fileno() < 0:
            raise ValueError("invalid client socket")

        size_field = _recv_field(client)
        if not size_field:
            return b""
        total_size = int.from_bytes(size_field, "big")
        limit = total_size if total_size > 0 else size

        id_field = _recv_field(client)
        if not id_field:
            return b""

        data = bytearray(size_field + id_field)
        tries = 0
        while True:
            remaining = limit - len(data)
            if remaining <= 0:
                break
            try:
                chunk = client.recv(remaining)
            except OSError as exc:
                if _is_no_buffers(exc):
                    if tries < _NOBUFS_RETRIES:
                        tries += 1
                        time.sleep(0.001)
                        continue
                    self.log("[TCPServer][Error] Socket error in call to recv.")
                    break
                raise
            if not chunk:
                break
            data += chunk
            if not read_fully:
                break
        return bytes(data)

    def send(self, client: socket.socket, data: bytes | bytearray | str) -> None:
        """Send all of data to client; text is encoded as UTF-8."""
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if not payload:
            raise ValueError("nothing to send")
        if client.fileno() < 0:
            raise ValueError("invalid client socket")
        try:
            client.sendall(payload)
        except OSError:
            self.log("[TCPServer][Error] Socket error in call to send.")
            raise

    def disconnect(self, client: socket.socket) -> None:
        """Close a client connection."""
        client.close()

    def set_rcv_timeout(self, client: socket.socket, msec: int) -> None:
        """Bound blocking receives on client to msec milliseconds; 0 disables."""
        self._set_timeout(
            client,
            socket.SO_RCVTIMEO,
            msec,
            "[TCPServer][Error] CTCPServer::SetRcvTimeout : "
            "Socket error in SO_RCVTIMEO call to setsockopt.",
        )

    def set_snd_timeout(self, client: socket.socket, msec: int) -> None:
        """Bound blocking sends on client to msec milliseconds; 0 disables."""
        self._set_timeout(
            client,
            socket.SO_SNDTIMEO,
            msec,
            "[TCPServer][Error] CTCPServer::SetSndTimeout : "
            "Socket error in SO_SNDTIMEO call to setsockopt.",
        )

    def close(self) -> None:
        """Close the listening socket."""
        if self._listen_sock is not None:
            sock, self._listen_sock = self._listen_sock, None
            sock.close()

    def __enter__(self) -> TcpServer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()