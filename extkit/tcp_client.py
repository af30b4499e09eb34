"""TCP client speaking the size/message-id framed protocol.

A message is an 8-byte header followed by its body: a 4-byte big-endian
total size (header included) and a 4-byte message identifier.
"""

from __future__ import annotations

import socket
import time

from extkit.sockets import (
    INVALID_SOCKET,
    LogCallback,
    ResolveError,
    SettingsFlag,
    SocketBase,
)

HEADER_FIELD_SIZE = 4
_WSAENOBUFS = 10055
_NOBUFS_RETRIES = 1000


def _is_no_buffers(exc: OSError) -> bool:
    return getattr(exc, "winerror", None) == _WSAENOBUFS


class TcpClient(SocketBase):
    """A TCP connection to one server."""

    def __init__(
        self,
        logger: LogCallback | None = None,
        settings: SettingsFlag = SettingsFlag.ALL_FLAGS,
    ) -> None:
        super().__init__(logger, settings)
        self._sock: socket.socket | None = None

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def fileno(self) -> int:
        """The connected socket's descriptor, or -1 when not connected."""
        return self._sock.fileno() if self._sock is not None else INVALID_SOCKET

    def connect(self, server: str, port: int | str) -> None:
        """Connect to server:port over IPv4, replacing any open connection.

        Raises ResolveError when the address cannot be resolved and
        ConnectionError when no resolved address accepts the connection.
        """
        if self.connected:
            self.disconnect()
            self.log(
                "[TCPClient][Warning] Opening a new connexion. "
                "The last one was automatically closed."
            )

        try:
            addresses = socket.getaddrinfo(
                server, str(port), socket.AF_INET, socket.SOCK_STREAM
            )
        except socket.gaierror as exc:
            message = f"[TCPClient][Error] getaddrinfo failed : {exc.strerror}"
            self.log(message)
            raise ResolveError(message) from exc

        for family, socktype, proto, _, address in addresses:
            try:
                sock = socket.socket(family, socktype, proto)
            except OSError:
                continue
            try:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                sock.connect(address)
            except OSError:
                sock.close()
                continue
            self._sock = sock
            return

        message = "[TCPClient][Error] no such host."
        self.log(message)
        raise ConnectionError(message)

    def disconnect(self) -> None:
        """Close the connection; does nothing when not connected."""
        if self._sock is None:
            return
        sock, self._sock = self._sock, None
        sock.close()

    def _require_socket(self, message: str) -> socket.socket:
        if self._sock is None:
            self.log(message)
            raise ConnectionError(message)
        return self._sock

    def send(self, data: bytes | bytearray | str) -> None:
        """Send all of data; text is encoded as UTF-8."""
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if not payload:
            raise ValueError("nothing to send")
        sock = self._require_socket(
            "[TCPClient][Error] send failed : not connected to a server."
        )
        try:
            sock.sendall(payload)
        except OSError:
            self.log("[TCPClient][Error] Socket error in call to send.")
            raise

    def _recv_field(self, sock: socket.socket) -> bytes:
        """Read one 4-byte header field; empty if the peer closed first."""
        field = bytearray()
        while len(field) < HEADER_FIELD_SIZE:
            chunk = sock.recv(HEADER_FIELD_SIZE - len(field))
            if not chunk:
                return b""
            field += chunk
        return bytes(field)

    def receive(self, size: int, read_fully: bool = True) -> bytes:
        """Receive one framed message, header included.

        The header's total size bounds the read; a total size of 0 falls
        back to size. With read_fully the body is read until complete or
        the peer closes; otherwise a single read follows the header. An
        empty result means the peer closed the connection.
        """
        if size <= 0:
            raise ValueError("size must be positive")
        sock = self._require_socket(
            "[TCPClient][Error] recv failed : not connected to a server."
        )

        size_field = self._recv_field(sock)
        if not size_field:
            return b""
        total_size = int.from_bytes(size_field, "big")
        limit = total_size if total_size > 0 else size

        id_field = self._recv_field(sock)
        if not id_field:
            return b""

        data = bytearray(size_field + id_field)
        tries = 0
        while True:
            remaining = limit - len(data)
            if remaining <= 0:
                break
            try:
                chunk = sock.recv(remaining)
            except OSError as exc:
                if _is_no_buffers(exc):
                    if tries < _NOBUFS_RETRIES:
                        tries += 1
                        time.sleep(0.001)
                        continue
                    self.log("[TCPClient][Error] Socket error in call to recv.")
                    break
                raise
            if not chunk:
                break
            data += chunk
            if not read_fully:
                break
        return bytes(data)

    def set_rcv_timeout(self, msec: int) -> None:
        """Bound blocking receives to msec milliseconds; 0 disables."""
        self._set_timeout(
            self._sock,
            socket.SO_RCVTIMEO,
            msec,
            "[TCPServer][Error] CTCPClient::SetRcvTimeout : "
            "Socket error in SO_RCVTIMEO call to setsockopt.",
        )

    def set_snd_timeout(self, msec: int) -> None:
        """Bound blocking sends to msec milliseconds; 0 disables."""
        self._set_timeout(
            self._sock,
            socket.SO_SNDTIMEO,
            msec,
            "[TCPServer][Error] CTCPClient::SetSndTimeout : "
            "Socket error in SO_SNDTIMEO call to setsockopt.",
        )

    def __enter__(self) -> TcpClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()