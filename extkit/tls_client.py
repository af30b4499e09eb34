"""TLS client over a plain TCP connection."""

from __future__ import annotations

import socket
import ssl

from extkit.secure_socket import OpenSSLProtocol, SecureSocketBase, ssl_error_string
from extkit.sockets import LogCallback, SettingsFlag
from extkit.tcp_client import TcpClient

_SSL_ERROR_ZERO_RETURN = 6


class TlsClient(SecureSocketBase):
    """A TLS connection to one server."""

    def __init__(
        self,
        logger: LogCallback | None = None,
        protocol: OpenSSLProtocol = OpenSSLProtocol.TLS,
        settings: SettingsFlag = SettingsFlag.ALL_FLAGS,
    ) -> None:
        super().__init__(logger, protocol, settings)
        self._tcp = TcpClient(logger, settings)
        self._ssl: ssl.SSLSocket | None = None

    @property
    def connected(self) -> bool:
        return self._ssl is not None

    def connect(self, server: str, port: int | str) -> None:
        """Open a TCP connection to server:port and perform the TLS handshake."""
        if self._ssl is not None:
            self.disconnect()

        try:
            self._tcp.connect(server, port)
        except OSError:
            self.log(
                "[TCPSSLClient][Error] Unable to establish a TCP connection "
                "with the server."
            )
            raise

        raw, self._tcp._sock = self._tcp._sock, None
        try:
            context = self.client_context()
        except Exception:
            raw.close()
            raise

        try:
            tls = context.wrap_socket(raw)
        except OSError as exc:
            raw.close()
            self.log(
                f"[TCPSSLClient][Error] SSL_connect failed {self._describe_error(exc)}"
            )
            raise

        self._ssl = tls
        cipher = tls.cipher()
        name = cipher[0] if cipher else ""
        self.log(f"[TCPSSLClient][Info] Connected with '{name}' encryption.")

    def disconnect(self) -> None:
        """Send close_notify and close the connection; no-op when closed."""
        if self._ssl is None:
            return
        tls, self._ssl = self._ssl, None
        try:
            tls.setblocking(False)
            tls.unwrap()
        except OSError:
            pass
        finally:
            tls.close()
        self._tcp.disconnect()

    def _require(self, message: str) -> ssl.SSLSocket:
        if self._ssl is None:
            self.log(message)
            raise ConnectionError(message)
        return self._ssl

    def send(self, data: bytes | bytearray | str) -> None:
        """Encrypt and send all of data; text is encoded as UTF-8."""
        tls = self._require(
            "[TCPSSLClient][Error] SSL send failed : not connected to an SSL server."
        )
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        try:
            tls.sendall(payload)
        except OSError as exc:
            self.log(
                f"[TCPSSLClient][Error] SSL_write failed {self._describe_error(exc)}"
            )
            raise

    def receive(self, size: int, read_fully: bool = True) -> bytes:
        """Read up to size decrypted bytes.

        With read_fully, reads continue until size bytes arrive or a read
        fails; otherwise a single read is made. A failed or closed read
        ends the loop and what was gathered so far is returned.
        """
        if size <= 0:
            raise ValueError("size must be positive")
        tls = self._require(
            "[TCPSSLClient][Error] SSL recv failed : not connected to a server."
        )
        data = bytearray()
        while len(data) < size:
            try:
                chunk = tls.recv(size - len(data))
            except OSError as exc:
                self.log(
                    f"[TCPSSLClient][Error] SSL_read failed {self._describe_error(exc)}"
                )
                break
            if not chunk:
                self.log(
                    "[TCPSSLClient][Error] SSL_read failed "
                    f"(Error={_SSL_ERROR_ZERO_RETURN} | "
                    f"{ssl_error_string(_SSL_ERROR_ZERO_RETURN)})"
                )
                break
            data += chunk
            if not read_fully:
                break
        return bytes(data)

    def _connected_socket(self) -> ssl.SSLSocket:
        if self._ssl is None:
            raise ConnectionError("not connected to a server")
        return self._ssl

    def has_pending(self) -> bool:
        """True when decrypted bytes are buffered and ready to read."""
        return self._connected_socket().pending() > 0

    def pending_bytes(self) -> int:
        """The number of decrypted bytes buffered and ready to read."""
        return self._connected_socket().pending()

    def set_rcv_timeout(self, msec: int) -> None:
        """Bound blocking receives to msec milliseconds; 0 disables."""
        self._set_timeout(
            self._ssl,
            socket.SO_RCVTIMEO,
            msec,
            "[TCPServer][Error] CTCPClient::SetRcvTimeout : "
            "Socket error in SO_RCVTIMEO call to setsockopt.",
        )

    def set_snd_timeout(self, msec: int) -> None:
        """Bound blocking sends to msec milliseconds; 0 disables."""
        self._set_timeout(
            self._ssl,
            socket.SO_SNDTIMEO,
            msec,
            "[TCPServer][Error] CTCPClient::SetSndTimeout : "
            "Socket error in SO_SNDTIMEO call to setsockopt.",
        )

    def __enter__(self) -> TlsClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()