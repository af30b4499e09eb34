"""TLS server built on a plain TCP listening endpoint."""

from __future__ import annotations

import socket
import ssl

from extkit.secure_socket import OpenSSLProtocol, SecureSocketBase, ssl_error_string
from extkit.sockets import LogCallback, SettingsFlag
from extkit.tcp_server import TcpServer

_SSL_ERROR_ZERO_RETURN = 6


class TlsServer(SecureSocketBase):
    """Accepts TCP clients and runs the server side of a TLS handshake.

    The server's own certificate is expected; a CA file is optional.
    """

    def __init__(
        self,
        logger: LogCallback | None = None,
        port: int | str = 0,
        protocol: OpenSSLProtocol = OpenSSLProtocol.TLS,
        settings: SettingsFlag = SettingsFlag.ALL_FLAGS,
    ) -> None:
        super().__init__(logger, protocol, settings)
        self._tcp = TcpServer(logger, port, settings)

    @property
    def port(self) -> int | None:
        """The port being listened on, or None before the first listen."""
        return self._tcp.port

    def listen(self, msec: int | None = None) -> ssl.SSLSocket:
        """Accept one client and complete the TLS handshake with it.

        msec bounds the wait for a TCP client as in TcpServer.listen.
        Raises TimeoutError when no client arrives in time and an OSError
        (ssl.SSLError for handshake failures) when the connection fails.
        """
        try:
            raw = self._tcp.listen(msec)
        except OSError:
            self.log(
                "[TCPSSLServer][Error] Unable to accept an incoming TCP "
                "connection with a client."
            )
            raise

        try:
            context = self.server_context()
        except Exception:
            raw.close()
            raise

        try:
            return context.wrap_socket(raw, server_side=True)
        except OSError as exc:
            raw.close()
            self.log(f"[TCPSSLServer][Error] accept failed. {self._describe_error(exc)}")
            raise

    def receive(
        self, client: ssl.SSLSocket, size: int, read_fully: bool = True
    ) -> bytes:
        """Read up to size decrypted bytes from client.

        With read_fully, reads continue until size bytes arrive or a read
        fails; otherwise a single read is made. A failed or closed read
        ends the loop and what was gathered so far is returned.
        """
        if size <= 0:
            raise ValueError("size must be positive")
        data = bytearray()
        while len(data) < size:
            try:
                chunk = client.recv(size - len(data))
            except OSError as exc:
                self.log(
                    f"[TCPSSLServer][Error] SSL_read failed {self._describe_error(exc)}"
                )
                break
            if not chunk:
                self.log(
                    "[TCPSSLServer][Error] SSL_read failed "
                    f"(Error={_SSL_ERROR_ZERO_RETURN} | "
                    f"{ssl_error_string(_SSL_ERROR_ZERO_RETURN)})"
                )
                break
            data += chunk
            if not read_fully:
                break
        return bytes(data)

    def send(self, client: ssl.SSLSocket, data: bytes | bytearray | str) -> None:
        """Encrypt and send all of data to client; text is encoded as UTF-8."""
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if not payload:
            raise ValueError("nothing to send")
        try:
            client.sendall(payload)
        except OSError as exc:
            self.log(
                f"[TCPSSLServer][Error] SSL_write failed {self._describe_error(exc)}."
            )
            raise

    def disconnect(self, client: ssl.SSLSocket) -> None:
        """Send close_notify to client and close its connection."""
        try:
            client.setblocking(False)
            client.unwrap()
        except (OSError, ValueError):
            pass
        finally:
            client.close()

    def has_pending(self, client: ssl.SSLSocket) -> bool:
        """True when decrypted bytes from client are buffered."""
        return client.pending() > 0

    def pending_bytes(self, client: ssl.SSLSocket) -> int:
        """The number of decrypted bytes from client that are buffered."""
        return client.pending()

    def set_rcv_timeout(self, client: socket.socket, msec: int) -> None:
        """Bound blocking receives on client to msec milliseconds; 0 disables."""
        self._tcp.set_rcv_timeout(client, msec)

    def set_snd_timeout(self, client: socket.socket, msec: int) -> None:
        """Bound blocking sends on client to msec milliseconds; 0 disables."""
        self._tcp.set_snd_timeout(client, msec)

    def close(self) -> None:
        """Close the listening socket."""
        self._tcp.close()

    def __enter__(self) -> TlsServer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()