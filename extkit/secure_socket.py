"""TLS settings shared by secure clients and servers."""

from __future__ import annotations

import enum
import ssl
import warnings

from extkit.sockets import LogCallback, SettingsFlag, SocketBase

_SSL_ERROR_SYSCALL = 5
_SSL_ERROR_ZERO_RETURN = 6

_AGAIN = "the same TLS/SSL I/O function should be called again later."

_SSL_ERROR_STRINGS = {
    0: "The TLS/SSL I/O operation completed.",
    1: "A failure in the SSL library occurred, usually a protocol error. "
    "The OpenSSL error queue contains more information on the error.",
    2: "The read operation did not complete; " + _AGAIN,
    3: "The write operation did not complete; " + _AGAIN,
    4: "The operation did not complete because an application callback set"
    " by SSL_CTX_set_client_cert_cb() has asked to be called again. "
    "The TLS/SSL I/O function should be called again later.",
    5: "Some I/O error occurred. The OpenSSL error queue may contain"
    " more information on the error.",
    6: "The TLS/SSL connection has been closed.",
    7: "The connect operation did not complete; " + _AGAIN,
    8: "The accept operation did not complete; " + _AGAIN,
}


def ssl_error_string(code: int) -> str:
    """A readable description of an OpenSSL SSL_ERROR_* code."""
    return _SSL_ERROR_STRINGS.get(code, "Unknown error !")


class OpenSSLProtocol(enum.Enum):
    """Protocol family a secure endpoint negotiates."""

    TLS_V1 = enum.auto()
    SSL_V23 = enum.auto()
    TLS = enum.auto()


class SecureSocketBase(SocketBase):
    """Common TLS configuration: protocol choice and certificate files.

    For a server the certificate is mandatory and the CA optional; for a
    client the CA is expected and its own certificate optional. Peer
    certificates are not verified.
    """

    def __init__(
        self,
        logger: LogCallback | None = None,
        protocol: OpenSSLProtocol = OpenSSLProtocol.TLS,
        settings: SettingsFlag = SettingsFlag.ALL_FLAGS,
    ) -> None:
        super().__init__(logger, settings)
        self.protocol = protocol
        self.ca_file = ""
        self.cert_file = ""
        self.key_file = ""

    def client_context(self) -> ssl.SSLContext:
        """A context for the client side of a connection."""
        return self._build_context(ssl.PROTOCOL_TLS_CLIENT, "[TCPSSLClient]")

    def server_context(self) -> ssl.SSLContext:
        """A context for the server side of a connection."""
        return self._build_context(ssl.PROTOCOL_TLS_SERVER, "[TCPSSLServer]")

    def _build_context(self, method: ssl._SSLMethod, prefix: str) -> ssl.SSLContext:
        try:
            context = ssl.SSLContext(method)
        except ssl.SSLError:
            self.log(f"{prefix}[Error] SSL_CTX_new failed.")
            raise
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        if self.protocol is OpenSSLProtocol.TLS_V1:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", DeprecationWarning)
                context.minimum_version = ssl.TLSVersion.TLSv1
                context.maximum_version = ssl.TLSVersion.TLSv1

        if self.cert_file:
            try:
                context.load_cert_chain(self.cert_file, self.key_file or None)
            except OSError:
                self.log(f"{prefix}[Error] Loading cert file failed.")
                raise
        elif self.key_file:
            try:
                context.load_cert_chain(self.key_file)
            except OSError:
                self.log(f"{prefix}[Error] Loading key file failed.")
                raise

        if self.ca_file:
            try:
                context.load_verify_locations(cafile=self.ca_file)
            except OSError:
                self.log(f"{prefix}[Error] Loading CA file failed.")
                raise

        return context

    @staticmethod
    def _describe_error(exc: BaseException) -> str:
        """Format an I/O failure as '(Error=<code> | <description>)'."""
        code = getattr(exc, "errno", None)
        if not isinstance(exc, ssl.SSLError) or not isinstance(code, int):
            code = _SSL_ERROR_SYSCALL
        return f"(Error={code} | {ssl_error_string(code)})"