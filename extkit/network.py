"""Client/server networking on top of the framed TCP endpoints.

A server accepts clients on a background thread and tags each one with
an upper-case UUID. A receiver thread per client reads framed messages
and queues them; a handler thread passes each to the server handler.
"""

from __future__ import annotations

import enum
import queue
import socket
import threading
import time
import uuid as uuid_module
from collections.abc import Callable
from dataclasses import dataclass

from extkit.tcp_client import TcpClient
from extkit.tcp_server import TcpServer

PACKET_SIZE = 1024 * 1024 * 10
HEADER_FIELD_SIZE = 4
_LISTEN_WAIT_MSEC = 100
_POLL_SECONDS = 0.005


@dataclass(frozen=True)
class PacketMessage:
    """A decoded message: its declared total size, identifier and body."""

    size: int
    msg_id: int
    body: str


Handler = Callable[[socket.socket, PacketMessage], None]


def convert_receive_msg(data: bytes | bytearray) -> PacketMessage:
    """Decode a framed message: 4-byte size, 4-byte id, then a text body.

    The body ends at the first NUL byte, if any. Raises ValueError when
    the header is incomplete.
    """
    raw = bytes(data)
    header = 2 * HEADER_FIELD_SIZE
    if len(raw) < header:
        raise ValueError("message shorter than its 8-byte header")
    size = int.from_bytes(raw[:HEADER_FIELD_SIZE], "big")
    msg_id = int.from_bytes(raw[HEADER_FIELD_SIZE:header], "big")
    body = raw[header:].split(b"\x00", 1)[0]
    return PacketMessage(size, msg_id, body.decode("utf-8", errors="replace"))


class NetworkType(enum.IntEnum):
    """Role of a network endpoint."""

    NONE = 0
    CLIENT = 1
    SERVER = 2


@dataclass
class NetworkInfo:
    """Where and how a network endpoint connects."""

    ip: str = ""
    name: str = ""
    port: int = 0
    type: NetworkType = NetworkType.NONE

    def is_valid(self) -> bool:
        """True when address, port, name and role are all set."""
        return (
            bool(self.ip)
            and self.port != 0
            and bool(self.name)
            and self.type is not NetworkType.NONE
        )


class ReceiveHandler:
    """Queues received packets and hands them to a handler on a thread."""

    def __init__(
        self,
        connection: socket.socket | None = None,
        uuid: str = "",
        handler: Handler | None = None,
    ) -> None:
        self.connection = connection
        self.uuid = uuid
        self.handler = handler
        self._queue: queue.Queue[PacketMessage] = queue.Queue()
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    def insert_packet(self, packet: PacketMessage) -> None:
        """Queue a packet for the handler."""
        self._queue.put(packet)

    def start(self) -> None:
        """Start delivering queued packets."""
        self.stop()
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop delivering packets."""
        self._stopped.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                packet = self._queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            if packet.size == 0:
                continue
            if self.handler is not None:
                self.handler(self.connection, packet)


class ServerReceiver:
    """Reads framed messages from one accepted client on a thread."""

    def __init__(
        self,
        network: Network,
        uuid: str,
        connection: socket.socket,
        handler: Handler | None = None,
    ) -> None:
        self.network = network
        self.uuid = uuid
        self.connection = connection
        self.handler = handler
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None
        self._receive_handler: ReceiveHandler | None = None

    def start(self) -> None:
        """Begin receiving from the client."""
        self.stop()
        self._stopped.clear()
        self._receive_handler = ReceiveHandler(self.connection, self.uuid, self.handler)
        self._receive_handler.start()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop receiving and stop the packet handler."""
        self._stopped.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        handler, self._receive_handler = self._receive_handler, None
        if handler is not None:
            handler.stop()

    def _run(self) -> None:
        server = self.network._server
        while not self._stopped.is_set():
            try:
                data = server.receive(self.connection, PACKET_SIZE)
            except (OSError, ValueError):
                if self._stopped.is_set():
                    break
                time.sleep(_POLL_SECONDS)
                continue
            if not data:
                self.network.disconnect(self.uuid)
                break
            handler = self._receive_handler
            if handler is not None:
                handler.insert_packet(convert_receive_msg(data))


class Network:
    """A client connection or a server with its accepted clients."""

    def __init__(self, info: NetworkInfo | None = None) -> None:
        self.info = info if info is not None else NetworkInfo()
        self._handler: Handler | None = None
        self._client: TcpClient | None = None
        self._server: TcpServer | None = None
        self._clients: dict[str, ServerReceiver] = {}
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._listen_thread: threading.Thread | None = None

    @property
    def clients(self) -> list[str]:
        """UUIDs of the clients currently connected to the server."""
        with self._lock:
            return list(self._clients)

    @property
    def client(self) -> TcpClient | None:
        """The client connection in client mode."""
        return self._client

    def set_info(self, info: NetworkInfo) -> None:
        self.info = info

    def set_server_handler(self, handler: Handler | None) -> None:
        """Set the handler given packets from clients accepted from now on."""
        self._handler = handler

    def connect(self) -> None:
        """Connect to the server, or start accepting clients.

        Raises ValueError when the network info is incomplete.
        """
        if not self.info.is_valid():
            raise ValueError("network info is incomplete")
        if self.info.type is NetworkType.CLIENT:
            if self._client is None:
                self._client = TcpClient(None)
            self._client.connect(self.info.ip, self.info.port)
        elif self.info.type is NetworkType.SERVER:
            if self._server is None:
                self._server = TcpServer(None, self.info.port)
            if self._listen_thread is None or not self._listen_thread.is_alive():
                self._stopped.clear()
                self._listen_thread = threading.Thread(
                    target=self._listen_loop, daemon=True
                )
                self._listen_thread.start()

    def disconnect(self, uuid: str | None = None) -> bool:
        """Close the client connection, or, given a UUID, one server client.

        Raises RuntimeError when the call does not suit the network's role.
        Returns False when no client has the given UUID.
        """
        if uuid is None:
            if self.info.type is not NetworkType.CLIENT:
                raise RuntimeError("not a client network")
            if self._client is not None:
                self._client.disconnect()
            return True

        if self.info.type is not NetworkType.SERVER:
            raise RuntimeError("not a server network")
        with self._lock:
            receiver = self._clients.pop(uuid, None)
        if receiver is None:
            return False
        try:
            receiver.connection.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        receiver.stop()
        receiver.connection.close()
        return True

    def disconnect_all(self) -> None:
        """Close every connection this network holds."""
        if self.info.type is NetworkType.CLIENT:
            self.disconnect()
        elif self.info.type is NetworkType.SERVER:
            for uuid in self.clients:
                self.disconnect(uuid)

    def close(self) -> None:
        """Stop accepting clients and close every connection."""
        self._stopped.set()
        thread, self._listen_thread = self._listen_thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self.disconnect_all()
        if self._server is not None:
            self._server.close()

    def __enter__(self) -> Network:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _new_uuid(self) -> str:
        with self._lock:
            while True:
                value = str(uuid_module.uuid4()).upper()
                if value not in self._clients:
                    return value

    def _listen_loop(self) -> None:
        server = self._server
        while not self._stopped.is_set():
            try:
                connection = server.listen(_LISTEN_WAIT_MSEC)
            except TimeoutError:
                continue
            except (OSError, ValueError):
                if self._stopped.is_set():
                    break
                time.sleep(_POLL_SECONDS)
                continue
            uuid = self._new_uuid()
            receiver = ServerReceiver(self, uuid, connection, self._handler)
            with self._lock:
                self._clients[uuid] = receiver
            receiver.start()