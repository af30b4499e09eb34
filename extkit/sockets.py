"""Shared socket plumbing: settings flags, logging and readiness helpers."""

from __future__ import annotations

import enum
import select
import socket
import struct
import sys
from collections.abc import Callable, Sequence
from typing import Union

LogCallback = Callable[[str], None]
SocketLike = Union[socket.socket, int]

INVALID_SOCKET = -1


class SettingsFlag(enum.IntFlag):
    """Behaviour switches for socket wrappers."""

    NO_FLAGS = 0x00
    ENABLE_LOG = 0x01
    ALL_FLAGS = 0xFF


class ResolveError(OSError):
    """An address or service name could not be resolved."""


def timeval_from_msec(msec: int) -> tuple[int, int]:
    """Split a millisecond count into (seconds, microseconds)."""
    return msec // 1000, (msec % 1000) * 1000


def _descriptor(sock: SocketLike) -> int:
    return sock if isinstance(sock, int) else sock.fileno()


def _select_timeout(msec: int) -> float | None:
    return msec / 1000 if msec > 0 else None


def select_socket(sock: SocketLike, msec: int) -> bool:
    """Wait until sock is readable.

    A wait of 0 milliseconds blocks without limit. Returns False when the
    wait times out; raises ValueError for a closed or invalid socket.
    """
    fd = _descriptor(sock)
    if fd < 0:
        raise ValueError("invalid socket descriptor")
    readable, _, _ = select.select([fd], [], [], _select_timeout(msec))
    return fd in readable


def select_sockets(socks: Sequence[SocketLike], msec: int) -> int | None:
    """Wait until one of socks is readable and return the first such index.

    A wait of 0 milliseconds blocks without limit. Returns None on timeout;
    raises ValueError when no sockets are given.
    """
    if not socks:
        raise ValueError("no sockets to select")
    fds = [_descriptor(s) for s in socks]
    readable, _, _ = select.select(fds, [], [], _select_timeout(msec))
    ready = set(readable)
    for index, fd in enumerate(fds):
        if fd in ready:
            return index
    return None


def _timeout_option_value(msec: int) -> bytes:
    if sys.platform == "win32":
        return struct.pack("=I", msec)
    seconds, microseconds = timeval_from_msec(msec)
    return struct.pack("ll", seconds, microseconds)


class SocketBase:
    """Common state for socket wrappers: a log callback and settings."""

    def __init__(
        self,
        logger: LogCallback | None = None,
        settings: SettingsFlag = SettingsFlag.ALL_FLAGS,
    ) -> None:
        self._logger = logger
        self.settings = SettingsFlag(settings)

    def log(self, message: str) -> None:
        """Pass message to the logger when logging is enabled."""
        if self._logger is not None and self.settings & SettingsFlag.ENABLE_LOG:
            self._logger(message)

    def _set_timeout(
        self, sock: socket.socket | None, option: int, msec: int, error_message: str
    ) -> None:
        """Apply a kernel-level send or receive timeout to sock."""
        if sock is None:
            self.log(error_message)
            raise ConnectionError(error_message)
        try:
            sock.setsockopt(socket.SOL_SOCKET, option, _timeout_option_value(msec))
        except OSError:
            self.log(error_message)
            raise