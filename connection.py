# FILE: connection.py
"""
connection.py — TCP connection lifecycle for peerline.

ConnectionManager owns at most one socket at a time.  Connect failures are
reported through the on_could_not_connect callback; nothing here raises to
the caller except the `socket` accessor, which raises NotConnectedError so
the send and receive paths can turn it into their own callbacks.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from enum import Enum
from typing import Callable, Optional, Union

logger = logging.getLogger("peerline.connection")

LOOPBACK = "127.0.0.1"

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    LISTENING = "listening"


class NotConnectedError(ConnectionError):
    """An operation needed a live socket and there was none."""

    def __init__(self, message: str = "not connected"):
        super().__init__(message)


def resolve_address(host: str) -> Optional[IPAddress]:
    """
    Turn *host* into an IP address.

    "localhost" (any case) maps to 127.0.0.1; anything else must already be
    an IPv4 or IPv6 literal.  Returns None for everything else.
    """
    if host.strip().lower() == "localhost":
        host = LOOPBACK
    try:
        return ipaddress.ip_address(host.strip())
    except ValueError:
        return None


def _noop(_exc: BaseException) -> None:
    pass


class ConnectionManager:
    def __init__(self, on_could_not_connect: Optional[Callable[[BaseException], None]] = None):
        self._on_could_not_connect = on_could_not_connect or _noop
        self._sock: Optional[socket.socket] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        sock = self._sock
        if sock is None or sock.fileno() == -1:
            return False
        try:
            sock.getpeername()
        except OSError:
            return False
        return True

    @property
    def socket(self) -> socket.socket:
        """The live socket.  Raises NotConnectedError when there is none."""
        sock = self._sock
        if sock is None or not self.is_connected:
            raise NotConnectedError()
        return sock

    @property
    def peer_address(self) -> Optional[tuple]:
        sock = self._sock
        if sock is None:
            return None
        try:
            return sock.getpeername()[:2]
        except OSError:
            return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self, host: str, port: int) -> bool:
        """Connect to a host string ("localhost" or an IP literal)."""
        address = resolve_address(host)
        if address is None:
            logger.debug("Not an IP address: %r", host)
            return False
        return self.connect_address(address, port)

    def connect_address(self, address: IPAddress, port: int) -> bool:
        if self.is_connected:
            return False

        family = socket.AF_INET6 if address.version == 6 else socket.AF_INET
        sock = None
        try:
            sock = socket.socket(family, socket.SOCK_STREAM)
            sock.connect((str(address), port))
        except (OSError, OverflowError) as exc:
            # OverflowError: port outside 0-65535
            if sock is not None:
                sock.close()
            logger.info("Could not connect to %s:%s: %s", address, port, exc)
            self._on_could_not_connect(exc)
            return False

        self._replace(sock)
        logger.info("Connected to %s:%d", address, port)
        return True

    def attach(self, sock: socket.socket) -> bool:
        """Adopt an already-connected socket, e.g. one returned by accept()."""
        if self.is_connected:
            return False
        self._replace(sock)
        logger.info("Attached peer %s", self.peer_address)
        return True

    def disconnect(self) -> None:
        sock, self._sock = self._sock, None
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        sock.close()
        logger.info("Disconnected")

    def _replace(self, sock: socket.socket) -> None:
        old, self._sock = self._sock, sock
        if old is not None:
            old.close()
