"""One-shot UDP association with a single absolute deadline."""

from __future__ import annotations
import logging
import socket
import time
from typing import Optional

logger = logging.getLogger(__name__)

NTP_PORT = 123
DEFAULT_TIMEOUT = 5.0
RECEIVE_BUFFER_SIZE = 1024


class UDPTransport:
    """
    A connected UDP socket for exactly one request/reply exchange.

    The deadline is fixed when the transport is opened and covers both the
    send and the receive. Use as a context manager so the socket is closed on
    every exit path.
    """

    def __init__(self, host: str, port: int = NTP_PORT, timeout: float = DEFAULT_TIMEOUT):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.address = None
        self._sock: Optional[socket.socket] = None
        self._deadline: Optional[float] = None

    def open(self) -> UDPTransport:
        self._deadline = time.monotonic() + self.timeout
        # gaierror propagates unchanged
        family, socktype, proto, _, sockaddr = socket.getaddrinfo(
            self.host, self.port, 0, socket.SOCK_DGRAM
        )[0]
        sock = socket.socket(family, socktype, proto)
        try:
            sock.connect(sockaddr)
        except OSError:
            sock.close()
            raise
        self._sock = sock
        self.address = sockaddr
        logger.debug(f"Opened UDP association to {self.host} at {sockaddr}")
        return self

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
            logger.debug(f"Closed UDP association to {self.host}")

    @property
    def closed(self) -> bool:
        return self._sock is None

    def remaining(self) -> float:
        return self._deadline - time.monotonic()

    def _arm(self) -> socket.socket:
        if self._sock is None:
            raise OSError(f"Transport to {self.host} is not open")
        remaining = self.remaining()
        if remaining <= 0:
            raise socket.timeout(f"Deadline of {self.timeout}s exceeded for {self.host}")
        self._sock.settimeout(remaining)
        return self._sock

    def send(self, data: bytes) -> int:
        return self._arm().send(data)

    def receive(self, bufsize: int = RECEIVE_BUFFER_SIZE) -> bytes:
        """Read one datagram, bounded by what is left of the deadline."""
        return self._arm().recv(bufsize)

    def __enter__(self) -> UDPTransport:
        return self.open()

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
