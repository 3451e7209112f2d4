from dataclasses import replace
from pathlib import Path
import socket
import threading
import time
from typing import Callable, Optional

import pytest

from ntp_query.configuration import ENV_OVERRIDES
from ntp_query.packet import Mode, NtpMessage
from ntp_query.timestamp import NANOSECONDS, to_ntp_time

TEST_DIR = Path(__file__).parent
TEST_CONFIG_FILE = TEST_DIR / "config-test.toml"

# 2024-06-01T00:00:00Z
T1_NS = 1717200000 * NANOSECONDS


def server_reply(
    request: bytes,
    receive_ns: Optional[int] = None,
    transmit_ns: Optional[int] = None,
    **fields,
) -> bytes:
    """Build a server-mode reply echoing the request's transmit timestamp."""
    req = NtpMessage.from_bytes(request)
    now = time.time_ns()
    reply = NtpMessage(
        stratum=2,
        reference_id=0x7F000001,
        reference_time=to_ntp_time(now),
        origin_time=req.transmit_time,
        receive_time=to_ntp_time(receive_ns if receive_ns is not None else now),
        transmit_time=to_ntp_time(transmit_ns if transmit_ns is not None else now),
    )
    reply = replace(reply.with_mode(Mode.SERVER).with_version(4), **fields)
    return reply.to_bytes()


class FakeNtpServer:
    """
    A loopback UDP server. ``handler`` maps a request payload to a reply
    payload, or None to stay silent.
    """

    def __init__(self, handler: Callable[[bytes], Optional[bytes]] = server_reply):
        self.handler = handler
        self.requests = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.1)
        self.host, self.port = self.sock.getsockname()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def _serve(self):
        while not self._stop_event.is_set():
            try:
                data, address = self.sock.recvfrom(1024)
            except socket.timeout:
                continue
            self.requests.append(data)
            reply = self.handler(data)
            if reply is not None:
                self.sock.sendto(reply, address)

    def start(self):
        self._thread.start()
        return self

    def stop(self):
        self._stop_event.set()
        self._thread.join()
        self.sock.close()


@pytest.fixture(scope="function")
def ntp_server():
    servers = []

    def start(handler=server_reply):
        server = FakeNtpServer(handler).start()
        servers.append(server)
        return server

    yield start

    for server in servers:
        server.stop()


@pytest.fixture(scope="function")
def silent_server(ntp_server):
    return ntp_server(lambda data: None)


@pytest.fixture(autouse=True)
def clean_ntp_environment(monkeypatch):
    # setenv then delenv so anything python-dotenv loads is removed afterwards
    for variable in ENV_OVERRIDES:
        monkeypatch.setenv(variable, "")
        monkeypatch.delenv(variable)


def fixed_clock(*values: int) -> Callable[[], int]:
    """A clock returning ``values`` in order."""
    iterator = iter(values)
    return lambda: next(iterator)
