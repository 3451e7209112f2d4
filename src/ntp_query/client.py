#!/usr/bin/env python
# -*- coding: utf-8 -*-
# ----------------------------------------------------------------------------
# Created By  : Matthew Davidson
# Created Date: 2024-06-01
# version ='1.0'
# ---------------------------------------------------------------------------
"""Single NTPv4 client-mode query returning round-trip delay and clock offset"""
# ---------------------------------------------------------------------------
from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
import logging
from pathlib import Path
import socket
import time
from typing import Callable, Optional, Union

from prometheus_client import Counter, Gauge

from ntp_query.configuration import NtpClientConfig, initialize_config
from ntp_query.packet import Mode, NtpError, NtpMessage
from ntp_query.timestamp import NANOSECONDS, NtpTimestamp, to_ntp_time
from ntp_query.transport import DEFAULT_TIMEOUT, NTP_PORT, UDPTransport

logger = logging.getLogger(__name__)

NTP_VERSION = 4
# Replies with receive/transmit times before this are degenerate
SANE_EPOCH_NS = 0


class ZeroPacketError(NtpError):
    """Raised when the server's receive or transmit time precedes the Unix epoch."""

    def __init__(self, message: str = "received zero packet"):
        super().__init__(message)


class BogusPacketError(NtpError):
    """Raised when the reply does not echo the request's transmit timestamp."""

    def __init__(self, message: str = "received bogus packet"):
        super().__init__(message)


@dataclass(frozen=True)
class NtpStats:
    """Round-trip network delay and local clock offset, in nanoseconds."""

    delay_ns: int
    offset_ns: int

    @property
    def delay(self) -> float:
        """Delay in seconds."""
        return self.delay_ns / NANOSECONDS

    @property
    def offset(self) -> float:
        """Offset in seconds. Positive means the local clock is behind the server."""
        return self.offset_ns / NANOSECONDS

    @property
    def delay_timedelta(self) -> timedelta:
        return timedelta(microseconds=self.delay_ns / 1000)

    @property
    def offset_timedelta(self) -> timedelta:
        return timedelta(microseconds=self.offset_ns / 1000)


def _halve(duration_ns: int) -> int:
    # Integer halving truncated toward zero
    return -(-duration_ns // 2) if duration_ns < 0 else duration_ns // 2


def build_request(transmit_time: NtpTimestamp) -> NtpMessage:
    """Client-mode, version 4 request with only the transmit timestamp set."""
    return (
        NtpMessage()
        .with_mode(Mode.CLIENT)
        .with_version(NTP_VERSION)
        .with_transmit_time(transmit_time)
    )


def validate_reply(reply: NtpMessage, origin: NtpTimestamp) -> None:
    """
    Reject degenerate or unsolicited replies.

    :param reply: The decoded server reply.
    :param origin: The transmit timestamp sent in the request.
    :raises ZeroPacketError: If the receive or transmit time is before 1970.
    :raises BogusPacketError: If the reply's origin time is not exactly ``origin``.
    """
    if (
        reply.receive_time.to_unix_ns() < SANE_EPOCH_NS
        or reply.transmit_time.to_unix_ns() < SANE_EPOCH_NS
    ):
        raise ZeroPacketError()

    if reply.origin_time != origin:
        raise BogusPacketError(
            f"received bogus packet: origin {reply.origin_time} does not match {origin}"
        )


def compute_stats(t1: int, t2: int, t3: int, t4: int) -> NtpStats:
    """
    Delay and offset from the four exchange timestamps, all in nanoseconds.

    :param t1: Local time the request was sent.
    :param t2: Server time the request was received.
    :param t3: Server time the reply was sent.
    :param t4: Local time the reply was received.
    """
    net_rtt_delay = t4 - t1
    server_sched_delay = t3 - t2
    delay = net_rtt_delay - server_sched_delay
    offset = _halve((t2 - t1) + (t3 - t4))
    return NtpStats(delay_ns=delay, offset_ns=offset)


def request(
    host: str,
    port: int = NTP_PORT,
    timeout: float = DEFAULT_TIMEOUT,
    clock: Callable[[], int] = time.time_ns,
) -> NtpStats:
    """
    Query ``host`` once in NTP client mode.

    Resolution, socket and timeout errors propagate unchanged. The UDP socket
    is always closed before returning.

    :param host: Hostname or address, without port.
    :param port: Server port.
    :param timeout: Deadline in seconds for the whole round trip.
    :param clock: Source of local wall-clock time in Unix nanoseconds.
    :return: The measured NtpStats.
    """
    with UDPTransport(host, port=port, timeout=timeout) as transport:
        origin_ns = clock()
        origin = to_ntp_time(origin_ns)
        transport.send(build_request(origin).to_bytes())

        data = transport.receive()
        destination_ns = clock()

    reply = NtpMessage.from_bytes(data)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"Reply from {host}", extra=reply.describe())

    validate_reply(reply, origin)

    return compute_stats(
        origin_ns,
        reply.receive_time.to_unix_ns(),
        reply.transmit_time.to_unix_ns(),
        destination_ns,
    )


class NtpClient:
    """
    An NTP query client bound to one configured server, with Prometheus metrics.
    """

    ntp_requests_count = Counter(
        "ntp_requests_total",
        "Total number of NTP queries by outcome",
        labelnames=("server", "outcome"),
    )

    ntp_offset_seconds = Gauge(
        "ntp_offset_seconds",
        "Clock offset measured by the last successful NTP query",
        labelnames=("server",),
    )

    ntp_delay_seconds = Gauge(
        "ntp_delay_seconds",
        "Round trip delay measured by the last successful NTP query",
        labelnames=("server",),
    )

    @classmethod
    def from_config_file(
        cls,
        config_file: Union[str, Path],
        env_file: Optional[Union[str, Path]] = None,
        **kwargs,
    ) -> NtpClient:
        """
        Instantiate an NtpClient from a configuration file.

        :param config_file: Path to the configuration file.
        :param env_file: Path to a dotenv file with NTP_* overrides (optional).
        :param kwargs: Override individual NtpClientConfig values.
        :return: An initialized NtpClient instance.
        """
        configs = initialize_config(config=config_file, env_file=env_file)
        combined_args = {**configs["NtpClient"], **kwargs}
        return cls(NtpClientConfig(**combined_args))

    def __init__(self, config: NtpClientConfig, clock: Callable[[], int] = time.time_ns):
        self.server = config.server
        self.port = config.port
        self.timeout = config.timeout
        self.clock = clock
        self.logger = logging.LoggerAdapter(
            logger,
            extra={"server": self.server, "port": self.port},
        )

    def query(self, host: Optional[str] = None) -> NtpStats:
        """
        Run one query against ``host``, or the configured server.

        Errors are logged, counted and re-raised.
        """
        host = host or self.server
        try:
            stats = request(host, port=self.port, timeout=self.timeout, clock=self.clock)
        except ZeroPacketError:
            self._count(host, "zero_packet")
            raise
        except BogusPacketError:
            self._count(host, "bogus_packet")
            raise
        except socket.timeout:
            self._count(host, "timeout")
            self.logger.error(f"No reply from {host} within {self.timeout}s")
            raise
        except (NtpError, OSError) as e:
            self._count(host, "error")
            self.logger.error(f"NTP query to {host} failed: {e}")
            raise

        self._count(host, "success")
        self.ntp_offset_seconds.labels(server=host).set(stats.offset)
        self.ntp_delay_seconds.labels(server=host).set(stats.delay)
        self.logger.info(
            f"{host}: offset {stats.offset:+.6f}s, delay {stats.delay:.6f}s",
            extra={"offset": stats.offset, "delay": stats.delay},
        )
        return stats

    def _count(self, host: str, outcome: str) -> None:
        self.ntp_requests_count.labels(server=host, outcome=outcome).inc()
