"""Fixed 48-byte NTPv4 packet layout (RFC 5905, no extension fields)."""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import IntEnum
import logging
import struct
from typing import Dict, Union

import ntplib

from ntp_query.timestamp import NtpTimestamp

logger = logging.getLogger(__name__)

NTP_PACKET_FORMAT = "!4B3I8I"
NTP_PACKET_SIZE = struct.calcsize(NTP_PACKET_FORMAT)  # 48

VERSION_MASK = 0xC7
MODE_MASK = 0xF8


class Mode(IntEnum):
    RESERVED = 0
    SYMMETRIC_ACTIVE = 1
    SYMMETRIC_PASSIVE = 2
    CLIENT = 3
    SERVER = 4
    BROADCAST = 5
    CONTROL_MESSAGE = 6
    RESERVED_PRIVATE = 7


class NtpError(Exception):
    """
    Base exception for protocol level NTP failures.
    """

    def __init__(self, message: str):
        self.message = message
        logger.error(self.message)
        super().__init__(self.message)


class FramingError(NtpError):
    """Raised when a reply cannot be decoded as an NTP packet."""


@dataclass(frozen=True)
class NtpMessage:
    """
    One NTP packet. Instances are immutable; the ``with_*`` methods return
    modified copies.
    """

    li_vn_mode: int = 0  # Leap Indicator (2) + Version (3) + Mode (3)
    stratum: int = 0
    poll: int = 0
    precision: int = 0  # raw byte, signed log2 seconds on the wire
    root_delay: int = 0
    root_dispersion: int = 0
    reference_id: int = 0
    reference_time: NtpTimestamp = field(default_factory=NtpTimestamp)
    origin_time: NtpTimestamp = field(default_factory=NtpTimestamp)
    receive_time: NtpTimestamp = field(default_factory=NtpTimestamp)
    transmit_time: NtpTimestamp = field(default_factory=NtpTimestamp)

    @property
    def leap(self) -> int:
        return self.li_vn_mode >> 6

    @property
    def version(self) -> int:
        return (self.li_vn_mode >> 3) & 0x07

    @property
    def mode(self) -> Mode:
        return Mode(self.li_vn_mode & 0x07)

    def with_version(self, version: int) -> NtpMessage:
        return replace(
            self, li_vn_mode=(self.li_vn_mode & VERSION_MASK) | ((version << 3) & 0x38)
        )

    def with_mode(self, mode: Union[Mode, int]) -> NtpMessage:
        return replace(self, li_vn_mode=(self.li_vn_mode & MODE_MASK) | (int(mode) & 0x07))

    def with_transmit_time(self, timestamp: NtpTimestamp) -> NtpMessage:
        return replace(self, transmit_time=timestamp)

    def to_bytes(self) -> bytes:
        try:
            return struct.pack(
                NTP_PACKET_FORMAT,
                self.li_vn_mode,
                self.stratum,
                self.poll,
                self.precision,
                self.root_delay,
                self.root_dispersion,
                self.reference_id,
                self.reference_time.seconds,
                self.reference_time.fraction,
                self.origin_time.seconds,
                self.origin_time.fraction,
                self.receive_time.seconds,
                self.receive_time.fraction,
                self.transmit_time.seconds,
                self.transmit_time.fraction,
            )
        except struct.error as e:
            raise FramingError(f"Invalid NTP packet fields: {e}") from e

    @classmethod
    def from_bytes(cls, data: bytes) -> NtpMessage:
        """
        Decode the first 48 bytes of ``data``.

        Anything after the fixed header (extension fields, MAC) is ignored.

        :param data: Raw UDP payload.
        :return: The decoded NtpMessage.
        :raises FramingError: If fewer than 48 bytes are supplied.
        """
        if len(data) < NTP_PACKET_SIZE:
            raise FramingError(
                f"NTP packet too short: got {len(data)} bytes, expected {NTP_PACKET_SIZE}"
            )
        fields = struct.unpack(NTP_PACKET_FORMAT, data[:NTP_PACKET_SIZE])
        return cls(
            *fields[:7],
            reference_time=NtpTimestamp(fields[7], fields[8]),
            origin_time=NtpTimestamp(fields[9], fields[10]),
            receive_time=NtpTimestamp(fields[11], fields[12]),
            transmit_time=NtpTimestamp(fields[13], fields[14]),
        )

    def describe(self) -> Dict[str, str]:
        """Header fields rendered as text, for debug logging."""

        def as_text(func, *args):
            try:
                return func(*args)
            except ntplib.NTPException:
                return str(args[0])

        return {
            "leap": as_text(ntplib.leap_to_text, self.leap),
            "version": str(self.version),
            "mode": as_text(ntplib.mode_to_text, int(self.mode)),
            "stratum": as_text(ntplib.stratum_to_text, self.stratum),
            "reference_id": as_text(
                ntplib.ref_id_to_text, self.reference_id, self.stratum
            ),
            "transmit_time": str(self.transmit_time),
        }
