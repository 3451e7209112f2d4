"""Conversion between NTP 64-bit timestamps and absolute UTC time.

Absolute time is carried as integer nanoseconds since the Unix epoch, the same
convention as :func:`time.time_ns`, so no precision is lost to floats.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import struct

# Seconds between 1900-01-01T00:00:00Z and 1970-01-01T00:00:00Z
NTP_EPOCH_OFFSET = 2208988800

NANOSECONDS = 1_000_000_000
FRACTION_SCALE = 2**32
UINT32_MASK = 0xFFFFFFFF

UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
NTP_EPOCH = datetime(1900, 1, 1, tzinfo=timezone.utc)

_TIMESTAMP_FORMAT = "!II"


@dataclass(frozen=True)
class NtpTimestamp:
    """Seconds since 1900-01-01 plus a binary fraction of a second."""

    seconds: int = 0
    fraction: int = 0

    def __post_init__(self):
        for name in ("seconds", "fraction"):
            value = getattr(self, name)
            if not 0 <= value <= UINT32_MASK:
                raise ValueError(f"{name} must be an unsigned 32-bit value, got {value}")

    def to_unix_ns(self) -> int:
        """Nanoseconds since the Unix epoch, with the sub-nanosecond part floored."""
        nanoseconds = self.seconds * NANOSECONDS + (
            (self.fraction * NANOSECONDS) >> 32
        )
        return nanoseconds - NTP_EPOCH_OFFSET * NANOSECONDS

    def utc(self) -> datetime:
        """Timezone-aware UTC datetime. Microsecond resolution only."""
        return unix_ns_to_datetime(self.to_unix_ns())

    def to_bytes(self) -> bytes:
        return struct.pack(_TIMESTAMP_FORMAT, self.seconds, self.fraction)

    @classmethod
    def from_bytes(cls, data: bytes) -> NtpTimestamp:
        return cls(*struct.unpack(_TIMESTAMP_FORMAT, data[:8]))

    def __str__(self):
        return f"{self.seconds}.{self.fraction:08x}"


def to_ntp_time(unix_ns: int) -> NtpTimestamp:
    """
    Convert an absolute time to an NTP timestamp.

    Both parts are truncated toward zero and wrap at 2**32; times outside the
    current NTP era are not rejected here.

    :param unix_ns: Nanoseconds since the Unix epoch.
    :return: The corresponding NtpTimestamp.
    """
    elapsed = unix_ns + NTP_EPOCH_OFFSET * NANOSECONDS
    sign = -1 if elapsed < 0 else 1
    seconds, remainder = divmod(abs(elapsed), NANOSECONDS)
    fraction = (remainder * FRACTION_SCALE) // NANOSECONDS
    return NtpTimestamp(
        seconds=(sign * seconds) & UINT32_MASK,
        fraction=(sign * fraction) & UINT32_MASK,
    )


def datetime_to_unix_ns(dt: datetime) -> int:
    """Nanoseconds since the Unix epoch for an aware datetime (naive means UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt - UNIX_EPOCH
    return (
        delta.days * 86400 + delta.seconds
    ) * NANOSECONDS + delta.microseconds * 1000


def unix_ns_to_datetime(unix_ns: int) -> datetime:
    return UNIX_EPOCH + timedelta(microseconds=unix_ns // 1000)
