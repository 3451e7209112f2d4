__version__ = "1.0.0"

from ntp_query.client import (
    NtpClient,
    NtpStats,
    ZeroPacketError,
    BogusPacketError,
    request,
)
from ntp_query.configuration import (
    initialize_config,
    setup_logging,
    ConfigurationError,
    NtpClientConfig,
)
from ntp_query.packet import Mode, NtpError, NtpMessage, FramingError
from ntp_query.timestamp import NtpTimestamp, to_ntp_time
