"""
ntpbeacon - NTP time beacon

Polls a single NTP server in the background and serves the most recent
time sample over HTTP.
"""

__version__ = "0.1.0"
__author__ = "ChronoTick Team"

from .clock import LocalTimestamp, SystemTimestampSource, TimestampSource
from .errors import NetworkError, NTPError, NTPTimeoutError, ProtocolError
from .exchange import TimeSample, exchange
from .packet import NTPPacket
from .poller import NTPPoller, PollerState
from .query import TimeQuery
from .state import SharedTimeState
from .transport import Endpoint, Transport, UDPTransport

__all__ = [
    "LocalTimestamp",
    "SystemTimestampSource",
    "TimestampSource",
    "NTPError",
    "NetworkError",
    "NTPTimeoutError",
    "ProtocolError",
    "TimeSample",
    "exchange",
    "NTPPacket",
    "NTPPoller",
    "PollerState",
    "TimeQuery",
    "SharedTimeState",
    "Endpoint",
    "Transport",
    "UDPTransport",
    "__version__"
]
