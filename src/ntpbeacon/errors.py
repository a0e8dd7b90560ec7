"""
Exception types raised by a single NTP exchange.

All of them are local to one polling cycle: the poller catches NTPError,
keeps the previous sample and carries on.
"""


class NTPError(Exception):
    """Base class for failures of one NTP request/response exchange."""


class NetworkError(NTPError):
    """Socket bind, address resolution, send or receive failure."""


class NTPTimeoutError(NTPError, TimeoutError):
    """No datagram arrived within the endpoint timeout."""


class ProtocolError(NTPError):
    """Malformed or mismatched reply, rejected stratum, or negative roundtrip."""


__all__ = ["NTPError", "NetworkError", "NTPTimeoutError", "ProtocolError"]
