#!/usr/bin/env python3
"""
NTP Exchange Engine

Performs one client/server exchange against an NTP server and derives the
server time, clock offset and roundtrip delay from the four timestamps:

    t0 = client transmit (local)     t1 = server receive
    t2 = server transmit             t3 = client receive (local)

    delay  = (t3 - t0) - (t2 - t1)
    offset = ((t1 - t0) + (t2 - t3)) / 2

All arithmetic is done on integer microseconds. The engine sends one request
and never retries; retry policy belongs to the poller. Datagrams that do not
answer the request (late replies to an earlier one, or other senders) are
skipped while the response timeout lasts.
"""

import logging
import time
from typing import NamedTuple, Optional, Tuple

from .clock import LocalTimestamp, TimestampSource
from .errors import NTPTimeoutError, ProtocolError
from .packet import (
    LEAP_ALARM,
    MODE_SERVER,
    NTP_PACKET_SIZE,
    NTPPacket,
    STRATUM_KISS_OF_DEATH,
    STRATUM_UNSYNCHRONIZED,
    ntp_to_unix_micros,
    split_micros,
    to_ntp_timestamp,
)
from .transport import Endpoint, Transport

logger = logging.getLogger(__name__)

DEFAULT_ROUNDTRIP_TOLERANCE_MICROS = 1000


class TimeSample(NamedTuple):
    """Result of one successful NTP exchange."""
    seconds: int            # Server transmit time, Unix seconds
    seconds_fraction: int   # Server transmit time, microseconds within the second
    roundtrip_micros: int   # Network roundtrip with server processing removed
    offset_micros: int      # Server clock minus local clock


def _halve_toward_zero(value: int) -> int:
    return value // 2 if value >= 0 else -((-value) // 2)


def validate_response(request: NTPPacket, response: NTPPacket) -> None:
    """Check that a decoded reply answers our request and is usable."""
    if response.orig_timestamp != request.tx_timestamp:
        raise ProtocolError(
            f"Origin timestamp {response.orig_timestamp:#018x} does not match "
            f"request transmit timestamp {request.tx_timestamp:#018x}"
        )
    if response.mode != MODE_SERVER:
        raise ProtocolError(f"Unexpected NTP mode {response.mode} in reply")
    if response.version != request.version:
        raise ProtocolError(
            f"Reply version {response.version} does not match request version {request.version}"
        )
    if response.leap == LEAP_ALARM:
        raise ProtocolError("Server reports an unsynchronized clock (leap indicator 3)")
    if response.stratum == STRATUM_KISS_OF_DEATH:
        raise ProtocolError(f"Kiss-of-death reply from server: {response.kiss_code!r}")
    if response.stratum >= STRATUM_UNSYNCHRONIZED:
        raise ProtocolError(f"Server stratum {response.stratum} is unsynchronized")
    if response.tx_timestamp == 0:
        raise ProtocolError("Reply carries a zero transmit timestamp")


def _reply_mismatch(endpoint: Endpoint, request: NTPPacket,
                    data: bytes, sender) -> Optional[ProtocolError]:
    """Return an error when a datagram does not answer request, else None."""
    if tuple(sender) != tuple(endpoint.address):
        return ProtocolError(
            f"Reply from {sender[0]}:{sender[1]} does not match server "
            f"{endpoint.address[0]}:{endpoint.address[1]}"
        )
    if len(data) == NTP_PACKET_SIZE:
        origin = NTPPacket.from_bytes(data).orig_timestamp
        if origin != request.tx_timestamp:
            return ProtocolError(
                f"Origin timestamp {origin:#018x} does not match "
                f"request transmit timestamp {request.tx_timestamp:#018x}"
            )
    return None


def _receive_reply(endpoint: Endpoint,
                   timestamp_source: TimestampSource,
                   transport: Transport,
                   request: NTPPacket) -> Tuple[bytes, LocalTimestamp]:
    """
    Receive the datagram answering request, along with its arrival time.

    Datagrams from other senders, or late replies to an earlier request, are
    skipped until the endpoint timeout runs out. If only such datagrams
    arrived, the last mismatch is raised instead of the timeout.
    """
    deadline = time.monotonic() + endpoint.timeout
    timeout = endpoint.timeout
    mismatch: Optional[ProtocolError] = None

    while True:
        try:
            data, sender = transport.receive(timeout)
        except NTPTimeoutError:
            if mismatch is not None:
                raise mismatch
            raise
        t3 = timestamp_source.now()

        mismatch = _reply_mismatch(endpoint, request, data, sender)
        if mismatch is None:
            return data, t3
        logger.debug(f"Skipping datagram from {sender[0]}:{sender[1]}: {mismatch}")

        timeout = deadline - time.monotonic()
        if timeout <= 0:
            raise mismatch


def exchange(endpoint: Endpoint,
             timestamp_source: TimestampSource,
             transport: Transport,
             version: int = 4,
             roundtrip_tolerance_micros: int = DEFAULT_ROUNDTRIP_TOLERANCE_MICROS) -> TimeSample:
    """
    Run one NTP exchange against endpoint.

    Args:
        endpoint: Resolved server address and response timeout
        timestamp_source: Local clock used for t0 and t3
        transport: Datagram transport
        version: NTP version written in the request
        roundtrip_tolerance_micros: Negative roundtrips down to minus this
            value are clamped to zero; anything lower is a protocol error

    Returns:
        TimeSample built from the server transmit time

    Raises:
        NetworkError, NTPTimeoutError, ProtocolError
    """
    t0 = timestamp_source.now()
    request = NTPPacket.client_request(to_ntp_timestamp(t0), version=version)

    transport.send(request.to_bytes(), endpoint.address)
    data, t3 = _receive_reply(endpoint, timestamp_source, transport, request)

    response = NTPPacket.from_bytes(data)
    validate_response(request, response)

    t0_us = ntp_to_unix_micros(request.tx_timestamp)
    t1_us = ntp_to_unix_micros(response.recv_timestamp)
    t2_us = ntp_to_unix_micros(response.tx_timestamp)
    t3_us = t3.total_micros

    roundtrip = (t3_us - t0_us) - (t2_us - t1_us)
    if roundtrip < 0:
        if -roundtrip > roundtrip_tolerance_micros:
            raise ProtocolError(
                f"Negative roundtrip {roundtrip}μs exceeds tolerance of "
                f"{roundtrip_tolerance_micros}μs"
            )
        roundtrip = 0

    offset = _halve_toward_zero((t1_us - t0_us) + (t2_us - t3_us))
    seconds, fraction = split_micros(t2_us)

    logger.debug(f"NTP exchange with {endpoint}: stratum={response.stratum}, "
                 f"offset={offset}μs, roundtrip={roundtrip}μs")

    return TimeSample(
        seconds=seconds,
        seconds_fraction=fraction,
        roundtrip_micros=roundtrip,
        offset_micros=offset
    )
