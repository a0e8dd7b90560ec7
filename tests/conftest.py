"""
Pytest configuration and shared fixtures for ntpbeacon tests.
"""

import itertools
from typing import Callable, List, Optional, Tuple, Union

import pytest

from ntpbeacon.clock import LocalTimestamp, TimestampSource
from ntpbeacon.config import NTPSettings
from ntpbeacon.errors import NTPTimeoutError
from ntpbeacon.packet import MODE_SERVER, NTPPacket, to_ntp_timestamp
from ntpbeacon.transport import Endpoint, Transport

SERVER_ADDRESS = ("192.0.2.10", 123)

Reply = Tuple[bytes, tuple]


class ScriptedTimestampSource(TimestampSource):
    """Returns the given timestamps in order, repeating the sequence."""

    def __init__(self, *timestamps: LocalTimestamp):
        self._timestamps = itertools.cycle(timestamps)
        self.calls = 0

    def now(self) -> LocalTimestamp:
        self.calls += 1
        return next(self._timestamps)


class ScriptedTransport(Transport):
    """
    In-memory transport.

    responder receives each sent request and returns the (datagram, sender)
    pair for the following receive(), or a list of such pairs delivered by
    successive receives. It may raise to simulate a failure. Once the
    replies for a request are used up, receive() times out.
    """

    def __init__(self, responder: Callable[[bytes], Union[Reply, List[Reply]]]):
        self.responder = responder
        self.sent: List[Tuple[bytes, tuple]] = []
        self.receive_timeouts: List[float] = []
        self.closed = False
        self._pending: Optional[bytes] = None
        self._queued: List[Reply] = []

    def send(self, data: bytes, address) -> None:
        self.sent.append((data, address))
        self._pending = data
        self._queued = []

    def receive(self, timeout: float):
        self.receive_timeouts.append(timeout)
        if self._queued:
            return self._queued.pop(0)

        request, self._pending = self._pending, None
        if request is None:
            raise NTPTimeoutError(f"No scripted reply within {timeout}s")

        replies = self.responder(request)
        if isinstance(replies, list):
            self._queued = replies[1:]
            return replies[0]
        return replies

    def close(self) -> None:
        self.closed = True


def make_reply(request: bytes,
               recv: LocalTimestamp,
               transmit: LocalTimestamp,
               stratum: int = 2,
               **overrides) -> bytes:
    """Build a server reply that answers request."""
    decoded = NTPPacket.from_bytes(request)
    fields = dict(
        leap=0,
        version=decoded.version,
        mode=MODE_SERVER,
        stratum=stratum,
        poll=6,
        precision=-20,
        ref_id=0x47505300,  # "GPS"
        orig_timestamp=decoded.tx_timestamp,
        recv_timestamp=to_ntp_timestamp(recv),
        tx_timestamp=to_ntp_timestamp(transmit),
    )
    fields.update(overrides)
    return NTPPacket(**fields).to_bytes()


def replying(recv: LocalTimestamp, transmit: LocalTimestamp, **overrides):
    """Responder that answers every request from SERVER_ADDRESS."""
    def responder(request):
        return make_reply(request, recv, transmit, **overrides), SERVER_ADDRESS
    return responder


def failing(error: Exception):
    def responder(request):
        raise error
    return responder


@pytest.fixture
def endpoint():
    """Endpoint pointing at the documentation test address"""
    return Endpoint(host="test.ntp.server", address=SERVER_ADDRESS, timeout=1.0)


@pytest.fixture
def example_clock():
    """Local clock for the worked example: t0=1000.000000, t3=1000.000200"""
    return ScriptedTimestampSource(LocalTimestamp(1000, 0), LocalTimestamp(1000, 200))


@pytest.fixture
def example_transport():
    """Server reply for the worked example: t1=2000.000050, t2=2000.000060"""
    return ScriptedTransport(replying(LocalTimestamp(2000, 50), LocalTimestamp(2000, 60)))


@pytest.fixture
def ntp_settings():
    """Fast-polling settings for poller tests"""
    return NTPSettings(
        server="test.ntp.server",
        timeout_seconds=1.0,
        poll_interval_seconds=0.01,
        bind_address="127.0.0.1",
        bind_port=0,
    )
