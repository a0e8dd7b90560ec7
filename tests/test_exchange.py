#!/usr/bin/env python3
"""
Tests for the NTP exchange engine

Drives exchange() with a scripted clock and transport so every timestamp is
known in advance.
"""

import pytest

from ntpbeacon.clock import LocalTimestamp
from ntpbeacon.errors import NetworkError, NTPTimeoutError, ProtocolError
from ntpbeacon.exchange import TimeSample, exchange
from ntpbeacon.packet import NTPPacket, to_ntp_timestamp

from conftest import (
    SERVER_ADDRESS,
    ScriptedTimestampSource,
    ScriptedTransport,
    failing,
    make_reply,
    replying,
)


class TestExchangeArithmetic:
    """Test offset and roundtrip computation"""

    def test_worked_example(self, endpoint, example_clock, example_transport):
        """t0=1000.000000 t1=2000.000050 t2=2000.000060 t3=1000.000200"""
        sample = exchange(endpoint, example_clock, example_transport)

        assert sample == TimeSample(
            seconds=2000,
            seconds_fraction=60,
            roundtrip_micros=190,
            offset_micros=999999955,
        )

    def test_request_sent_to_endpoint(self, endpoint, example_clock, example_transport):
        """Request carries t0 as transmit timestamp and goes to the resolved address"""
        exchange(endpoint, example_clock, example_transport)

        data, address = example_transport.sent[0]
        request = NTPPacket.from_bytes(data)

        assert address == SERVER_ADDRESS
        assert request.mode == 3
        assert request.tx_timestamp == to_ntp_timestamp(LocalTimestamp(1000, 0))
        assert example_transport.receive_timeouts == [endpoint.timeout]
        assert example_clock.calls == 2

    def test_negative_offset(self, endpoint):
        """Server behind the local clock gives a negative offset truncated toward zero"""
        clock = ScriptedTimestampSource(LocalTimestamp(5000, 0), LocalTimestamp(5000, 101))
        transport = ScriptedTransport(replying(LocalTimestamp(4000, 0), LocalTimestamp(4000, 0)))

        sample = exchange(endpoint, clock, transport)

        # ((4000 - 5000) + (4000 - 5000.000101)) / 2 = -1000.0000505s
        assert sample.offset_micros == -1000000050
        assert sample.roundtrip_micros == 101

    def test_small_negative_roundtrip_clamped(self, endpoint):
        """Jitter below the tolerance clamps the roundtrip to zero"""
        clock = ScriptedTimestampSource(LocalTimestamp(1000, 0), LocalTimestamp(1000, 10))
        transport = ScriptedTransport(replying(LocalTimestamp(1000, 0), LocalTimestamp(1000, 50)))

        sample = exchange(endpoint, clock, transport, roundtrip_tolerance_micros=100)
        assert sample.roundtrip_micros == 0

    def test_large_negative_roundtrip_rejected(self, endpoint):
        """A roundtrip more negative than the tolerance is a protocol error"""
        clock = ScriptedTimestampSource(LocalTimestamp(1000, 0), LocalTimestamp(1000, 10))
        transport = ScriptedTransport(replying(LocalTimestamp(1000, 0), LocalTimestamp(1000, 5000)))

        with pytest.raises(ProtocolError, match="Negative roundtrip"):
            exchange(endpoint, clock, transport, roundtrip_tolerance_micros=100)

    @pytest.mark.parametrize("processing", [0, 1, 999, 5000])
    def test_roundtrip_never_negative(self, endpoint, processing):
        """Matching replies always give a non-negative roundtrip"""
        clock = ScriptedTimestampSource(LocalTimestamp(100, 0), LocalTimestamp(100, 8000))
        transport = ScriptedTransport(
            replying(LocalTimestamp(300, 1000), LocalTimestamp(300, 1000 + processing))
        )
        assert exchange(endpoint, clock, transport).roundtrip_micros >= 0


class TestExchangeValidation:
    """Test rejection of unusable replies"""

    def _exchange_with(self, endpoint, **overrides):
        clock = ScriptedTimestampSource(LocalTimestamp(1000, 0), LocalTimestamp(1000, 200))
        transport = ScriptedTransport(
            replying(LocalTimestamp(2000, 50), LocalTimestamp(2000, 60), **overrides)
        )
        return exchange(endpoint, clock, transport)

    def test_origin_mismatch_rejected(self, endpoint):
        """A reply to some other request is a protocol error when nothing else arrives"""
        with pytest.raises(ProtocolError, match="Origin timestamp"):
            self._exchange_with(endpoint, orig_timestamp=12345)

    def test_kiss_of_death_rejected(self, endpoint):
        """Stratum 0 replies are rejected with the kiss code in the message"""
        with pytest.raises(ProtocolError, match="DENY"):
            self._exchange_with(endpoint, stratum=0, ref_id=int.from_bytes(b"DENY", "big"))

    def test_unsynchronized_stratum_rejected(self, endpoint):
        with pytest.raises(ProtocolError, match="stratum 16"):
            self._exchange_with(endpoint, stratum=16)

    def test_leap_alarm_rejected(self, endpoint):
        with pytest.raises(ProtocolError, match="leap indicator"):
            self._exchange_with(endpoint, leap=3)

    def test_wrong_mode_rejected(self, endpoint):
        with pytest.raises(ProtocolError, match="mode"):
            self._exchange_with(endpoint, mode=3)

    def test_version_mismatch_rejected(self, endpoint):
        with pytest.raises(ProtocolError, match="version"):
            self._exchange_with(endpoint, version=3)

    def test_zero_transmit_timestamp_rejected(self, endpoint):
        with pytest.raises(ProtocolError, match="zero transmit"):
            self._exchange_with(endpoint, tx_timestamp=0)

    def test_short_reply_rejected(self, endpoint):
        """Truncated datagrams are protocol errors"""
        clock = ScriptedTimestampSource(LocalTimestamp(1000, 0), LocalTimestamp(1000, 200))
        transport = ScriptedTransport(lambda request: (bytes(40), SERVER_ADDRESS))

        with pytest.raises(ProtocolError, match="48 bytes"):
            exchange(endpoint, clock, transport)

    def test_reply_from_other_address_rejected(self, endpoint):
        """Replies from anywhere but the server are ignored as errors"""
        def responder(request):
            reply = make_reply(request, LocalTimestamp(2000, 50), LocalTimestamp(2000, 60))
            return reply, ("198.51.100.7", 123)

        clock = ScriptedTimestampSource(LocalTimestamp(1000, 0), LocalTimestamp(1000, 200))
        with pytest.raises(ProtocolError, match="does not match server"):
            exchange(endpoint, clock, ScriptedTransport(responder))


class TestExchangeSkipsStaleDatagrams:
    """Test that datagrams not answering the request are skipped"""

    def _current_reply(self, request):
        return make_reply(request, LocalTimestamp(2000, 50), LocalTimestamp(2000, 60)), SERVER_ADDRESS

    def test_late_reply_to_earlier_request_skipped(self, endpoint):
        """A leftover reply from a timed-out exchange does not hide the current one"""
        def responder(request):
            stale = make_reply(request, LocalTimestamp(1999, 0), LocalTimestamp(1999, 10),
                               orig_timestamp=to_ntp_timestamp(LocalTimestamp(990, 0)))
            return [(stale, SERVER_ADDRESS), self._current_reply(request)]

        # t3 is read once per datagram; the stale one arrives at 1000.000100
        clock = ScriptedTimestampSource(
            LocalTimestamp(1000, 0), LocalTimestamp(1000, 100), LocalTimestamp(1000, 200)
        )
        transport = ScriptedTransport(responder)
        sample = exchange(endpoint, clock, transport)

        assert sample == TimeSample(2000, 60, 190, 999999955)
        assert len(transport.sent) == 1
        assert len(transport.receive_timeouts) == 2
        assert transport.receive_timeouts[1] <= endpoint.timeout

    def test_datagram_from_other_sender_skipped(self, endpoint, example_clock):
        def responder(request):
            current, _ = self._current_reply(request)
            return [(current, ("198.51.100.7", 123)), self._current_reply(request)]

        sample = exchange(endpoint, example_clock, ScriptedTransport(responder))
        assert sample.seconds == 2000

    def test_invalid_reply_from_server_not_skipped(self, endpoint, example_clock):
        """A matching reply that fails validation is rejected at once"""
        def responder(request):
            bad = make_reply(request, LocalTimestamp(2000, 50), LocalTimestamp(2000, 60), stratum=16)
            return [(bad, SERVER_ADDRESS), self._current_reply(request)]

        with pytest.raises(ProtocolError, match="stratum 16"):
            exchange(endpoint, example_clock, ScriptedTransport(responder))


class TestExchangeTransportFailures:
    """Transport errors propagate unchanged; the engine never retries"""

    def test_timeout(self, endpoint, example_clock):
        transport = ScriptedTransport(failing(NTPTimeoutError("no reply")))

        with pytest.raises(NTPTimeoutError):
            exchange(endpoint, example_clock, transport)
        assert len(transport.sent) == 1

    def test_network_error(self, endpoint, example_clock):
        transport = ScriptedTransport(failing(NetworkError("connection refused")))

        with pytest.raises(NetworkError):
            exchange(endpoint, example_clock, transport)
        assert len(transport.sent) == 1
