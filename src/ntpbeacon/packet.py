#!/usr/bin/env python3
"""
NTP Packet Codec

Encodes and decodes the 48-byte NTPv4 packet (RFC 5905) as twelve
big-endian 32-bit words:

    word 0:     LI(2) | VN(3) | Mode(3) | Stratum(8) | Poll(8) | Precision(8)
    word 1:     root delay (NTP short format)
    word 2:     root dispersion (NTP short format)
    word 3:     reference identifier
    words 4-5:  reference timestamp
    words 6-7:  origin timestamp
    words 8-9:  receive timestamp
    words 10-11: transmit timestamp

Timestamps are kept as raw 64-bit NTP values (32-bit seconds since
1900-01-01, 32-bit binary fraction) so that the origin check compares the
exact bits that went out on the wire.
"""

import struct
from dataclasses import dataclass
from typing import Tuple

from .clock import LocalTimestamp
from .errors import ProtocolError

NTP_PACKET_FORMAT = "!12I"
NTP_PACKET_SIZE = struct.calcsize(NTP_PACKET_FORMAT)  # 48
NTP_EPOCH_OFFSET = 2208988800  # Seconds between 1900 and 1970

MODE_CLIENT = 3
MODE_SERVER = 4
LEAP_ALARM = 3  # Server clock not synchronized
STRATUM_KISS_OF_DEATH = 0
STRATUM_UNSYNCHRONIZED = 16

_FRACTION_SCALE = 1 << 32


def to_ntp_timestamp(timestamp: LocalTimestamp) -> int:
    """Convert a local Unix timestamp to a 64-bit NTP timestamp."""
    seconds = (timestamp.seconds + NTP_EPOCH_OFFSET) & 0xFFFFFFFF
    fraction = (timestamp.micros * _FRACTION_SCALE + 500_000) // 1_000_000
    return (seconds << 32) | fraction


def ntp_to_unix_micros(value: int) -> int:
    """Convert a 64-bit NTP timestamp to microseconds since the Unix epoch.

    The fraction is rounded to the nearest microsecond, so any value produced
    by to_ntp_timestamp converts back exactly.
    """
    micros_since_1900 = (value * 1_000_000 + (_FRACTION_SCALE >> 1)) >> 32
    return micros_since_1900 - NTP_EPOCH_OFFSET * 1_000_000


def split_micros(total_micros: int) -> Tuple[int, int]:
    """Split microseconds since the epoch into (seconds, microseconds)."""
    return divmod(total_micros, 1_000_000)


def _signed_byte(value: int) -> int:
    return struct.unpack('>b', struct.pack('>B', value & 0xFF))[0]


@dataclass(frozen=True)
class NTPPacket:
    """Decoded NTP packet."""
    leap: int = 0
    version: int = 4
    mode: int = MODE_CLIENT
    stratum: int = 0
    poll: int = 0
    precision: int = 0
    root_delay: int = 0
    root_dispersion: int = 0
    ref_id: int = 0
    ref_timestamp: int = 0
    orig_timestamp: int = 0
    recv_timestamp: int = 0
    tx_timestamp: int = 0

    @classmethod
    def client_request(cls, tx_timestamp: int, version: int = 4) -> "NTPPacket":
        """Build a client-mode request carrying the local transmit time."""
        return cls(leap=0, version=version, mode=MODE_CLIENT, tx_timestamp=tx_timestamp)

    @classmethod
    def from_bytes(cls, data: bytes) -> "NTPPacket":
        """Decode a packet; anything other than exactly 48 bytes is rejected."""
        if len(data) != NTP_PACKET_SIZE:
            raise ProtocolError(
                f"NTP packet must be {NTP_PACKET_SIZE} bytes, got {len(data)}"
            )

        words = struct.unpack(NTP_PACKET_FORMAT, data)
        header = words[0]

        return cls(
            leap=(header >> 30) & 0x3,
            version=(header >> 27) & 0x7,
            mode=(header >> 24) & 0x7,
            stratum=(header >> 16) & 0xFF,
            poll=_signed_byte(header >> 8),
            precision=_signed_byte(header),
            root_delay=words[1],
            root_dispersion=words[2],
            ref_id=words[3],
            ref_timestamp=(words[4] << 32) | words[5],
            orig_timestamp=(words[6] << 32) | words[7],
            recv_timestamp=(words[8] << 32) | words[9],
            tx_timestamp=(words[10] << 32) | words[11],
        )

    def to_bytes(self) -> bytes:
        """Encode to the 48-byte wire form."""
        header = (
            (self.leap & 0x3) << 30
            | (self.version & 0x7) << 27
            | (self.mode & 0x7) << 24
            | (self.stratum & 0xFF) << 16
            | (self.poll & 0xFF) << 8
            | (self.precision & 0xFF)
        )
        words = [header, self.root_delay, self.root_dispersion, self.ref_id]
        for timestamp in (self.ref_timestamp, self.orig_timestamp,
                          self.recv_timestamp, self.tx_timestamp):
            words.append((timestamp >> 32) & 0xFFFFFFFF)
            words.append(timestamp & 0xFFFFFFFF)

        return struct.pack(NTP_PACKET_FORMAT, *words)

    @property
    def kiss_code(self) -> str:
        """ASCII kiss code carried in the reference id of a stratum 0 reply."""
        raw = struct.pack('!I', self.ref_id)
        return raw.decode('ascii', errors='replace').rstrip('\x00')
