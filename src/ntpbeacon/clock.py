"""Local timestamp sources used by the NTP exchange."""

import time
from abc import ABC, abstractmethod
from typing import NamedTuple


class LocalTimestamp(NamedTuple):
    """Local wall-clock time split into Unix seconds and microseconds."""
    seconds: int
    micros: int

    @property
    def total_micros(self) -> int:
        return self.seconds * 1_000_000 + self.micros


class TimestampSource(ABC):
    """Abstract base class for local clocks."""

    @abstractmethod
    def now(self) -> LocalTimestamp:
        """Return the local time at the moment of the call."""
        pass


class SystemTimestampSource(TimestampSource):
    """System wall clock."""

    def now(self) -> LocalTimestamp:
        now_ns = time.time_ns()
        return LocalTimestamp(
            seconds=now_ns // 1_000_000_000,
            micros=(now_ns % 1_000_000_000) // 1_000
        )
