#!/usr/bin/env python3
"""
NTP Poller

Background loop that runs one NTP exchange per interval and publishes each
successful sample into the shared time state. Individual failures are logged
and counted; the previous sample stays in place and the loop continues until
the stop event is set.
"""

import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Callable, Optional

import numpy as np

from .clock import SystemTimestampSource, TimestampSource
from .config import NTPSettings
from .errors import NTPError, NetworkError
from .exchange import TimeSample, exchange
from .state import SharedTimeState
from .transport import Endpoint, Transport, UDPTransport

logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    """Poller lifecycle states."""
    IDLE = "idle"
    REQUESTING = "requesting"
    UPDATING = "updating"
    SLEEPING_AFTER_FAILURE = "sleeping_after_failure"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


def _summary(values) -> Optional[dict]:
    if not values:
        return None
    data = np.asarray(values, dtype=np.float64)
    return {
        "mean": float(np.mean(data)),
        "std": float(np.std(data)),
        "median": float(np.median(data)),
        "min": float(np.min(data)),
        "max": float(np.max(data)),
    }


class NTPPoller:
    """
    Periodically queries one NTP server and publishes the results.

    The poller owns its UDP transport unless one is injected. Tests pass a
    scripted transport and timestamp source and drive run(max_cycles=N).
    """

    def __init__(self, settings: NTPSettings, state: SharedTimeState,
                 timestamp_source: Optional[TimestampSource] = None,
                 transport: Optional[Transport] = None,
                 resolver: Optional[Callable[[str, int, float], Endpoint]] = None):
        self.settings = settings
        self.state = state
        self.timestamp_source = timestamp_source or SystemTimestampSource()
        self.resolver = resolver or Endpoint.resolve

        self._transport = transport
        self._owns_transport = transport is None

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._stats_lock = threading.Lock()

        self.poller_state = PollerState.IDLE
        self.cycles = 0
        self.successes = 0
        self.failures = 0
        self.consecutive_failures = 0
        self.last_error: Optional[str] = None
        self.last_success_time: Optional[float] = None
        self.history = deque(maxlen=settings.history_size)

    def _get_transport(self) -> Transport:
        if self._transport is None:
            self._transport = UDPTransport(
                bind_address=self.settings.bind_address,
                bind_port=self.settings.bind_port
            ).open()
        return self._transport

    def poll_once(self) -> bool:
        """Run one exchange; publish on success. Returns True on success."""
        self.poller_state = PollerState.REQUESTING
        with self._stats_lock:
            self.cycles += 1

        try:
            transport = self._get_transport()
            endpoint = self.resolver(
                self.settings.server, self.settings.port, self.settings.timeout_seconds
            )
            sample = exchange(
                endpoint,
                self.timestamp_source,
                transport,
                version=self.settings.version,
                roundtrip_tolerance_micros=self.settings.roundtrip_tolerance_micros
            )
        except NTPError as e:
            self._record_failure(e)
            return False
        except Exception as e:
            logger.exception(f"Unexpected error during NTP poll of {self.settings.server}")
            self._record_failure(e)
            return False

        self.poller_state = PollerState.UPDATING
        self.state.publish(sample)
        self._record_success(sample)
        return True

    def _record_success(self, sample: TimeSample):
        with self._stats_lock:
            self.successes += 1
            self.consecutive_failures = 0
            self.last_success_time = time.time()
            self.history.append(sample)

        logger.debug(f"Published NTP sample from {self.settings.server}: "
                     f"time={sample.seconds}.{sample.seconds_fraction:06d}, "
                     f"offset={sample.offset_micros}μs, roundtrip={sample.roundtrip_micros}μs")

    def _record_failure(self, error: Exception):
        self.poller_state = PollerState.SLEEPING_AFTER_FAILURE
        with self._stats_lock:
            self.failures += 1
            self.consecutive_failures += 1
            self.last_error = f"{type(error).__name__}: {error}"

        logger.warning(f"NTP poll of {self.settings.server} failed "
                       f"({self.consecutive_failures} in a row): {self.last_error}")

        if isinstance(error, NetworkError) and self._owns_transport:
            # Rebind on the next cycle
            self._close_transport()

    def run(self, max_cycles: Optional[int] = None):
        """Poll until stopped, or until max_cycles cycles have run."""
        logger.info(f"Polling {self.settings.server}:{self.settings.port} every "
                    f"{self.settings.poll_interval_seconds}s "
                    f"(timeout {self.settings.timeout_seconds}s)")

        completed = 0
        while not self._stop_event.is_set():
            self.poll_once()
            completed += 1

            if max_cycles is not None and completed >= max_cycles:
                break

            if self.poller_state != PollerState.SLEEPING_AFTER_FAILURE:
                self.poller_state = PollerState.SLEEPING
            self._stop_event.wait(self.settings.poll_interval_seconds)

        self.poller_state = PollerState.STOPPED

    def start(self):
        """Start polling on a background daemon thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("NTP poller already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="ntp-poller", daemon=True)
        self._thread.start()
        logger.info("Started NTP poller thread")

    def stop(self, timeout: Optional[float] = None):
        """Signal the loop to stop and wait for the thread to exit."""
        self._stop_event.set()
        if self._thread:
            if timeout is None:
                timeout = self.settings.timeout_seconds + 1.0
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("NTP poller thread did not exit in time")
            self._thread = None

        if self._owns_transport:
            self._close_transport()
        logger.info("Stopped NTP poller")

    def _close_transport(self):
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def get_stats(self) -> dict:
        """Poller counters plus summary statistics of recent samples."""
        with self._stats_lock:
            recent = list(self.history)
            stats = {
                "state": self.poller_state.value,
                "server": self.settings.server,
                "cycles": self.cycles,
                "successes": self.successes,
                "failures": self.failures,
                "consecutive_failures": self.consecutive_failures,
                "last_error": self.last_error,
                "last_success_time": self.last_success_time,
            }

        stats["offset_micros"] = _summary([s.offset_micros for s in recent])
        stats["roundtrip_micros"] = _summary([s.roundtrip_micros for s in recent])
        return stats
