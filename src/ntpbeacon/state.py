"""
Shared slot holding the latest TimeSample.

Single writer (the poller), many readers (HTTP handlers). Samples are
immutable tuples and publish() swaps one reference, so a reader always sees
a complete sample. Readers take no lock; the writer lock only serializes
publishers.
"""

import threading
from typing import Optional

from .exchange import TimeSample


class SharedTimeState:
    """Owned, synchronized slot for the most recent successful sample."""

    def __init__(self):
        self._sample: Optional[TimeSample] = None
        self._publish_count = 0
        self._write_lock = threading.Lock()

    def publish(self, sample: TimeSample) -> None:
        """Replace the current sample with a new one."""
        if not isinstance(sample, TimeSample):
            raise TypeError(f"Expected TimeSample, got {type(sample).__name__}")

        with self._write_lock:
            self._sample = sample
            self._publish_count += 1

    def snapshot(self) -> Optional[TimeSample]:
        """Return the latest sample, or None before the first publish."""
        return self._sample

    @property
    def publish_count(self) -> int:
        return self._publish_count
