"""Read-only accessor used by the HTTP layer."""

from .state import SharedTimeState

UNAVAILABLE_TEXT = "NTP time: unavailable"


def format_time_text(state: SharedTimeState) -> str:
    sample = state.snapshot()
    if sample is None:
        return UNAVAILABLE_TEXT
    return f"NTP time: {sample.seconds}.{sample.seconds_fraction:06d}"


class TimeQuery:
    """Formats the current shared state; never touches the network."""

    def __init__(self, state: SharedTimeState):
        self.state = state

    def current_time_text(self) -> str:
        return format_time_text(self.state)
