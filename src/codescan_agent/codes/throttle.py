"""
Deduplication / Throttle Gate
=============================

Pure temporal gate suppressing repeats of the same value on a channel.

Rule:
    A value is SUPPRESSED iff it equals the channel's last accepted value
    and less than the channel's window has elapsed since that acceptance.
    Otherwise it is ACCEPTED and the channel record becomes {value, now}.

Channels:
    - ACCEPTED_CODE: continuous re-scans of the same code
    - DUPLICATE_WARNING: "already stored" warnings (longer window)
    - WARNING: any other user-facing warning

The gate knows nothing about stored codes; that is the validator's job.
One gate per acquisition session.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional


logger = logging.getLogger(__name__)


class ThrottleChannel(str, Enum):
    """Independent throttle channels."""

    ACCEPTED_CODE = "accepted_code"
    DUPLICATE_WARNING = "duplicate_warning"
    WARNING = "warning"


class GateDecision(str, Enum):
    """Outcome of a gate check."""

    ACCEPTED = "ACCEPTED"
    SUPPRESSED = "SUPPRESSED"


@dataclass
class ThrottleRecord:
    """Last accepted value of a channel and when it was accepted."""

    last_value: Optional[str] = None
    last_timestamp: float = 0.0


class ThrottleGate:
    """
    Per-session throttle state for all channels.

    Attributes:
        windows: Window in seconds per channel

    Example:
        gate = ThrottleGate({ThrottleChannel.ACCEPTED_CODE: 2.0})
        gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=10.0)  # ACCEPTED
        gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=11.0)  # SUPPRESSED
        gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=12.0)  # ACCEPTED
    """

    def __init__(
        self,
        windows: Dict[ThrottleChannel, float],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the gate.

        Args:
            windows: Window in seconds per channel; missing channels use 0
            clock: Time source used when accept() gets no explicit time
        """
        self.windows = {channel: max(0.0, float(windows.get(channel, 0.0))) for channel in ThrottleChannel}
        self._clock = clock
        self._records: Dict[ThrottleChannel, ThrottleRecord] = {
            channel: ThrottleRecord() for channel in ThrottleChannel
        }
        self._suppressed: Dict[ThrottleChannel, int] = {channel: 0 for channel in ThrottleChannel}

    def accept(
        self,
        channel: ThrottleChannel,
        value: str,
        now: Optional[float] = None,
    ) -> GateDecision:
        """
        Check a value against the channel and record it if accepted.

        Args:
            channel: Channel to check
            value: Cleaned code or warning text
            now: Current time (defaults to the gate clock)

        Returns:
            ACCEPTED or SUPPRESSED
        """
        if now is None:
            now = self._clock()

        record = self._records[channel]
        if (
            record.last_value is not None
            and record.last_value == value
            and now - record.last_timestamp < self.windows[channel]
        ):
            self._suppressed[channel] += 1
            logger.debug(f"Suppressed {value!r} on {channel.value}")
            return GateDecision.SUPPRESSED

        record.last_value = value
        record.last_timestamp = now
        return GateDecision.ACCEPTED

    def record(self, channel: ThrottleChannel) -> ThrottleRecord:
        """Current record of a channel (for inspection)."""
        return self._records[channel]

    def reset(self) -> None:
        """Forget every channel record."""
        for channel in ThrottleChannel:
            self._records[channel] = ThrottleRecord()

    def get_metrics(self) -> dict:
        return {f"suppressed_{channel.value}": count for channel, count in self._suppressed.items()}
