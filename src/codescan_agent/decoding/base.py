"""
Decode Strategy Contract
========================

Interface shared by every strategy in the decode chain.

Contract:
    - Input: a Frame snapshot
    - Output: decoded text, or None when nothing was recognised
    - Strategies MAY raise on transport/provider failures; the chain
      catches, logs and normalises those to None
"""

from typing import Optional, Protocol, runtime_checkable

from codescan_agent.stream.frame import Frame


STRATEGY_NATIVE = "native"
STRATEGY_SNAPSHOT = "snapshot"
STRATEGY_REMOTE_SYMBOL = "remote_symbol"
STRATEGY_REMOTE_TEXT = "remote_text"


class DecodeError(Exception):
    """Base class for strategy failures (normalised to no result by the chain)."""
    pass


@runtime_checkable
class DecodeStrategy(Protocol):
    """A single way of turning a frame into code text."""

    strategy_id: str

    async def decode(self, frame: Frame) -> Optional[str]:
        ...
