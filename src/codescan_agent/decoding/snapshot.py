"""
Snapshot Decode Strategy
========================

Decodes the current frame locally, first as-is and then colour-inverted
(light symbols printed on dark labels). Both passes count as one attempt.
"""

import asyncio
import logging
from typing import Optional

import numpy as np

from codescan_agent.decoding.base import STRATEGY_SNAPSHOT
from codescan_agent.decoding.symbols import first_symbol
from codescan_agent.stream.frame import Frame
from codescan_agent.stream.image_codec import invert


logger = logging.getLogger(__name__)


def decode_identity_then_inverted(pixels: np.ndarray) -> str:
    """Blocking: decode the image, falling back to its inverse."""
    text = first_symbol(pixels)
    if text:
        return text
    return first_symbol(invert(pixels))


class SnapshotDecodeStrategy:
    """Local decode of a single snapshot, identity then inverted."""

    strategy_id = STRATEGY_SNAPSHOT

    def __init__(self) -> None:
        self._attempts = 0
        self._hits = 0

    async def decode(self, frame: Frame) -> Optional[str]:
        self._attempts += 1
        text = await asyncio.to_thread(decode_identity_then_inverted, frame.pixels)
        if not text:
            return None

        self._hits += 1
        logger.debug(f"Snapshot decode hit on frame {frame.frame_id}")
        return text

    def get_metrics(self) -> dict:
        return {"attempts": self._attempts, "hits": self._hits}
