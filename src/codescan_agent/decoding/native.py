"""
Continuous Native Decoder
=========================

Highest-priority strategy: decodes frames as they arrive from the frame
source, without waiting for the fallback loop.

This decoder:
    - Is single-flight: a frame arriving while a decode runs is skipped
    - Is rate-limited to scan_fps decodes per second
    - Remembers the last frame it decoded, so the fallback loop never
      re-runs the chain on that frame

Design Rules:
    - Decoding runs in a worker thread (asyncio.to_thread)
    - Decoder failures are logged and reported as an unsuccessful attempt
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional

import numpy as np

from codescan_agent.decoding.base import STRATEGY_NATIVE
from codescan_agent.decoding.symbols import decode_symbols
from codescan_agent.models.codes import DecodeAttempt
from codescan_agent.stream.frame import Frame


logger = logging.getLogger(__name__)


class ContinuousNativeDecoder:
    """
    Frame-driven local decoder.

    Attributes:
        scan_fps: Maximum decodes per second
        last_decoded_frame_id: Frame id of the last successful decode (-1 if none)

    Example:
        decoder = ContinuousNativeDecoder(scan_fps=15)
        attempt = await decoder.scan(frame)
        if attempt is not None and attempt.succeeded:
            print(attempt.result_text)
    """

    strategy_id = STRATEGY_NATIVE

    def __init__(
        self,
        scan_fps: float = 15.0,
        decoder: Callable[[np.ndarray], List[str]] = decode_symbols,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the decoder.

        Args:
            scan_fps: Maximum decodes per second (<= 0 disables rate limiting)
            decoder: Blocking pixel decoder returning decoded texts
            clock: Monotonic time source
        """
        self.scan_fps = scan_fps
        self.min_interval = 1.0 / scan_fps if scan_fps > 0 else 0.0
        self._decoder = decoder
        self._clock = clock

        self._busy = False
        self._last_scan_at: Optional[float] = None
        self.last_decoded_frame_id: int = -1

        self._scans = 0
        self._hits = 0
        self._skipped_busy = 0
        self._skipped_rate = 0
        self._errors = 0

    @property
    def busy(self) -> bool:
        """Whether a decode is currently running."""
        return self._busy

    def reset(self) -> None:
        """Forget the last decoded frame (new session)."""
        self.last_decoded_frame_id = -1
        self._last_scan_at = None

    async def scan(self, frame: Frame) -> Optional[DecodeAttempt]:
        """
        Decode one frame unless busy or rate-limited.

        Args:
            frame: Newly arrived frame

        Returns:
            DecodeAttempt, or None if the frame was skipped
        """
        if self._busy:
            self._skipped_busy += 1
            return None

        now = self._clock()
        if self._last_scan_at is not None and now - self._last_scan_at < self.min_interval:
            self._skipped_rate += 1
            return None

        self._busy = True
        self._last_scan_at = now
        self._scans += 1
        try:
            texts = await asyncio.to_thread(self._decoder, frame.pixels)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._errors += 1
            logger.error(f"Native decode failed on frame {frame.frame_id}: {e}")
            texts = []
        finally:
            self._busy = False

        text = next((t for t in texts if t), None)
        if text is None:
            return DecodeAttempt(strategy_id=self.strategy_id, frame_id=frame.frame_id)

        self._hits += 1
        self.last_decoded_frame_id = frame.frame_id
        return DecodeAttempt(
            strategy_id=self.strategy_id,
            frame_id=frame.frame_id,
            result_text=text,
            succeeded=True,
        )

    def get_metrics(self) -> dict:
        return {
            "scans": self._scans,
            "hits": self._hits,
            "skipped_busy": self._skipped_busy,
            "skipped_rate": self._skipped_rate,
            "errors": self._errors,
        }
