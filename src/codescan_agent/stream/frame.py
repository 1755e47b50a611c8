"""
Frame Data Model
=================

Internal frame representation for the acquisition pipeline.

Design Rules:
    - This is the ONLY frame format passed to decode strategies
    - Frames are snapshots: sources never mutate a published frame
    - Pixels are a BGR uint8 matrix as produced by OpenCV
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, slots=True, eq=False)
class Frame:
    """
    Raster snapshot produced by a frame source.

    It is immutable (frozen) to prevent accidental modification; strategies
    that need a derived image (grayscale, inverted) build a copy.

    Attributes:
        frame_id: Monotonically increasing frame counter from the source
        timestamp: UNIX timestamp when the frame was captured
        pixels: BGR image as np.ndarray (H, W, 3), dtype=uint8
    """

    frame_id: int
    timestamp: float
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the pixel buffer."""
        return (
            f"Frame(frame_id={self.frame_id}, "
            f"timestamp={self.timestamp:.3f}, "
            f"size={self.width}x{self.height})"
        )
