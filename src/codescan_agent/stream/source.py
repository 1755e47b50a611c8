"""
Frame Source
============

Common contract of everything that produces frames for an acquisition session.

A frame source:
    - Acquires its device/stream on start() (fatal errors raise FrameSourceError)
    - Keeps the most recent frame available through current_frame()
    - Notifies frame-arrival listeners while playing (not paused)
    - Releases everything on stop(), which is idempotent

Design Rules:
    - current_frame() raises FrameNotReady until the stream reports non-zero
      dimensions; this is transient, callers retry on the next cycle
    - A failing listener is logged and never stops the source
    - Exclusive device ownership is enforced by the platform, not here
"""

import logging
import time
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol

import cv2
import numpy as np

from codescan_agent.stream.frame import Frame


logger = logging.getLogger(__name__)


FrameListener = Callable[[Frame], Awaitable[None]]


class FrameSourceErrorReason(str, Enum):
    """Fatal reasons a frame source cannot start."""

    NO_DEVICE = "NO_DEVICE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNSUPPORTED = "UNSUPPORTED"


class FrameSourceError(Exception):
    """Raised when a frame source cannot be started. Not retried."""

    def __init__(self, reason: FrameSourceErrorReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class FrameNotReady(Exception):
    """Raised by current_frame() before the first frame with real dimensions."""
    pass


class FrameSource(Protocol):
    """
    Protocol for frame sources.

    Implemented by:
        - CameraFrameSource (local camera through OpenCV)
        - WebSocketFrameSource (remote JSON frame stream)
    """

    async def start(self) -> None:
        ...

    def current_frame(self) -> Frame:
        ...

    async def stop(self) -> None:
        ...

    def pause(self) -> None:
        ...

    def resume(self) -> None:
        ...

    def add_listener(self, listener: FrameListener) -> None:
        ...

    def remove_listener(self, listener: FrameListener) -> None:
        ...


class BaseFrameSource:
    """
    Shared bookkeeping for frame sources.

    Subclasses acquire their device in start(), call _publish() for every
    captured image and release everything in stop().
    """

    def __init__(self) -> None:
        self._latest: Optional[Frame] = None
        self._listeners: List[FrameListener] = []
        self._paused: bool = False
        self._running: bool = False
        self._frame_counter: int = 0
        self._listener_errors: int = 0

    @property
    def running(self) -> bool:
        """Whether the source holds its device/stream."""
        return self._running

    @property
    def paused(self) -> bool:
        """Whether frame-arrival notifications are suspended."""
        return self._paused

    @property
    def frames_published(self) -> int:
        return self._frame_counter

    def current_frame(self) -> Frame:
        """
        Most recent frame.

        Raises:
            FrameNotReady: No frame with non-zero dimensions yet
        """
        frame = self._latest
        if frame is None or frame.width == 0 or frame.height == 0:
            raise FrameNotReady("Stream has not reported frame dimensions yet")
        return frame

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def add_listener(self, listener: FrameListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: FrameListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _publish(
        self,
        pixels: np.ndarray,
        timestamp: Optional[float] = None,
        frame_id: Optional[int] = None,
    ) -> Frame:
        """Store a new frame and notify listeners unless paused."""
        if pixels.ndim == 2:
            pixels = cv2.cvtColor(pixels, cv2.COLOR_GRAY2BGR)

        self._frame_counter += 1
        frame = Frame(
            frame_id=frame_id if frame_id is not None else self._frame_counter,
            timestamp=timestamp if timestamp is not None else time.time(),
            pixels=pixels,
        )
        self._latest = frame

        if self._paused:
            return frame

        for listener in list(self._listeners):
            try:
                await listener(frame)
            except Exception as e:
                self._listener_errors += 1
                logger.error(f"Frame listener failed (frame={frame.frame_id}): {e}")

        return frame

    def _clear(self) -> None:
        self._latest = None
        self._running = False
        self._paused = False

    def metrics(self) -> dict:
        """Source metrics for observability."""
        return {
            "running": self._running,
            "paused": self._paused,
            "frames_published": self._frame_counter,
            "listener_errors": self._listener_errors,
        }
