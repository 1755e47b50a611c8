"""
Camera Frame Source
===================

Local camera capture through OpenCV.

This source:
    - Opens a VideoCapture on a device index with requested size/FPS
    - Reads frames in a background task (blocking reads run in a thread)
    - Publishes every frame to listeners while playing
    - Maps device failures to FrameSourceError reasons

Design Rules:
    - One capture handle per source; released on stop()
    - stop() is idempotent
    - Read failures are transient and logged at a bounded rate
"""

import asyncio
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Callable, Optional

import cv2

from codescan_agent.stream.source import (
    BaseFrameSource,
    FrameSourceError,
    FrameSourceErrorReason,
)


logger = logging.getLogger(__name__)


class CameraFrameSource(BaseFrameSource):
    """
    Frame source backed by a local camera.

    Attributes:
        device_index: OpenCV device index
        width: Requested frame width
        height: Requested frame height
        fps: Requested capture FPS

    Example:
        source = CameraFrameSource(device_index=0)
        await source.start()
        frame = source.current_frame()
        await source.stop()
    """

    def __init__(
        self,
        device_index: int = 0,
        width: int = 1280,
        height: int = 720,
        fps: int = 15,
        capture_factory: Callable[[int], Any] = cv2.VideoCapture,
    ) -> None:
        """
        Initialize camera source.

        Args:
            device_index: OpenCV device index
            width: Requested frame width
            height: Requested frame height
            fps: Requested capture FPS
            capture_factory: Builds the capture object (injectable for tests)
        """
        super().__init__()
        self.device_index = device_index
        self.width = width
        self.height = height
        self.fps = fps

        self._capture_factory = capture_factory
        self._capture: Optional[Any] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._read_failures: int = 0
        self._stop_requested = False

    async def start(self) -> None:
        """
        Open the camera and start the reader task.

        A stop() that lands while the device is still opening wins: the
        capture is released as soon as the open returns.

        Raises:
            FrameSourceError: Device missing, access denied or no camera backend
        """
        if self._running:
            return
        self._stop_requested = False

        if self._capture_factory is cv2.VideoCapture:
            self._check_platform()
            self._check_device_access()

        capture = await asyncio.to_thread(self._capture_factory, self.device_index)
        if capture is None or not capture.isOpened():
            if capture is not None:
                capture.release()
            raise FrameSourceError(
                FrameSourceErrorReason.NO_DEVICE,
                f"Camera {self.device_index} could not be opened",
            )

        if self._stop_requested:
            await asyncio.to_thread(capture.release)
            logger.info(f"Camera {self.device_index} stopped while opening, released")
            return

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        capture.set(cv2.CAP_PROP_FPS, self.fps)

        self._capture = capture
        self._running = True
        self._reader_task = asyncio.create_task(
            self._read_loop(),
            name=f"camera_reader_{self.device_index}",
        )
        logger.info(
            f"Camera {self.device_index} opened: "
            f"requested {self.width}x{self.height}@{self.fps}fps"
        )

    async def stop(self) -> None:
        """Stop reading and release the camera. Safe to call repeatedly."""
        self._running = False
        self._stop_requested = True

        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        if self._capture is not None:
            capture, self._capture = self._capture, None
            await asyncio.to_thread(capture.release)
            logger.info(f"Camera {self.device_index} released")

        self._clear()

    async def _read_loop(self) -> None:
        """Read frames until stopped; reads block at the camera's frame rate."""
        retry_delay = 1.0 / max(1, self.fps)

        while self._running and self._capture is not None:
            ok, pixels = await asyncio.to_thread(self._capture.read)

            if not ok or pixels is None:
                self._read_failures += 1
                if self._read_failures % 30 == 1:
                    logger.warning(
                        f"Camera {self.device_index} read failed "
                        f"({self._read_failures} total)"
                    )
                await asyncio.sleep(retry_delay)
                continue

            await self._publish(pixels, timestamp=time.time())

    def _check_platform(self) -> None:
        registry = getattr(cv2, "videoio_registry", None)
        if registry is not None and not registry.getCameraBackends():
            raise FrameSourceError(
                FrameSourceErrorReason.UNSUPPORTED,
                "OpenCV build has no camera backend",
            )

    def _check_device_access(self) -> None:
        if not sys.platform.startswith("linux"):
            return
        device = Path(f"/dev/video{self.device_index}")
        if device.exists() and not os.access(device, os.R_OK | os.W_OK):
            raise FrameSourceError(
                FrameSourceErrorReason.PERMISSION_DENIED,
                f"No read/write access to {device}",
            )

    def metrics(self) -> dict:
        metrics = super().metrics()
        metrics["read_failures"] = self._read_failures
        return metrics
