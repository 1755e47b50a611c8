"""
Test Configuration
==================

Pytest fixtures and test doubles for CodeScanAgent.
"""

import asyncio
import base64
import time
from typing import Callable, List, Optional, Union

import cv2
import numpy as np
import pytest

from codescan_agent.stream.frame import Frame
from codescan_agent.stream.source import BaseFrameSource, FrameSourceError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFrameSource(BaseFrameSource):
    """
    In-memory frame source.

    start() makes a first frame current (unless ready=False) without
    notifying listeners; push() publishes further frames.
    """

    def __init__(
        self,
        start_error: Optional[FrameSourceError] = None,
        ready: bool = True,
        size: tuple = (120, 160),
    ) -> None:
        super().__init__()
        self.start_error = start_error
        self.ready = ready
        self.size = size
        self.start_calls = 0
        self.stop_calls = 0

    async def start(self) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        self._running = True
        if self.ready:
            self._frame_counter += 1
            self._latest = Frame(
                frame_id=self._frame_counter,
                timestamp=time.time(),
                pixels=np.full((*self.size, 3), 255, dtype=np.uint8),
            )

    async def stop(self) -> None:
        self.stop_calls += 1
        self._clear()

    async def push(self, pixels: Optional[np.ndarray] = None) -> Frame:
        if pixels is None:
            pixels = np.full((*self.size, 3), 255, dtype=np.uint8)
        return await self._publish(pixels)


class FakeCapture:
    """cv2.VideoCapture stand-in; open_delay makes the open block."""

    def __init__(self, opened: bool = True, open_delay: float = 0.0) -> None:
        self.opened = opened
        self.open_delay = open_delay
        self.released = False
        self.props = {}

    def factory(self, index: int) -> "FakeCapture":
        if self.open_delay:
            time.sleep(self.open_delay)
        return self

    def isOpened(self) -> bool:
        return self.opened

    def set(self, prop, value) -> bool:
        self.props[prop] = value
        return True

    def read(self):
        return True, np.full((36, 48, 3), 90, dtype=np.uint8)

    def release(self) -> None:
        self.released = True


class ScriptedStrategy:
    """
    Decode strategy returning scripted results in order.

    Each script item is a string (decoded), None (miss) or an exception
    instance (raised). The last item repeats once the script runs out.
    When a gate event is given, decode() waits on it first.
    """

    def __init__(
        self,
        strategy_id: str,
        script: List[Union[str, None, Exception]],
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.strategy_id = strategy_id
        self.script = list(script)
        self.gate = gate
        self.calls: List[int] = []

    async def decode(self, frame: Frame) -> Optional[str]:
        self.calls.append(frame.frame_id)
        if self.gate is not None:
            await self.gate.wait()
        item = self.script[min(len(self.calls) - 1, len(self.script) - 1)]
        if isinstance(item, Exception):
            raise item
        return item


class EventRecorder:
    """Async event listener collecting every event."""

    def __init__(self) -> None:
        self.events: list = []

    async def __call__(self, event) -> None:
        self.events.append(event)

    def of_type(self, event_type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll a predicate on the event loop until true or timed out."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.005)
    return predicate()


def make_qr_image(text: str, scale: int = 8, border: int = 4) -> np.ndarray:
    """Render text as a BGR QR code with a white quiet zone."""
    encoder = cv2.QRCodeEncoder.create()
    modules = encoder.encode(text)
    modules = cv2.copyMakeBorder(
        modules, border, border, border, border, cv2.BORDER_CONSTANT, value=255
    )
    height, width = modules.shape[:2]
    upscaled = cv2.resize(
        modules, (width * scale, height * scale), interpolation=cv2.INTER_NEAREST
    )
    return cv2.cvtColor(upscaled, cv2.COLOR_GRAY2BGR)


@pytest.fixture
def fake_clock():
    """Provide a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def blank_frame():
    """Provide a white 160x120 frame."""
    return Frame(
        frame_id=7,
        timestamp=1707321234.567,
        pixels=np.full((120, 160, 3), 255, dtype=np.uint8),
    )


@pytest.fixture
def qr_frame():
    """Provide a frame showing a QR code for 'HTSM1/3SN69801'."""
    return Frame(frame_id=11, timestamp=1707321234.567, pixels=make_qr_image("HTSM1/3SN69801"))


@pytest.fixture
def sample_frame_message():
    """Provide a sample FrameMessage (with a real JPEG) for testing."""
    ok, buffer = cv2.imencode(".jpg", np.full((48, 64, 3), 200, dtype=np.uint8))
    assert ok
    return {
        "source": "scanner-cam-01",
        "version": "v1.0",
        "frame_id": 100,
        "timestamp": 1707321234.567,
        "fps": 15,
        "image": base64.b64encode(buffer.tobytes()).decode("ascii"),
    }
