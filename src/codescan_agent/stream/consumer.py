"""
WebSocket Frame Source
======================

Frame source consuming a remote JSON frame stream over WebSocket.

This source:
    - Connects to a frame stream endpoint (e.g. a networked scanner camera)
    - Receives and validates FrameMessage payloads
    - Warns on ordering/timing violations but keeps the frames
    - Decodes the base64 image into a frame and publishes it
    - Reconnects with a fixed backoff until stopped

Design Rules:
    - Invalid messages are counted and skipped, never fatal
    - Only an unusable URL is fatal (FrameSourceError)
    - Exposes metrics for health monitoring
"""

import asyncio
import logging
from typing import Any, Optional
from urllib.parse import urlparse

import websockets
from pydantic import ValidationError
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
)

from codescan_agent.models.input import FrameMessage
from codescan_agent.stream.image_codec import ImageCodecError, decode_b64_to_bgr
from codescan_agent.stream.source import (
    BaseFrameSource,
    FrameSourceError,
    FrameSourceErrorReason,
)


logger = logging.getLogger(__name__)


class FrameConsumerMetrics:
    """Metrics for WebSocketFrameSource observability."""

    __slots__ = (
        "frames_received",
        "reconnect_count",
        "last_frame_id",
        "last_timestamp",
        "validation_warnings",
        "parse_errors",
    )

    def __init__(self) -> None:
        self.frames_received: int = 0
        self.reconnect_count: int = 0
        self.last_frame_id: int = -1
        self.last_timestamp: float = 0.0
        self.validation_warnings: int = 0
        self.parse_errors: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_received": self.frames_received,
            "reconnect_count": self.reconnect_count,
            "last_frame_id": self.last_frame_id,
            "last_timestamp": self.last_timestamp,
            "validation_warnings": self.validation_warnings,
            "parse_errors": self.parse_errors,
        }


class WebSocketFrameSource(BaseFrameSource):
    """
    Frame source fed by a WebSocket frame stream.

    Attributes:
        url: WebSocket URL to connect to
        connected: Whether currently connected
        stream_metrics: Operational metrics

    Example:
        source = WebSocketFrameSource(url="ws://localhost:8000/ws/stream")
        await source.start()
        ...
        await source.stop()
    """

    def __init__(
        self,
        url: str,
        reconnect_backoff_ms: int = 500,
        max_reconnect_attempts: int = 0,
    ) -> None:
        """
        Initialize websocket frame source.

        Args:
            url: WebSocket URL of the frame stream
            reconnect_backoff_ms: Backoff between reconnect attempts
            max_reconnect_attempts: Max attempts (0 = unlimited)
        """
        super().__init__()
        self.url = url
        self.reconnect_backoff_ms = reconnect_backoff_ms
        self.max_reconnect_attempts = max_reconnect_attempts

        self._websocket: Optional[Any] = None
        self._connected: bool = False
        self._stop_event: asyncio.Event = asyncio.Event()
        self._run_task: Optional[asyncio.Task] = None

        self.stream_metrics = FrameConsumerMetrics()
        self._declared_fps: Optional[int] = None

    @property
    def connected(self) -> bool:
        """Whether currently connected to the frame stream."""
        return self._connected

    async def start(self) -> None:
        """
        Start consuming in the background.

        Raises:
            FrameSourceError: URL is not a ws:// or wss:// URL
        """
        if self._running:
            return

        if urlparse(self.url).scheme not in ("ws", "wss"):
            raise FrameSourceError(
                FrameSourceErrorReason.UNSUPPORTED,
                f"Not a websocket URL: {self.url}",
            )

        self._running = True
        self._stop_event.clear()
        self._run_task = asyncio.create_task(self._run(), name="websocket_frame_source")

    async def stop(self) -> None:
        """Stop consuming gracefully. Safe to call repeatedly."""
        self._running = False
        self._stop_event.set()

        if self._websocket is not None:
            try:
                await self._websocket.close()
            except ConnectionClosed:
                pass

        if self._run_task is not None:
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass
            self._run_task = None

        self._connected = False
        self._clear()

    async def _run(self) -> None:
        """Connect and consume, reconnecting on errors until stopped."""
        logger.info(f"WebSocketFrameSource starting, connecting to {self.url}")

        while self._running:
            try:
                await self._connect_and_consume()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self._running:
                    break

                logger.error(f"Connection error: {e}")
                self._connected = False

                if (
                    self.max_reconnect_attempts > 0
                    and self.stream_metrics.reconnect_count >= self.max_reconnect_attempts
                ):
                    logger.error(
                        f"Max reconnect attempts ({self.max_reconnect_attempts}) exceeded"
                    )
                    break

                self.stream_metrics.reconnect_count += 1
                backoff_sec = self.reconnect_backoff_ms / 1000.0
                logger.info(
                    f"Reconnecting in {backoff_sec:.1f}s "
                    f"(attempt {self.stream_metrics.reconnect_count})"
                )

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=backoff_sec)
                    break
                except asyncio.TimeoutError:
                    pass

        logger.info("WebSocketFrameSource stopped")

    async def _connect_and_consume(self) -> None:
        """Connect to WebSocket and consume messages until disconnect."""
        async with websockets.connect(
            self.url,
            ping_interval=20,
            ping_timeout=10,
            close_timeout=5,
            max_size=None,
        ) as ws:
            self._websocket = ws
            self._connected = True
            logger.info(f"Connected to frame stream: {self.url}")

            try:
                async for message in ws:
                    if not self._running:
                        break
                    await self.handle_message(message)

            except ConnectionClosedOK:
                logger.info("Connection closed normally")
            except ConnectionClosedError as e:
                logger.warning(f"Connection closed with error: {e}")
                raise
            finally:
                self._connected = False
                self._websocket = None

    async def handle_message(self, raw: Any) -> bool:
        """
        Validate, decode and publish one raw message.

        Returns:
            True if a frame was published
        """
        message = self._parse_and_validate(raw)
        if message is None:
            return False

        try:
            pixels = await asyncio.to_thread(decode_b64_to_bgr, message.image)
        except ImageCodecError as e:
            self.stream_metrics.parse_errors += 1
            logger.error(f"Undecodable image in frame {message.frame_id}: {e}")
            return False

        await self._publish(pixels, timestamp=message.timestamp, frame_id=message.frame_id)
        self.stream_metrics.frames_received += 1
        self.stream_metrics.last_frame_id = message.frame_id
        self.stream_metrics.last_timestamp = message.timestamp
        return True

    def _parse_and_validate(self, raw: Any) -> Optional[FrameMessage]:
        """
        Parse a raw message and check ordering/timing.

        Logs warnings for violations but does not reject frames.
        """
        try:
            message = FrameMessage.model_validate_json(raw)
        except ValidationError as e:
            self.stream_metrics.parse_errors += 1
            logger.error(f"Invalid frame message: {e.error_count()} validation errors")
            return None

        metrics = self.stream_metrics

        if metrics.last_frame_id >= 0:
            expected_id = metrics.last_frame_id + 1
            if message.frame_id != expected_id:
                metrics.validation_warnings += 1
                if message.frame_id < expected_id:
                    logger.warning(
                        f"Frame ID went backwards: got {message.frame_id}, "
                        f"expected {expected_id}"
                    )
                else:
                    logger.warning(
                        f"Frame ID gap: got {message.frame_id}, expected {expected_id} "
                        f"(gap of {message.frame_id - expected_id} frames)"
                    )

        if metrics.last_timestamp > 0 and message.timestamp < metrics.last_timestamp:
            metrics.validation_warnings += 1
            logger.warning(
                f"Timestamp went backwards: got {message.timestamp:.3f}, "
                f"previous was {metrics.last_timestamp:.3f}"
            )

        if self._declared_fps is None:
            self._declared_fps = message.fps
            logger.info(f"Stream FPS declared as: {message.fps}")
        elif message.fps != self._declared_fps:
            metrics.validation_warnings += 1
            logger.warning(f"FPS changed: was {self._declared_fps}, now {message.fps}")
            self._declared_fps = message.fps

        return message

    def metrics(self) -> dict:
        metrics = super().metrics()
        metrics.update(self.stream_metrics.to_dict())
        metrics["connected"] = self._connected
        return metrics
