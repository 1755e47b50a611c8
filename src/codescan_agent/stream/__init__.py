"""
Stream Module
=============

Frame sources and image helpers.

This module provides the ingestion layer for CodeScanAgent:
    - Frame: Typed frame data model (internal representation)
    - FrameSource: Contract shared by all sources
    - CameraFrameSource: Local camera through OpenCV
    - WebSocketFrameSource: Remote JSON frame stream with reconnection

Example:
    from codescan_agent.stream import CameraFrameSource, FrameNotReady

    source = CameraFrameSource(device_index=0)
    await source.start()
    try:
        frame = source.current_frame()
    except FrameNotReady:
        pass  # retry on next cycle
    await source.stop()
"""

from codescan_agent.stream.frame import Frame
from codescan_agent.stream.source import (
    BaseFrameSource,
    FrameListener,
    FrameNotReady,
    FrameSource,
    FrameSourceError,
    FrameSourceErrorReason,
)
from codescan_agent.stream.camera import CameraFrameSource
from codescan_agent.stream.consumer import FrameConsumerMetrics, WebSocketFrameSource


__all__ = [
    "Frame",
    "BaseFrameSource",
    "FrameListener",
    "FrameNotReady",
    "FrameSource",
    "FrameSourceError",
    "FrameSourceErrorReason",
    "CameraFrameSource",
    "FrameConsumerMetrics",
    "WebSocketFrameSource",
]
