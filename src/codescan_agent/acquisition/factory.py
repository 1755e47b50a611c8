"""
Controller Factory
==================

Builds a fully wired acquisition session from Settings.
"""

import logging
from typing import Optional

from codescan_agent.acquisition.controller import AcquisitionController
from codescan_agent.codes.throttle import ThrottleChannel, ThrottleGate
from codescan_agent.config import Settings
from codescan_agent.decoding.native import ContinuousNativeDecoder
from codescan_agent.decoding.registry import build_chain
from codescan_agent.models.state import AcquisitionMode
from codescan_agent.store import CodeStore
from codescan_agent.stream.camera import CameraFrameSource
from codescan_agent.stream.consumer import WebSocketFrameSource
from codescan_agent.stream.source import BaseFrameSource


logger = logging.getLogger(__name__)


def create_frame_source(settings: Settings) -> BaseFrameSource:
    """
    Create the configured frame source.

    Raises:
        ValueError: Unknown acquisition.source
    """
    source = settings.acquisition.source

    if source == "camera":
        return CameraFrameSource(
            device_index=settings.camera.device_index,
            width=settings.camera.width,
            height=settings.camera.height,
            fps=settings.camera.fps,
        )

    if source == "websocket":
        return WebSocketFrameSource(
            url=settings.stream.url,
            reconnect_backoff_ms=settings.stream.reconnect_backoff_ms,
            max_reconnect_attempts=settings.stream.max_reconnect_attempts,
        )

    raise ValueError(f"Unknown frame source: {source}")


def create_gate(settings: Settings) -> ThrottleGate:
    throttle = settings.throttle
    return ThrottleGate(
        {
            ThrottleChannel.ACCEPTED_CODE: throttle.rescan_window_sec,
            ThrottleChannel.DUPLICATE_WARNING: throttle.duplicate_warning_window_sec,
            ThrottleChannel.WARNING: throttle.warning_window_sec,
        }
    )


def create_controller(
    settings: Settings,
    code_store: CodeStore,
    frame_source: Optional[BaseFrameSource] = None,
) -> AcquisitionController:
    """
    Create an acquisition controller from configuration.

    Args:
        settings: Loaded settings
        code_store: Store read for existing codes
        frame_source: Source to use instead of the configured one

    Returns:
        Controller in the IDLE state
    """
    acquisition = settings.acquisition

    controller = AcquisitionController(
        frame_source=frame_source or create_frame_source(settings),
        chain=build_chain(settings),
        gate=create_gate(settings),
        code_store=code_store,
        native_decoder=ContinuousNativeDecoder(scan_fps=acquisition.native_scan_fps),
        mode=AcquisitionMode(acquisition.mode),
        product_id=acquisition.product_id,
        cooldown_sec=acquisition.cooldown_ms / 1000.0,
        fallback_interval_sec=acquisition.fallback_interval_sec,
        ready_timeout_sec=acquisition.ready_timeout_sec,
    )

    logger.info(
        f"Controller created: source={acquisition.source}, mode={acquisition.mode}, "
        f"product={acquisition.product_id}"
    )
    return controller
