"""
Input Message Schema
====================

Pydantic model for frame messages received by the websocket frame source.

Input Contract:
    {
        "source": "scanner-cam-01",
        "version": "v1.0",
        "frame_id": 1234,
        "timestamp": 1707321234.567,
        "fps": 15,
        "image": "<base64 JPEG>"
    }

Example:
    from codescan_agent.models.input import FrameMessage

    raw = await websocket.recv()
    message = FrameMessage.model_validate_json(raw)
"""

from pydantic import BaseModel, ConfigDict, Field


class FrameMessage(BaseModel):
    """
    Schema for frame messages received from a remote frame stream.

    Attributes:
        source: Identifier of the upstream camera/stream
        version: Protocol version for compatibility checking
        frame_id: Monotonically increasing frame counter
        timestamp: UNIX timestamp when frame was emitted
        fps: Declared stream FPS
        image: Base64-encoded JPEG frame data (data-URL prefix allowed)
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "source": "scanner-cam-01",
                "version": "v1.0",
                "frame_id": 1234,
                "timestamp": 1707321234.567,
                "fps": 15,
                "image": "/9j/4AAQSkZJRg...",
            }
        }
    )

    source: str = Field(
        default="unknown",
        description="Source identifier of the upstream stream",
    )

    version: str = Field(
        default="v1.0",
        description="Protocol version for compatibility checking",
    )

    frame_id: int = Field(
        ...,
        ge=0,
        description="Monotonically increasing frame counter from source",
    )

    timestamp: float = Field(
        ...,
        gt=0,
        description="UNIX timestamp in seconds when frame was emitted",
    )

    fps: int = Field(
        ...,
        ge=1,
        le=120,
        description="Declared stream FPS",
    )

    image: str = Field(
        ...,
        min_length=1,
        description="Base64-encoded JPEG frame data",
    )
