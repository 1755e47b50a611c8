"""
Remote Symbol Decode Strategy
=============================

Uploads snapshots to a remote image-decoding service (2dcode.biz API
shape) and returns the first recognised content.

Request:
    POST <url>, multipart field "file" = qrcode_<i>.png
Response:
    {"data": {"contents": ["..."]}}

The raw snapshot is uploaded first, then (optionally) the inverted one.
An error on one upload does not stop the next; the attempt only fails
when every upload errored.
"""

import asyncio
import logging
from typing import List, Optional

import requests

from codescan_agent.decoding.base import STRATEGY_REMOTE_SYMBOL, DecodeError
from codescan_agent.stream.frame import Frame
from codescan_agent.stream.image_codec import encode_png, invert


logger = logging.getLogger(__name__)


class RemoteDecodeError(DecodeError):
    """Raised when the remote decoding service cannot be used."""
    pass


def parse_contents(payload: dict) -> List[str]:
    """Non-empty recognised contents of a service response."""
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        return []
    contents = data.get("contents") or []
    if isinstance(contents, str):
        contents = [contents]
    return [item.strip() for item in contents if isinstance(item, str) and item.strip()]


class RemoteSymbolDecodeStrategy:
    """
    Remote barcode/QR decoding over HTTP.

    Attributes:
        url: Service endpoint
        include_inverted: Whether the inverted snapshot is also uploaded
        timeout_sec: Per-request HTTP timeout
    """

    strategy_id = STRATEGY_REMOTE_SYMBOL

    def __init__(
        self,
        url: str,
        include_inverted: bool = True,
        timeout_sec: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.include_inverted = include_inverted
        self.timeout_sec = timeout_sec
        self._session = session or requests.Session()

        self._request_count = 0
        self._error_count = 0

        logger.info(
            f"RemoteSymbolDecodeStrategy initialized: url={url}, "
            f"include_inverted={include_inverted}"
        )

    async def decode(self, frame: Frame) -> Optional[str]:
        """
        Upload the snapshot(s) and return the first recognised content.

        Raises:
            RemoteDecodeError: If every upload failed
        """
        images = [frame.pixels]
        if self.include_inverted:
            images.append(invert(frame.pixels))

        errors = 0
        for index, pixels in enumerate(images):
            try:
                contents = await asyncio.to_thread(self._upload, pixels, index)
            except RemoteDecodeError as e:
                errors += 1
                logger.warning(
                    f"Remote decode of image {index + 1}/{len(images)} "
                    f"(frame={frame.frame_id}) failed: {e}"
                )
                continue

            if contents:
                logger.debug(f"Remote decode hit on image {index} of frame {frame.frame_id}")
                return contents[0]

        if errors == len(images):
            raise RemoteDecodeError(f"All {errors} uploads failed")
        return None

    def _upload(self, pixels, index: int) -> List[str]:
        """Blocking: POST one image and parse the recognised contents."""
        payload = encode_png(pixels)
        self._request_count += 1
        try:
            response = self._session.post(
                self.url,
                files={"file": (f"qrcode_{index}.png", payload, "image/png")},
                timeout=self.timeout_sec,
            )
            response.raise_for_status()
            return parse_contents(response.json())
        except (requests.RequestException, ValueError) as e:
            self._error_count += 1
            raise RemoteDecodeError(str(e)) from e

    def get_metrics(self) -> dict:
        return {
            "request_count": self._request_count,
            "error_count": self._error_count,
        }
