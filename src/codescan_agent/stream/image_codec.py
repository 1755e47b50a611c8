"""
Image Codec
===========

Conversions between OpenCV matrices and upload payloads.

Design Rules:
    - This is the ONLY place in the codebase that encodes/decodes images
    - Validates shape and dtype
    - Fails fast on corrupt input with ImageCodecError
"""

import base64
import binascii
import logging
import re

import cv2
import numpy as np


logger = logging.getLogger(__name__)

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


class ImageCodecError(Exception):
    """Raised when image encoding or decoding fails."""
    pass


def decode_b64_to_bgr(image_b64: str) -> np.ndarray:
    """
    Decode a base64 JPEG/PNG (optionally a data URL) into a BGR matrix.

    Args:
        image_b64: Base64 image data

    Returns:
        BGR image as np.ndarray (H, W, 3), dtype=uint8

    Raises:
        ImageCodecError: If decoding fails or image is invalid
    """
    try:
        image_bytes = base64.b64decode(_DATA_URL_PREFIX.sub("", image_b64), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageCodecError(f"Base64 decode failed: {e}")

    nparr = np.frombuffer(image_bytes, np.uint8)
    if nparr.size == 0:
        raise ImageCodecError("Empty image payload")

    bgr = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if bgr is None:
        raise ImageCodecError("cv2.imdecode returned None")

    return _validate_bgr(bgr)


def to_grayscale(pixels: np.ndarray) -> np.ndarray:
    """Return a single-channel copy of a BGR (or already gray) matrix."""
    if pixels.ndim == 2:
        return pixels
    return cv2.cvtColor(pixels, cv2.COLOR_BGR2GRAY)


def invert(pixels: np.ndarray) -> np.ndarray:
    """Return a pixel-inverted copy (light-on-dark symbols become dark-on-light)."""
    return cv2.bitwise_not(pixels)


def downscale(pixels: np.ndarray, max_width: int) -> np.ndarray:
    """Shrink an image to max_width keeping aspect ratio; smaller images pass through."""
    height, width = pixels.shape[:2]
    if width <= max_width:
        return pixels
    scale = max_width / float(width)
    size = (max_width, max(1, int(round(height * scale))))
    return cv2.resize(pixels, size, interpolation=cv2.INTER_AREA)


def encode_jpeg(pixels: np.ndarray, quality: int = 90) -> bytes:
    """
    Encode a matrix as JPEG bytes.

    Raises:
        ImageCodecError: If OpenCV cannot encode the image
    """
    ok, buffer = cv2.imencode(".jpg", pixels, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ImageCodecError("JPEG encoding failed")
    return buffer.tobytes()


def encode_png(pixels: np.ndarray) -> bytes:
    """
    Encode a matrix as lossless PNG bytes.

    Raises:
        ImageCodecError: If OpenCV cannot encode the image
    """
    ok, buffer = cv2.imencode(".png", pixels)
    if not ok:
        raise ImageCodecError("PNG encoding failed")
    return buffer.tobytes()


def encode_b64(payload: bytes) -> str:
    """Base64 text of an encoded image."""
    return base64.b64encode(payload).decode("ascii")


def _validate_bgr(bgr: np.ndarray) -> np.ndarray:
    if bgr.ndim != 3 or bgr.shape[2] != 3:
        raise ImageCodecError(f"Invalid image shape: {bgr.shape}")
    if bgr.dtype != np.uint8:
        raise ImageCodecError(f"Invalid dtype: {bgr.dtype}")
    return bgr
