"""
Local Symbol Decoding
=====================

Blocking barcode/QR decoding of a pixel matrix.

Decoders, in order:
    1. pyzbar (1D barcodes and QR), when the zbar shared library loads
    2. OpenCV QRCodeDetector

Both run on grayscale input. Call from a worker thread
(asyncio.to_thread); never from the event loop.
"""

import logging
from typing import List

import cv2
import numpy as np

from codescan_agent.stream.image_codec import to_grayscale

try:
    from pyzbar import pyzbar
    _PYZBAR_AVAILABLE = True
except ImportError:
    pyzbar = None
    _PYZBAR_AVAILABLE = False


logger = logging.getLogger(__name__)

if not _PYZBAR_AVAILABLE:
    logger.warning("pyzbar/zbar not available, local decoding limited to QR codes")


def _decode_pyzbar(gray: np.ndarray) -> List[str]:
    texts = []
    for symbol in pyzbar.decode(gray):
        text = symbol.data.decode("utf-8", errors="replace").strip("\x00").strip()
        if text:
            texts.append(text)
    return texts


def _decode_opencv(gray: np.ndarray) -> List[str]:
    # Detectors keep internal state; one per call keeps worker threads apart.
    detector = cv2.QRCodeDetector()
    try:
        text, _, _ = detector.detectAndDecode(gray)
    except cv2.error as e:
        # Detector errors on frames without a symbol are routine
        logger.debug(f"OpenCV QR decode failed: {e}")
        return []
    text = (text or "").strip()
    return [text] if text else []


def decode_symbols(pixels: np.ndarray) -> List[str]:
    """
    Decode every readable symbol in an image.

    Args:
        pixels: BGR or grayscale matrix

    Returns:
        Decoded texts (possibly empty), first decoder with results wins
    """
    if pixels is None or pixels.size == 0:
        return []

    gray = to_grayscale(pixels)

    if _PYZBAR_AVAILABLE:
        texts = _decode_pyzbar(gray)
        if texts:
            return texts

    return _decode_opencv(gray)


def first_symbol(pixels: np.ndarray) -> str:
    """First decoded text of an image, or "" when nothing is found."""
    texts = decode_symbols(pixels)
    return texts[0] if texts else ""
