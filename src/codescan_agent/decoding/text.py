"""
Remote Text Recognition Strategy
================================

Last-resort strategy: sends a compressed JPEG snapshot to a text
recognition (OCR) provider and picks a code out of the recognised text.

Providers:
    - google_vision: Google Cloud Vision text_detection
    - iflytek: iFlytek general OCR REST API (HMAC-SHA256 signed URL)

Code selection:
    Digit runs shorter than min_digits are ignored; of the rest, the
    longest wins and ties go to the last run (codes are suffix-encoded).

Design Rules:
    - Fail fast on misconfiguration (missing SDK or credentials)
    - Provider calls are blocking and run in a worker thread
    - Provider failures raise TextRecognitionError for the chain to log
"""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
from email.utils import formatdate
from typing import Any, Optional, Protocol
from urllib.parse import urlencode

import requests

from codescan_agent.codes.cleaning import extract_digit_runs, pick_code_run
from codescan_agent.decoding.base import STRATEGY_REMOTE_TEXT, DecodeError
from codescan_agent.stream.frame import Frame
from codescan_agent.stream.image_codec import downscale, encode_b64, encode_jpeg


logger = logging.getLogger(__name__)


class TextRecognitionError(DecodeError):
    """Raised when a text recognition provider call fails."""
    pass


class TextRecognizer(Protocol):
    """Blocking image-to-text provider."""

    provider_id: str

    def recognize(self, jpeg_bytes: bytes) -> str:
        ...


# =============================================================================
# Google Cloud Vision
# =============================================================================

class GoogleVisionTextRecognizer:
    """
    Text recognition through Google Cloud Vision.

    Attributes:
        credentials_path: Path to service account JSON (None = ADC)
    """

    provider_id = "google_vision"

    def __init__(
        self,
        credentials_path: Optional[str] = None,
        client: Optional[Any] = None,
    ) -> None:
        """
        Initialize the recognizer.

        Args:
            credentials_path: Path to service account JSON (optional)
            client: Pre-built ImageAnnotatorClient (skips client creation)

        Raises:
            ImportError: If google-cloud-vision is not installed
            TextRecognitionError: If the client cannot be created
        """
        self.credentials_path = credentials_path
        self._client = client
        if self._client is None:
            self._init_client(credentials_path)

    def _init_client(self, credentials_path: Optional[str]) -> None:
        """Initialize Google Cloud Vision client."""
        try:
            from google.cloud import vision

            if credentials_path:
                self._client = vision.ImageAnnotatorClient.from_service_account_json(
                    credentials_path
                )
                logger.info(f"Vision client initialized from: {credentials_path}")
            else:
                self._client = vision.ImageAnnotatorClient()
                logger.info("Vision client initialized with default credentials")

        except ImportError:
            raise ImportError(
                "google-cloud-vision is required for GoogleVisionTextRecognizer. "
                "Install with: pip install google-cloud-vision"
            )
        except Exception as e:
            raise TextRecognitionError(f"Failed to initialize Vision client: {e}")

    def recognize(self, jpeg_bytes: bytes) -> str:
        """
        Run text detection on a JPEG image.

        Returns:
            Full recognised text ("" when nothing was found)
        """
        from google.cloud import vision

        try:
            response = self._client.text_detection(image=vision.Image(content=jpeg_bytes))
        except Exception as e:
            raise TextRecognitionError(f"Vision API call failed: {e}") from e

        if response.error.message:
            raise TextRecognitionError(f"Vision API: {response.error.message}")

        if not response.text_annotations:
            return ""
        return response.text_annotations[0].description or ""


# =============================================================================
# iFlytek general OCR
# =============================================================================

class IflytekTextRecognizer:
    """
    Text recognition through the iFlytek general OCR REST endpoint.

    The request URL carries an HMAC-SHA256 signature over the host, date
    and request line; the result text is base64-encoded JSON.
    """

    provider_id = "iflytek"

    def __init__(
        self,
        app_id: str,
        api_key: str,
        api_secret: str,
        host: str = "api.xf-yun.com",
        path: str = "/v1/private/sf8e6aca1",
        timeout_sec: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not (app_id and api_key and api_secret):
            raise TextRecognitionError("iFlytek OCR requires app_id, api_key and api_secret")

        self.app_id = app_id
        self.api_key = api_key
        self._api_secret = api_secret
        self.host = host
        self.path = path
        self.timeout_sec = timeout_sec
        self._session = session or requests.Session()

    def build_url(self, date: Optional[str] = None) -> str:
        """Signed request URL for the given RFC 1123 date (defaults to now)."""
        if date is None:
            date = formatdate(usegmt=True)

        signature_origin = f"host: {self.host}\ndate: {date}\nPOST {self.path} HTTP/1.1"
        signature = base64.b64encode(
            hmac.new(
                self._api_secret.encode("utf-8"),
                signature_origin.encode("utf-8"),
                hashlib.sha256,
            ).digest()
        ).decode("ascii")

        authorization_origin = (
            f'api_key="{self.api_key}",algorithm="hmac-sha256",'
            f'headers="host date request-line",signature="{signature}"'
        )
        authorization = base64.b64encode(authorization_origin.encode("utf-8")).decode("ascii")

        query = urlencode({"authorization": authorization, "host": self.host, "date": date})
        return f"https://{self.host}{self.path}?{query}"

    def build_body(self, image_b64: str) -> dict:
        return {
            "header": {"app_id": self.app_id, "status": 3},
            "parameter": {
                "sf8e6aca1": {
                    "category": "ch_en_public_cloud",
                    "result": {"encoding": "utf8", "compress": "raw", "format": "json"},
                }
            },
            "payload": {
                "sf8e6aca1_data_1": {"encoding": "jpg", "status": 3, "image": image_b64}
            },
        }

    @staticmethod
    def parse_response(payload: dict) -> str:
        """
        Concatenate every recognised word of a provider response.

        Raises:
            TextRecognitionError: Non-zero header code or malformed result
        """
        if not isinstance(payload, dict):
            raise TextRecognitionError("iFlytek OCR response is not a JSON object")

        header = payload.get("header") or {}
        if header.get("code") != 0:
            raise TextRecognitionError(
                f"iFlytek OCR error: code={header.get('code')} message={header.get('message')}"
            )

        text_b64 = ((payload.get("payload") or {}).get("result") or {}).get("text")
        if not text_b64:
            raise TextRecognitionError("iFlytek OCR response has no result text")

        try:
            parsed = json.loads(base64.b64decode(text_b64).decode("utf-8"))
        except ValueError as e:
            raise TextRecognitionError(f"Undecodable iFlytek result: {e}") from e

        words = [
            word.get("content") or ""
            for page in parsed.get("pages") or []
            for line in page.get("lines") or []
            for word in line.get("words") or []
        ]
        return "".join(words)

    def recognize(self, jpeg_bytes: bytes) -> str:
        try:
            response = self._session.post(
                self.build_url(),
                json=self.build_body(encode_b64(jpeg_bytes)),
                timeout=self.timeout_sec,
            )
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise TextRecognitionError(f"iFlytek OCR request failed: {e}") from e

        if not response.ok:
            raise TextRecognitionError(
                f"iFlytek OCR HTTP {response.status_code}: {response.text[:200]}"
            )
        return self.parse_response(payload)


# =============================================================================
# Strategy
# =============================================================================

class TextRecognitionStrategy:
    """
    Decode strategy backed by a TextRecognizer.

    Attributes:
        recognizer: Provider used for recognition
        min_digits: Shortest digit run accepted as a code
        jpeg_quality: Upload JPEG quality
        max_width: Snapshots wider than this are downscaled first
    """

    strategy_id = STRATEGY_REMOTE_TEXT

    def __init__(
        self,
        recognizer: TextRecognizer,
        min_digits: int = 3,
        jpeg_quality: int = 70,
        max_width: int = 1280,
    ) -> None:
        self.recognizer = recognizer
        self.min_digits = min_digits
        self.jpeg_quality = jpeg_quality
        self.max_width = max_width

        self._api_call_count = 0
        self._api_error_count = 0

        logger.info(
            f"TextRecognitionStrategy initialized: provider={recognizer.provider_id}, "
            f"min_digits={min_digits}"
        )

    def _compress(self, frame: Frame) -> bytes:
        return encode_jpeg(downscale(frame.pixels, self.max_width), self.jpeg_quality)

    async def decode(self, frame: Frame) -> Optional[str]:
        jpeg_bytes = await asyncio.to_thread(self._compress, frame)

        self._api_call_count += 1
        try:
            text = await asyncio.to_thread(self.recognizer.recognize, jpeg_bytes)
        except TextRecognitionError:
            self._api_error_count += 1
            raise

        runs = extract_digit_runs(text, self.min_digits)
        code = pick_code_run(runs)
        logger.debug(
            f"Text recognition: frame={frame.frame_id}, runs={runs}, chosen={code!r}"
        )
        return code or None

    def get_metrics(self) -> dict:
        return {
            "provider": self.recognizer.provider_id,
            "api_call_count": self._api_call_count,
            "api_error_count": self._api_error_count,
        }
