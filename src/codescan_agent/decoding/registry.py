"""
Strategy Registry
=================

Resolves the configured capability list (decoding.strategies) into
strategy instances, in order.

Rules:
    - Unknown strategy names fail fast (ValueError)
    - "native" is not a chain member; it runs on frame events and is
      skipped here with a warning
    - A capability whose provider is not configured (missing credentials)
      is skipped with a warning so the rest of the chain still runs
"""

import logging
from typing import Callable, Dict, List

from codescan_agent.config import DecodingConfig, Settings
from codescan_agent.decoding.base import (
    STRATEGY_NATIVE,
    STRATEGY_REMOTE_SYMBOL,
    STRATEGY_REMOTE_TEXT,
    STRATEGY_SNAPSHOT,
    DecodeStrategy,
)
from codescan_agent.decoding.chain import DecodeChain
from codescan_agent.decoding.remote import RemoteSymbolDecodeStrategy
from codescan_agent.decoding.snapshot import SnapshotDecodeStrategy
from codescan_agent.decoding.text import (
    GoogleVisionTextRecognizer,
    IflytekTextRecognizer,
    TextRecognitionError,
    TextRecognitionStrategy,
    TextRecognizer,
)


logger = logging.getLogger(__name__)


class StrategyUnavailable(Exception):
    """Raised by a factory when its capability is not configured."""
    pass


def _build_snapshot(config: DecodingConfig) -> DecodeStrategy:
    return SnapshotDecodeStrategy()


def _build_remote_symbol(config: DecodingConfig) -> DecodeStrategy:
    remote = config.remote_symbol
    if not remote.url:
        raise StrategyUnavailable("remote_symbol.url is empty")
    return RemoteSymbolDecodeStrategy(
        url=remote.url,
        include_inverted=remote.include_inverted,
        timeout_sec=remote.timeout_sec,
    )


def build_text_recognizer(config: DecodingConfig) -> TextRecognizer:
    """
    Create the configured text recognition provider.

    Raises:
        ValueError: Unknown provider name
        StrategyUnavailable: Provider SDK or credentials missing
    """
    text = config.text_recognition

    if text.provider == "google_vision":
        try:
            return GoogleVisionTextRecognizer(credentials_path=text.google.credentials_path)
        except (ImportError, TextRecognitionError) as e:
            raise StrategyUnavailable(str(e)) from e

    if text.provider == "iflytek":
        iflytek = text.iflytek
        if not (iflytek.app_id and iflytek.api_key and iflytek.api_secret):
            raise StrategyUnavailable(
                "iFlytek credentials missing (IFLYTEK_OCR_APPID / IFLYTEK_OCR_API_KEY / "
                "IFLYTEK_OCR_API_SECRET)"
            )
        return IflytekTextRecognizer(
            app_id=iflytek.app_id,
            api_key=iflytek.api_key,
            api_secret=iflytek.api_secret,
            host=iflytek.host,
            path=iflytek.path,
            timeout_sec=iflytek.timeout_sec,
        )

    raise ValueError(f"Unknown text recognition provider: {text.provider}")


def _build_remote_text(config: DecodingConfig) -> DecodeStrategy:
    text = config.text_recognition
    return TextRecognitionStrategy(
        recognizer=build_text_recognizer(config),
        min_digits=text.min_digits,
        jpeg_quality=text.jpeg_quality,
        max_width=text.max_width,
    )


STRATEGY_FACTORIES: Dict[str, Callable[[DecodingConfig], DecodeStrategy]] = {
    STRATEGY_SNAPSHOT: _build_snapshot,
    STRATEGY_REMOTE_SYMBOL: _build_remote_symbol,
    STRATEGY_REMOTE_TEXT: _build_remote_text,
}


def build_strategies(config: DecodingConfig) -> List[DecodeStrategy]:
    """
    Build the fallback strategies named in the configuration, in order.

    Args:
        config: Decoding configuration

    Returns:
        Available strategies in priority order

    Raises:
        ValueError: If a name is not a known strategy
    """
    strategies: List[DecodeStrategy] = []
    seen = set()

    for name in config.strategies:
        if name == STRATEGY_NATIVE:
            logger.warning("'native' runs on frame events and is not part of the fallback chain")
            continue
        if name not in STRATEGY_FACTORIES:
            raise ValueError(
                f"Unknown decode strategy: {name!r} "
                f"(known: {', '.join(sorted(STRATEGY_FACTORIES))})"
            )
        if name in seen:
            logger.warning(f"Strategy {name!r} listed twice, keeping the first")
            continue
        seen.add(name)

        try:
            strategies.append(STRATEGY_FACTORIES[name](config))
        except StrategyUnavailable as e:
            logger.warning(f"Strategy {name!r} unavailable, skipping: {e}")

    return strategies


def build_chain(settings: Settings) -> DecodeChain:
    """Create the fallback chain from settings."""
    return DecodeChain(
        strategies=build_strategies(settings.decoding),
        timeout_sec=settings.decoding.strategy_timeout_sec,
    )
