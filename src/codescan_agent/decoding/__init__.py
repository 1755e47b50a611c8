"""
Decoding Module
===============

Decode strategies and the chain that runs them.

Strategies (priority order):
    - native: ContinuousNativeDecoder, frame-event driven
    - snapshot: local decode, identity then inverted
    - remote_symbol: remote image-decoding service
    - remote_text: remote text recognition (Google Vision / iFlytek)

The fallback strategies are resolved from configuration by the registry
and compiled into a DecodeChain.
"""

from codescan_agent.decoding.base import (
    STRATEGY_NATIVE,
    STRATEGY_REMOTE_SYMBOL,
    STRATEGY_REMOTE_TEXT,
    STRATEGY_SNAPSHOT,
    DecodeError,
    DecodeStrategy,
)
from codescan_agent.decoding.symbols import decode_symbols
from codescan_agent.decoding.native import ContinuousNativeDecoder
from codescan_agent.decoding.snapshot import SnapshotDecodeStrategy
from codescan_agent.decoding.remote import RemoteDecodeError, RemoteSymbolDecodeStrategy
from codescan_agent.decoding.text import (
    GoogleVisionTextRecognizer,
    IflytekTextRecognizer,
    TextRecognitionError,
    TextRecognitionStrategy,
    TextRecognizer,
)
from codescan_agent.decoding.chain import ChainResult, DecodeChain, make_candidate
from codescan_agent.decoding.registry import build_chain, build_strategies


__all__ = [
    "STRATEGY_NATIVE",
    "STRATEGY_REMOTE_SYMBOL",
    "STRATEGY_REMOTE_TEXT",
    "STRATEGY_SNAPSHOT",
    "DecodeError",
    "DecodeStrategy",
    "decode_symbols",
    "ContinuousNativeDecoder",
    "SnapshotDecodeStrategy",
    "RemoteDecodeError",
    "RemoteSymbolDecodeStrategy",
    "GoogleVisionTextRecognizer",
    "IflytekTextRecognizer",
    "TextRecognitionError",
    "TextRecognitionStrategy",
    "TextRecognizer",
    "ChainResult",
    "DecodeChain",
    "make_candidate",
    "build_chain",
    "build_strategies",
]
