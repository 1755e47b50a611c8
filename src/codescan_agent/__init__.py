"""
CodeScanAgent
=============

Optical code acquisition and reconciliation engine for product coding.

This package samples a live camera feed, runs an ordered chain of decoding
strategies (local symbol decoding first, remote services as fallback),
throttles repeated detections, validates accepted codes against the codes
already stored for a product, and reconciles stored codes against a declared
numeric range.

Components:
    - stream: Frame sources (camera, websocket) and image helpers
    - decoding: Decode strategies and the strategy chain
    - codes: Cleaning, throttling, validation and range reconciliation
    - acquisition: Session state machine driving the decode loops
    - store: Persistence collaborator contract

Example:
    from codescan_agent.codes import extract, reconcile

    code = extract("HTSM1/3SN69801")          # "69801"
    result = reconcile(["001", "003"], "1", "3")
    print(result.missing_codes)               # ["002"]
"""

__version__ = "0.1.0"
__author__ = "CodeScan Project"

__all__ = [
    "__version__",
]
