#!/usr/bin/env python3
"""
Live Scan Session Script
========================

Standalone script to run an acquisition session against a real source.

This script:
    1. Opens a camera (or connects to a websocket frame stream)
    2. Scans for a configurable duration
    3. Logs every accepted code and feedback event
    4. Logs session stats periodically and reports a final summary
    5. Optionally reconciles the scanned codes against a numeric range

Prerequisites:
    - A camera at the given device index, or a frame stream at --url
    - Install dependencies: pip install -e .

Usage:
    python scripts/scan_session.py --duration 60
    python scripts/scan_session.py --source websocket --url ws://localhost:8000/ws/stream
    python scripts/scan_session.py --mode single_shot --strategies snapshot,remote_symbol
    python scripts/scan_session.py --range-start 0001 --range-end 0120 --required 120
"""

import argparse
import asyncio
import logging
import os
import sys
import time

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from codescan_agent.acquisition import create_controller
from codescan_agent.codes import completion_rate, reconcile
from codescan_agent.config import load_config
from codescan_agent.models.events import AcquisitionEvent, CodeAcceptedEvent
from codescan_agent.store import InMemoryCodeStore
from codescan_agent.stream import FrameSourceError


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def run_session(args: argparse.Namespace) -> dict:
    """
    Run one acquisition session.

    Args:
        args: Parsed command line arguments

    Returns:
        Final controller metrics dict
    """
    settings = load_config(args.config)
    settings.acquisition.source = args.source
    settings.acquisition.mode = args.mode
    settings.acquisition.product_id = args.product
    settings.camera.device_index = args.device
    if args.url:
        settings.stream.url = args.url
    if args.strategies:
        settings.decoding.strategies = [s.strip() for s in args.strategies.split(",") if s.strip()]

    logger.info("=" * 60)
    logger.info("Scan Session")
    logger.info("=" * 60)
    logger.info(f"Source: {settings.acquisition.source}")
    logger.info(f"Mode: {settings.acquisition.mode}")
    logger.info(f"Product: {settings.acquisition.product_id}")
    logger.info(f"Fallback strategies: {settings.decoding.strategies}")
    logger.info(f"Duration: {args.duration} seconds")
    logger.info("=" * 60)

    store = InMemoryCodeStore()
    controller = create_controller(settings, store)

    async def on_event(event: AcquisitionEvent) -> None:
        if isinstance(event, CodeAcceptedEvent):
            outcome = store.add_code(settings.acquisition.product_id, event.code)
            logger.info(
                f"ACCEPTED {event.code} via {event.source_strategy} "
                f"(raw={event.raw_text!r}, store={outcome.value})"
            )
        else:
            logger.warning(f"{event.kind.value}: {event.message}")

    controller.subscribe(on_event)

    try:
        await controller.start()
    except FrameSourceError as e:
        logger.error(f"Session could not start ({e.reason.value}): {e}")
        return controller.get_metrics()

    start_time = time.time()
    last_report_time = start_time

    try:
        while time.time() - start_time < args.duration:
            if time.time() - last_report_time >= args.report_interval:
                metrics = controller.get_metrics()
                logger.info("-" * 40)
                logger.info(f"Progress Report (elapsed: {time.time() - start_time:.0f}s)")
                logger.info(f"  State: {metrics['state']}")
                logger.info(f"  Accepted: {metrics['accepted']}")
                logger.info(f"  Duplicates: {metrics['duplicates']}")
                logger.info(f"  Fallback passes: {metrics['fallback_passes']}")
                logger.info(f"  Fallback skipped (busy): {metrics['fallback_skipped_busy']}")
                last_report_time = time.time()

            await asyncio.sleep(0.5)

    except KeyboardInterrupt:
        logger.info("Session interrupted by user")
    finally:
        await controller.close()

    metrics = controller.get_metrics()
    codes = store.get_existing_codes(settings.acquisition.product_id)

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {time.time() - start_time:.1f} seconds")
    logger.info(f"Codes accepted: {metrics['accepted']}")
    logger.info(f"Codes stored: {codes}")
    logger.info(f"Strategy hits: {metrics['strategy_hits']}")
    logger.info(f"Suppressed rescans: {metrics['suppressed']}")
    if args.range_start and args.range_end:
        result = reconcile(
            codes, args.range_start, args.range_end,
            max_size=settings.reconcile.max_range_size,
        )
        logger.info(f"Range {args.range_start}..{args.range_end} (width {result.width})")
        if result.has_missing:
            logger.info(f"  Missing: {result.missing_codes}")
        else:
            logger.info("  Missing: none")
        if result.has_excess:
            logger.info(f"  Excess: {result.excess_codes}")
        if args.required:
            rate = completion_rate(codes, args.range_start, args.range_end, args.required)
            logger.info(f"  Completion: {rate}%")
    logger.info("=" * 60)

    return metrics


def main() -> int:
    parser = argparse.ArgumentParser(description="Run a live code acquisition session")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--source", choices=["camera", "websocket"], default="camera")
    parser.add_argument("--device", type=int, default=0, help="Camera device index")
    parser.add_argument("--url", default=None, help="Frame stream websocket URL")
    parser.add_argument("--mode", choices=["continuous", "single_shot"], default="continuous")
    parser.add_argument("--product", default="default", help="Product id")
    parser.add_argument("--strategies", default=None, help="Comma separated fallback strategies")
    parser.add_argument("--duration", type=int, default=60, help="Session duration in seconds")
    parser.add_argument("--report-interval", type=int, default=10, help="Seconds between reports")
    parser.add_argument("--range-start", default=None, help="First code of the product range")
    parser.add_argument("--range-end", default=None, help="Last code of the product range")
    parser.add_argument("--required", type=int, default=0, help="Required code quantity")
    args = parser.parse_args()

    try:
        metrics = asyncio.run(run_session(args))
    except KeyboardInterrupt:
        return 130

    return 0 if metrics["state"] == "TERMINATED" else 1


if __name__ == "__main__":
    sys.exit(main())
