"""
CodeScanAgent Main Application
==============================

FastAPI entry point for the optical code acquisition agent.

Pipeline:
    Frame source (camera / websocket) → native decoder + fallback chain
    → throttle gate → validator → UI events

Endpoints:
    GET  /                                     - Service information
    GET  /health                               - Liveness probe (is process alive?)
    GET  /ready                                - Readiness probe (session scanning?)
    GET  /metrics                              - Controller / source / chain metrics
    POST /session/pause                        - Hold the session
    POST /session/resume                       - Resume scanning
    GET  /products/{product_id}/reconciliation - Missing / excess codes for a range
    WS   /ws/events                            - Real-time acquisition events
"""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Set

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from codescan_agent.config import settings
from codescan_agent.acquisition import (
    AcquisitionController,
    InvalidTransitionError,
    create_controller,
)
from codescan_agent.codes.reconcile import completion_rate, range_too_large, reconcile
from codescan_agent.models.events import AcquisitionEvent, CodeAcceptedEvent
from codescan_agent.models.state import AcquisitionState
from codescan_agent.store import AddCodeOutcome, InMemoryCodeStore
from codescan_agent.stream.source import FrameSourceError


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

# Shutdown flag
_shutdown_flag: bool = False

# Persistence collaborator (in-memory reference store)
_store: InMemoryCodeStore = InMemoryCodeStore()

# Acquisition session
_controller: Optional[AcquisitionController] = None
_start_task: Optional[asyncio.Task] = None
_init_error: Optional[str] = None
_startup_time: float = 0.0

# Event fan-out to websocket clients
_event_queues: Set[asyncio.Queue] = set()
_events_emitted: int = 0
_events_dropped: int = 0

# Auto-submit counters
_submitted_count: int = 0
_submit_error_count: int = 0

_EVENT_QUEUE_SIZE = 100


# =============================================================================
# Getters
# =============================================================================

def get_store() -> InMemoryCodeStore:
    return _store

def get_controller() -> Optional[AcquisitionController]:
    return _controller

def is_ready() -> bool:
    return _controller is not None and _controller.state in (
        AcquisitionState.SCANNING,
        AcquisitionState.PAUSED,
    )


# =============================================================================
# Event Handling
# =============================================================================

async def _submit_code(event: CodeAcceptedEvent) -> None:
    """Forward an accepted code to the store (auto_submit)."""
    global _submitted_count, _submit_error_count

    product_id = settings.acquisition.product_id
    try:
        outcome = await asyncio.to_thread(_store.add_code, product_id, event.code)
    except ValueError as e:
        _submit_error_count += 1
        logger.error(f"Auto-submit of {event.code} failed: {e}")
        return

    if outcome is AddCodeOutcome.REJECTED_DUPLICATE:
        logger.warning(f"Auto-submit of {event.code} rejected: duplicate")
        return

    _submitted_count += 1
    logger.info(f"Auto-submitted {event.code} to {product_id}: {outcome.value}")


async def on_event(event: AcquisitionEvent) -> None:
    """Controller event listener: fan out to clients, optionally submit."""
    global _events_emitted, _events_dropped

    _events_emitted += 1
    for queue in list(_event_queues):
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            _events_dropped += 1

    if settings.acquisition.auto_submit and isinstance(event, CodeAcceptedEvent):
        await _submit_code(event)


async def _start_session(controller: AcquisitionController) -> None:
    """Start the session without blocking application startup."""
    global _init_error

    try:
        await controller.start()
    except FrameSourceError as e:
        _init_error = f"{e.reason.value}: {e}"
        logger.error(f"Acquisition session failed to start: {_init_error}")
    except InvalidTransitionError as e:
        # Shutdown closed the session before it started
        logger.info(f"Acquisition session not started: {e}")


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager with graceful shutdown."""
    global _controller, _start_task, _startup_time, _shutdown_flag, _init_error

    # Startup
    _startup_time = time.time()
    _shutdown_flag = False
    _init_error = None
    logger.info(f"Starting {settings.agent.name} {settings.agent.version}")

    port = int(os.environ.get("PORT", settings.server.port))
    logger.info(f"Configured port: {port}")
    logger.info(
        f"Frame source: {settings.acquisition.source}, "
        f"fallback strategies: {settings.decoding.strategies}"
    )

    _controller = create_controller(settings, _store)
    _controller.subscribe(on_event)
    _start_task = asyncio.create_task(_start_session(_controller), name="acquisition_start")

    yield

    # Shutdown
    logger.info("Shutting down gracefully...")
    _shutdown_flag = True

    if _controller:
        await _controller.close()

    if _start_task:
        try:
            await asyncio.wait_for(_start_task, timeout=5.0)
        except asyncio.TimeoutError:
            _start_task.cancel()
            try:
                await _start_task
            except asyncio.CancelledError:
                pass

    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="CodeScanAgent",
    description="Optical code acquisition and range reconciliation agent",
    version=settings.agent.version,
    lifespan=lifespan,
)


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    return JSONResponse({
        "service": "CodeScanAgent",
        "version": settings.agent.version,
        "name": settings.agent.name,
        "status": "running",
        "source": settings.acquisition.source,
        "mode": settings.acquisition.mode,
        "product_id": settings.acquisition.product_id,
        "strategies": settings.decoding.strategies,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness probe - is the process alive?

    Always returns 200 if the service is running.
    """
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1) if _startup_time else 0.0,
    })


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Readiness probe - is a session scanning (or paused)?

    Returns 503 while initialising, after a fatal source error, or once
    the session is closed.
    """
    state = _controller.state.value if _controller else None

    if is_ready():
        return JSONResponse({"status": "ready", "state": state})

    return JSONResponse(
        {"status": "not_ready", "state": state, "init_error": _init_error},
        status_code=503,
    )


@app.get("/metrics")
async def metrics() -> JSONResponse:
    """Detailed metrics for observability."""
    controller_metrics = {}
    source_metrics = {}
    if _controller:
        controller_metrics = _controller.get_metrics()
        source_metrics = _controller.frame_source.metrics()

    return JSONResponse({
        "uptime_seconds": round(time.time() - _startup_time, 1) if _startup_time else 0.0,
        "events_emitted": _events_emitted,
        "events_dropped": _events_dropped,
        "event_clients": len(_event_queues),
        "auto_submit": settings.acquisition.auto_submit,
        "submitted": _submitted_count,
        "submit_errors": _submit_error_count,
        "init_error": _init_error,
        "source": source_metrics,
        "controller": controller_metrics,
    })


@app.post("/session/pause")
async def pause_session() -> JSONResponse:
    """Hold the acquisition session."""
    if _controller is None:
        return JSONResponse({"error": "No session"}, status_code=503)
    try:
        _controller.pause()
    except InvalidTransitionError as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    return JSONResponse({"state": _controller.state.value})


@app.post("/session/resume")
async def resume_session() -> JSONResponse:
    """Resume a paused acquisition session."""
    if _controller is None:
        return JSONResponse({"error": "No session"}, status_code=503)
    try:
        _controller.resume()
    except InvalidTransitionError as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    return JSONResponse({"state": _controller.state.value})


@app.get("/products/{product_id}/reconciliation")
async def reconciliation(
    product_id: str,
    start: Optional[str] = Query(default=None, description="First code of the range"),
    end: Optional[str] = Query(default=None, description="Last code of the range"),
    required_quantity: Optional[int] = Query(default=None, description="Target code count"),
) -> JSONResponse:
    """Missing and excess codes of a product for a numeric range."""
    max_size = settings.reconcile.max_range_size
    if range_too_large(start, end, max_size):
        return JSONResponse(
            {"error": f"Range {start}..{end} holds more than {max_size} codes"},
            status_code=422,
        )

    existing = _store.get_existing_codes(product_id)
    result = reconcile(existing, start, end, max_size=max_size)

    payload = {
        "product_id": product_id,
        "existing_count": len(existing),
        "width": result.width,
        "expected_count": result.expected_count,
        "missing_codes": result.missing_codes,
        "excess_codes": result.excess_codes,
        "valid_count": len(result.valid_codes),
        "has_missing": result.has_missing,
        "has_excess": result.has_excess,
    }
    if required_quantity is not None:
        payload["completion_rate"] = completion_rate(existing, start, end, required_quantity)

    return JSONResponse(payload)


# =============================================================================
# WebSocket Endpoints
# =============================================================================

@app.websocket("/ws/events")
async def event_stream(websocket: WebSocket) -> None:
    """WebSocket endpoint streaming acquisition events."""
    await websocket.accept()
    logger.info("Client connected to /ws/events")

    queue: asyncio.Queue = asyncio.Queue(maxsize=_EVENT_QUEUE_SIZE)
    _event_queues.add(queue)

    try:
        while not _shutdown_flag:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            await websocket.send_json(event.model_dump(mode="json"))
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f"WebSocket error: {e}")
    finally:
        _event_queues.discard(queue)
        logger.info("Client disconnected from /ws/events")


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    # Cloud Run uses PORT env var
    port = int(os.environ.get("PORT", settings.server.port))

    uvicorn.run(
        "codescan_agent.main:app",
        host=settings.server.host,
        port=port,
        reload=False,
    )
