"""
Acquisition Controller
======================

Owns one acquisition session: the frame source, both decode loops, the
throttle gate and the emitted UI events.

State Machine:
    IDLE → INITIALIZING → SCANNING ⇄ PAUSED → TERMINATED

Loops:
    - Native loop: every frame-arrival event (while SCANNING) goes to the
      ContinuousNativeDecoder
    - Fallback loop: every fallback_interval_sec, the current frame goes
      through the DecodeChain. One busy token: a tick that finds the
      previous pass unfinished is skipped and counted, never queued.
      Frames the native decoder already decoded are not re-run.

Candidate handling (in order):
    1. extract(raw) → no usable digits: throttled DECODE_ERROR feedback
    2. Rescan gate (accepted-code channel) → suppressed silently
    3. Validator against the product's existing codes
       → store read failure: throttled DECODE_ERROR feedback
       → DUPLICATE_WARNING feedback (duplicate-warning channel)
       → CodeAcceptedEvent

Design Rules:
    - All state is touched from the event loop only
    - A generation token is bumped on close(); results of work started
      under an older generation are discarded
    - The store is only read (snapshot of existing codes), never written
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Set

from codescan_agent.acquisition.transitions import check_transition
from codescan_agent.codes.cleaning import is_usable_code
from codescan_agent.codes.throttle import GateDecision, ThrottleChannel, ThrottleGate
from codescan_agent.codes.validator import ValidationResult, validate
from codescan_agent.decoding.chain import DecodeChain, make_candidate
from codescan_agent.decoding.native import ContinuousNativeDecoder
from codescan_agent.models.codes import CandidateCode
from codescan_agent.models.events import (
    AcquisitionEvent,
    CodeAcceptedEvent,
    FeedbackEvent,
    FeedbackKind,
)
from codescan_agent.models.state import AcquisitionMode, AcquisitionState
from codescan_agent.store import CodeStore
from codescan_agent.stream.frame import Frame
from codescan_agent.stream.source import (
    FrameNotReady,
    FrameSource,
    FrameSourceError,
    FrameSourceErrorReason,
)


logger = logging.getLogger(__name__)


EventListener = Callable[[AcquisitionEvent], Awaitable[None]]


class AcquisitionController:
    """
    State machine driving one acquisition session.

    Attributes:
        product_id: Product whose existing codes are checked
        mode: Continuous or single-shot
        cooldown_sec: Pause after an accepted code (continuous mode)
        fallback_interval_sec: Period of the fallback loop
        ready_timeout_sec: Maximum wait for the first frame

    Example:
        controller = AcquisitionController(source, chain, gate, store)
        controller.subscribe(on_event)
        await controller.start()
        ...
        await controller.close()
    """

    def __init__(
        self,
        frame_source: FrameSource,
        chain: DecodeChain,
        gate: ThrottleGate,
        code_store: CodeStore,
        native_decoder: Optional[ContinuousNativeDecoder] = None,
        mode: AcquisitionMode = AcquisitionMode.CONTINUOUS,
        product_id: str = "default",
        cooldown_sec: float = 0.3,
        fallback_interval_sec: float = 1.0,
        ready_timeout_sec: float = 10.0,
        ready_poll_sec: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = frame_source
        self._chain = chain
        self._gate = gate
        self._store = code_store
        self._native = native_decoder

        self.mode = AcquisitionMode(mode)
        self.product_id = product_id
        self.cooldown_sec = cooldown_sec
        self.fallback_interval_sec = fallback_interval_sec
        self.ready_timeout_sec = ready_timeout_sec
        self.ready_poll_sec = ready_poll_sec
        self._clock = clock
        self._wall_clock = wall_clock

        self._state = AcquisitionState.IDLE
        self._generation = 0
        self._held = False

        self._listeners: List[EventListener] = []
        self._fallback_task: Optional[asyncio.Task] = None
        self._cooldown_task: Optional[asyncio.Task] = None
        self._pass_tasks: Set[asyncio.Task] = set()
        self._fallback_busy = False

        self._last_accepted: Optional[CandidateCode] = None

        # Counters
        self._accepted = 0
        self._suppressed = 0
        self._duplicates = 0
        self._unusable = 0
        self._discarded = 0
        self._store_errors = 0
        self._fallback_passes = 0
        self._fallback_skipped_busy = 0
        self._fallback_skipped_native = 0
        self._strategy_hits: Dict[str, int] = {}

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> AcquisitionState:
        return self._state

    @property
    def frame_source(self) -> FrameSource:
        return self._source

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_accepted(self) -> Optional[CandidateCode]:
        return self._last_accepted

    @property
    def fallback_busy(self) -> bool:
        return self._fallback_busy

    # =========================================================================
    # Events
    # =========================================================================

    def subscribe(self, listener: EventListener) -> None:
        """Register an async callable receiving every emitted event."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _emit(self, event: AcquisitionEvent) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                logger.error(f"Event listener failed: {e}")

    async def _feedback(
        self,
        kind: FeedbackKind,
        channel: ThrottleChannel,
        gate_value: str,
        message: str,
        code: Optional[str] = None,
    ) -> bool:
        """Emit a feedback event unless its channel suppresses it."""
        if self._gate.accept(channel, gate_value, self._clock()) is GateDecision.SUPPRESSED:
            return False

        logger.warning(f"{kind.value}: {message}")
        await self._emit(
            FeedbackEvent(kind=kind, message=message, code=code, timestamp=self._wall_clock())
        )
        return True

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _transition(self, target: AcquisitionState) -> None:
        check_transition(self._state, target)
        logger.info(f"Acquisition {self._state.value} → {target.value}")
        self._state = target

    async def start(self) -> None:
        """
        Acquire the frame source and begin scanning.

        Raises:
            InvalidTransitionError: If the session was already started
            FrameSourceError: Fatal source error (session is TERMINATED)
        """
        self._transition(AcquisitionState.INITIALIZING)
        generation = self._generation

        self._gate.reset()
        if self._native is not None:
            self._native.reset()

        try:
            await self._source.start()
            await self._wait_ready(generation)
        except FrameSourceError as e:
            await self._fail_init(e)
            raise

        if generation != self._generation:
            logger.info("Session closed during initialisation")
            await self._source.stop()
            return

        self._source.add_listener(self._on_frame)
        self._transition(AcquisitionState.SCANNING)
        self._fallback_task = asyncio.create_task(
            self._fallback_loop(generation), name="acquisition_fallback_loop"
        )

        logger.info(
            f"Acquisition started: mode={self.mode.value}, product={self.product_id}, "
            f"fallback={self._chain.strategy_ids}"
        )

    async def _wait_ready(self, generation: int) -> None:
        """Poll the source until it delivers a frame with real dimensions."""
        deadline = self._clock() + self.ready_timeout_sec
        while generation == self._generation:
            try:
                frame = self._source.current_frame()
                logger.info(f"Frame source ready: {frame.width}x{frame.height}")
                return
            except FrameNotReady:
                pass

            if self._clock() >= deadline:
                raise FrameSourceError(
                    FrameSourceErrorReason.NO_DEVICE,
                    f"No frame received within {self.ready_timeout_sec:.1f}s",
                )
            await asyncio.sleep(self.ready_poll_sec)

    async def _fail_init(self, error: FrameSourceError) -> None:
        logger.error(f"Frame source failed to start ({error.reason.value}): {error}")
        self._generation += 1
        if self._state is not AcquisitionState.TERMINATED:
            self._transition(AcquisitionState.TERMINATED)

        try:
            await self._source.stop()
        except Exception as e:
            logger.error(f"Frame source stop failed: {e}")

        await self._feedback(
            FeedbackKind.INIT_ERROR,
            ThrottleChannel.WARNING,
            f"init:{error.reason.value}",
            f"{error.reason.value}: {error}",
        )

    async def close(self) -> None:
        """
        Terminate the session. Safe to call repeatedly.

        In-flight decode passes are left to finish; their results are
        discarded through the generation token.
        """
        if self._state is AcquisitionState.TERMINATED:
            return

        self._generation += 1
        self._transition(AcquisitionState.TERMINATED)

        for task in (self._fallback_task, self._cooldown_task):
            if task is not None and not task.done():
                task.cancel()
        self._fallback_task = None
        self._cooldown_task = None

        self._source.remove_listener(self._on_frame)
        await self._source.stop()

        logger.info(f"Acquisition closed: {self._accepted} codes accepted")

    def pause(self) -> None:
        """
        Hold the session: no decoding until resume().

        Pausing during a cooldown keeps the session paused past it.

        Raises:
            InvalidTransitionError: If not SCANNING or PAUSED
        """
        if self._state is not AcquisitionState.PAUSED:
            self._transition(AcquisitionState.PAUSED)
        self._held = True
        self._cancel_cooldown()
        self._source.pause()

    def resume(self) -> None:
        """
        Resume scanning from PAUSED.

        Raises:
            InvalidTransitionError: If not PAUSED
        """
        self._transition(AcquisitionState.SCANNING)
        self._held = False
        self._cancel_cooldown()
        self._source.resume()

    def _cancel_cooldown(self) -> None:
        if self._cooldown_task is not None and not self._cooldown_task.done():
            self._cooldown_task.cancel()
        self._cooldown_task = None

    async def _cooldown(self, generation: int) -> None:
        await asyncio.sleep(self.cooldown_sec)
        if (
            generation == self._generation
            and self._state is AcquisitionState.PAUSED
            and not self._held
        ):
            self._transition(AcquisitionState.SCANNING)

    def _after_decode(self, accepted: bool) -> None:
        """Apply the mode's pause rule after a candidate was handled."""
        if self._state is not AcquisitionState.SCANNING:
            return

        if self.mode is AcquisitionMode.SINGLE_SHOT:
            self._transition(AcquisitionState.PAUSED)
            self._held = True
        elif accepted:
            self._transition(AcquisitionState.PAUSED)
            self._cooldown_task = asyncio.create_task(
                self._cooldown(self._generation), name="acquisition_cooldown"
            )

    # =========================================================================
    # Decode loops
    # =========================================================================

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._pass_tasks.add(task)
        task.add_done_callback(self._pass_tasks.discard)
        task.add_done_callback(self._log_task_error)

    @staticmethod
    def _log_task_error(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Decode task {task.get_name()} failed: {error!r}")

    async def _on_frame(self, frame: Frame) -> None:
        """Frame-arrival listener feeding the native decoder."""
        if self._native is None or self._state is not AcquisitionState.SCANNING:
            return
        if self._native.busy:
            return
        self._spawn(self._native_pass(frame, self._generation), "native_pass")

    async def _native_pass(self, frame: Frame, generation: int) -> None:
        attempt = await self._native.scan(frame)
        if attempt is None or not attempt.succeeded:
            return

        candidate = make_candidate(attempt.result_text, attempt.strategy_id, self._clock())
        await self._handle_candidate(candidate, generation)

    async def _fallback_loop(self, generation: int) -> None:
        """Fixed-interval ticks running the fallback chain."""
        while generation == self._generation:
            await asyncio.sleep(self.fallback_interval_sec)
            if generation != self._generation:
                break
            self._fallback_tick(generation)

    def _fallback_tick(self, generation: int) -> bool:
        """
        Start one fallback pass if possible.

        Returns:
            True if a pass was started
        """
        if self._state is not AcquisitionState.SCANNING:
            return False

        if self._fallback_busy:
            self._fallback_skipped_busy += 1
            logger.debug("Fallback pass still running, tick skipped")
            return False

        try:
            frame = self._source.current_frame()
        except FrameNotReady:
            return False

        if self._native is not None and frame.frame_id == self._native.last_decoded_frame_id:
            self._fallback_skipped_native += 1
            return False

        self._fallback_busy = True
        self._spawn(self._fallback_pass(frame, generation), "fallback_pass")
        return True

    async def _fallback_pass(self, frame: Frame, generation: int) -> None:
        self._fallback_passes += 1
        try:
            result = await self._chain.run(frame)
        finally:
            self._fallback_busy = False

        if result.candidate is not None:
            await self._handle_candidate(result.candidate, generation)

    # =========================================================================
    # Candidate handling
    # =========================================================================

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._state is AcquisitionState.SCANNING

    async def _handle_candidate(self, candidate: CandidateCode, generation: int) -> None:
        """Run a decoded candidate through cleaning, gate and validator."""
        if not self._is_current(generation):
            self._discarded += 1
            logger.debug(f"Discarded stale candidate {candidate.cleaned!r}")
            return

        if not is_usable_code(candidate.cleaned):
            self._unusable += 1
            await self._feedback(
                FeedbackKind.DECODE_ERROR,
                ThrottleChannel.WARNING,
                f"unusable:{candidate.cleaned}",
                f"No usable code in decoded text {candidate.raw_text!r}",
            )
            self._after_decode(accepted=False)
            return

        decision = self._gate.accept(ThrottleChannel.ACCEPTED_CODE, candidate.cleaned, self._clock())
        if decision is GateDecision.SUPPRESSED:
            self._suppressed += 1
            self._after_decode(accepted=False)
            return

        try:
            existing = await asyncio.to_thread(self._store.get_existing_codes, self.product_id)
        except Exception as e:
            logger.error(f"Reading existing codes for {self.product_id} failed: {e}")
            self._store_errors += 1
            if not self._is_current(generation):
                self._discarded += 1
                return
            await self._feedback(
                FeedbackKind.DECODE_ERROR,
                ThrottleChannel.WARNING,
                f"store:{self.product_id}",
                f"Could not check code {candidate.cleaned} against product {self.product_id}",
                code=candidate.cleaned,
            )
            self._after_decode(accepted=False)
            return

        if not self._is_current(generation):
            self._discarded += 1
            return

        if validate(candidate.cleaned, existing) is ValidationResult.DUPLICATE_IN_PRODUCT:
            self._duplicates += 1
            await self._feedback(
                FeedbackKind.DUPLICATE_WARNING,
                ThrottleChannel.DUPLICATE_WARNING,
                candidate.cleaned,
                f"Code {candidate.cleaned} already exists for product {self.product_id}",
                code=candidate.cleaned,
            )
            self._after_decode(accepted=False)
            return

        self._accepted += 1
        self._last_accepted = candidate
        self._strategy_hits[candidate.source_strategy] = (
            self._strategy_hits.get(candidate.source_strategy, 0) + 1
        )
        logger.info(
            f"Code accepted: {candidate.cleaned} "
            f"(strategy={candidate.source_strategy}, raw={candidate.raw_text!r})"
        )

        self._after_decode(accepted=True)
        await self._emit(
            CodeAcceptedEvent(
                code=candidate.cleaned,
                raw_text=candidate.raw_text,
                source_strategy=candidate.source_strategy,
                timestamp=self._wall_clock(),
            )
        )

    # =========================================================================
    # Observability
    # =========================================================================

    def get_metrics(self) -> dict:
        """Get controller metrics for observability."""
        metrics = {
            "state": self._state.value,
            "mode": self.mode.value,
            "product_id": self.product_id,
            "generation": self._generation,
            "accepted": self._accepted,
            "suppressed": self._suppressed,
            "duplicates": self._duplicates,
            "unusable": self._unusable,
            "discarded": self._discarded,
            "store_errors": self._store_errors,
            "fallback_passes": self._fallback_passes,
            "fallback_skipped_busy": self._fallback_skipped_busy,
            "fallback_skipped_native": self._fallback_skipped_native,
            "strategy_hits": dict(self._strategy_hits),
            "chain": self._chain.get_metrics(),
            "throttle": self._gate.get_metrics(),
        }
        if self._native is not None:
            metrics["native"] = self._native.get_metrics()
        return metrics
