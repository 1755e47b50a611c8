"""
Acquisition Controller Tests
============================

Tests for the session state machine, both decode loops, candidate
handling and teardown. Fallback ticks are driven by hand (the periodic
loop interval is set far beyond the test duration).
"""

import asyncio
import logging
import time

import pytest

from codescan_agent.acquisition import (
    AcquisitionController,
    InvalidTransitionError,
    can_transition,
    create_controller,
)
from codescan_agent.codes import ThrottleChannel, ThrottleGate
from codescan_agent.config import Settings
from codescan_agent.decoding import ContinuousNativeDecoder, DecodeChain
from codescan_agent.models.events import CodeAcceptedEvent, FeedbackEvent, FeedbackKind
from codescan_agent.models.state import AcquisitionMode, AcquisitionState
from codescan_agent.store import InMemoryCodeStore
from codescan_agent.stream.camera import CameraFrameSource
from codescan_agent.stream.source import FrameSourceError, FrameSourceErrorReason

from conftest import (
    EventRecorder,
    FakeCapture,
    FakeFrameSource,
    ScriptedStrategy,
    wait_until,
)


class UnavailableStore(InMemoryCodeStore):
    """Store whose reads fail, like a database that went away."""

    def get_existing_codes(self, product_id: str):
        raise RuntimeError("database unavailable")


def make_controller(
    clock,
    strategies=(),
    source=None,
    store=None,
    native=None,
    mode=AcquisitionMode.CONTINUOUS,
    **kwargs,
):
    gate = ThrottleGate(
        {
            ThrottleChannel.ACCEPTED_CODE: 2.0,
            ThrottleChannel.DUPLICATE_WARNING: 5.0,
            ThrottleChannel.WARNING: 3.0,
        },
        clock=clock,
    )
    kwargs.setdefault("cooldown_sec", 0.01)
    kwargs.setdefault("fallback_interval_sec", 3600.0)
    controller = AcquisitionController(
        frame_source=source or FakeFrameSource(),
        chain=DecodeChain(list(strategies), timeout_sec=1.0, clock=clock),
        gate=gate,
        code_store=store or InMemoryCodeStore(),
        native_decoder=native,
        mode=mode,
        clock=clock,
        **kwargs,
    )
    recorder = EventRecorder()
    controller.subscribe(recorder)
    return controller, recorder


async def run_tick(controller: AcquisitionController) -> bool:
    """Start one fallback pass and wait for it to finish."""
    started = controller._fallback_tick(controller.generation)
    if started:
        await wait_until(lambda: not controller.fallback_busy and not controller._pass_tasks)
    return started


class TestTransitionTable:
    """Tests for the allowed transition table."""

    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            (AcquisitionState.IDLE, AcquisitionState.INITIALIZING, True),
            (AcquisitionState.IDLE, AcquisitionState.SCANNING, False),
            (AcquisitionState.SCANNING, AcquisitionState.PAUSED, True),
            (AcquisitionState.PAUSED, AcquisitionState.SCANNING, True),
            (AcquisitionState.PAUSED, AcquisitionState.TERMINATED, True),
            (AcquisitionState.TERMINATED, AcquisitionState.SCANNING, False),
            (AcquisitionState.TERMINATED, AcquisitionState.INITIALIZING, False),
        ],
    )
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed


class TestLifecycle:
    """Tests for start, close and fatal initialisation errors."""

    def test_start_reaches_scanning(self, fake_clock):
        async def scenario():
            controller, _ = make_controller(fake_clock)
            assert controller.state is AcquisitionState.IDLE
            await controller.start()
            state = controller.state
            await controller.close()
            return controller, state

        controller, state = asyncio.run(scenario())
        assert state is AcquisitionState.SCANNING
        assert controller.state is AcquisitionState.TERMINATED
        assert controller.frame_source.stop_calls == 1

    def test_close_is_idempotent(self, fake_clock):
        async def scenario():
            controller, _ = make_controller(fake_clock)
            await controller.start()
            await controller.close()
            await controller.close()
            return controller

        controller = asyncio.run(scenario())
        assert controller.frame_source.stop_calls == 1

    def test_permission_denied_terminates(self, fake_clock):
        error = FrameSourceError(FrameSourceErrorReason.PERMISSION_DENIED, "camera access denied")

        async def scenario():
            controller, recorder = make_controller(fake_clock, source=FakeFrameSource(start_error=error))
            with pytest.raises(FrameSourceError) as exc_info:
                await controller.start()
            return controller, recorder, exc_info.value

        controller, recorder, raised = asyncio.run(scenario())
        assert raised.reason is FrameSourceErrorReason.PERMISSION_DENIED
        assert controller.state is AcquisitionState.TERMINATED
        feedback = recorder.of_type(FeedbackEvent)
        assert [f.kind for f in feedback] == [FeedbackKind.INIT_ERROR]
        assert "PERMISSION_DENIED" in feedback[0].message

    def test_no_first_frame_times_out(self):
        """A source that never reports dimensions fails with NO_DEVICE."""

        async def scenario():
            controller, _ = make_controller(
                time.monotonic,
                source=FakeFrameSource(ready=False),
                ready_timeout_sec=0.05,
                ready_poll_sec=0.01,
            )
            with pytest.raises(FrameSourceError) as exc_info:
                await controller.start()
            return controller, exc_info.value

        controller, raised = asyncio.run(scenario())
        assert raised.reason is FrameSourceErrorReason.NO_DEVICE
        assert controller.state is AcquisitionState.TERMINATED

    def test_close_while_camera_opens_releases_it(self, fake_clock):
        """close() during INITIALIZING leaves no camera held."""
        capture = FakeCapture(open_delay=0.3)

        async def scenario():
            source = CameraFrameSource(fps=100, capture_factory=capture.factory)
            controller, recorder = make_controller(fake_clock, source=source)
            starting = asyncio.create_task(controller.start())
            await asyncio.sleep(0.05)
            closing_state = controller.state
            await controller.close()
            await starting
            return controller, recorder, source, closing_state

        controller, recorder, source, closing_state = asyncio.run(scenario())
        assert closing_state is AcquisitionState.INITIALIZING
        assert controller.state is AcquisitionState.TERMINATED
        assert capture.released
        assert not source.running
        assert recorder.events == []

    def test_close_while_waiting_for_first_frame_stops_source(self):
        async def scenario():
            controller, _ = make_controller(
                time.monotonic,
                source=FakeFrameSource(ready=False),
                ready_timeout_sec=5.0,
                ready_poll_sec=0.01,
            )
            starting = asyncio.create_task(controller.start())
            await asyncio.sleep(0.03)
            await controller.close()
            await starting
            return controller

        controller = asyncio.run(scenario())
        assert controller.state is AcquisitionState.TERMINATED
        assert controller.frame_source.stop_calls == 2
        assert not controller.frame_source.running

    def test_invalid_transitions_raise(self, fake_clock):
        async def scenario():
            controller, _ = make_controller(fake_clock)
            with pytest.raises(InvalidTransitionError):
                controller.resume()
            with pytest.raises(InvalidTransitionError):
                controller.pause()
            await controller.start()
            with pytest.raises(InvalidTransitionError):
                await controller.start()
            with pytest.raises(InvalidTransitionError):
                controller.resume()
            await controller.close()
            with pytest.raises(InvalidTransitionError):
                controller.pause()

        asyncio.run(scenario())


class TestContinuousMode:
    """Tests for acceptance, cooldown and throttling in continuous mode."""

    def test_accept_pauses_then_resumes(self, fake_clock):
        async def scenario():
            strategy = ScriptedStrategy("snapshot", ["HTSM1/3SN69801"])
            controller, recorder = make_controller(fake_clock, strategies=[strategy], cooldown_sec=0.2)
            await controller.start()

            assert await run_tick(controller)
            paused = controller.state
            resumed = await wait_until(lambda: controller.state is AcquisitionState.SCANNING)
            await controller.close()
            return controller, recorder, paused, resumed

        controller, recorder, paused, resumed = asyncio.run(scenario())
        accepted = recorder.of_type(CodeAcceptedEvent)
        assert len(accepted) == 1
        assert accepted[0].code == "69801"
        assert accepted[0].raw_text == "HTSM1/3SN69801"
        assert accepted[0].source_strategy == "snapshot"
        assert paused is AcquisitionState.PAUSED
        assert resumed
        assert controller.last_accepted.cleaned == "69801"

    def test_rescan_window_suppresses_same_code(self, fake_clock):
        async def scenario():
            strategy = ScriptedStrategy("snapshot", ["000123"])
            controller, recorder = make_controller(fake_clock, strategies=[strategy])
            await controller.start()

            await run_tick(controller)
            await wait_until(lambda: controller.state is AcquisitionState.SCANNING)

            fake_clock.advance(1.0)
            await run_tick(controller)
            after_repeat = controller.state

            fake_clock.advance(1.5)
            await run_tick(controller)
            await controller.close()
            return controller, recorder, after_repeat

        controller, recorder, after_repeat = asyncio.run(scenario())
        assert [e.code for e in recorder.of_type(CodeAcceptedEvent)] == ["000123", "000123"]
        assert after_repeat is AcquisitionState.SCANNING
        assert controller.get_metrics()["suppressed"] == 1
        assert recorder.of_type(FeedbackEvent) == []

    def test_duplicate_warning_is_throttled(self, fake_clock):
        async def scenario():
            store = InMemoryCodeStore()
            store.add_code("default", "69801")
            strategy = ScriptedStrategy("snapshot", ["SN69801"])
            controller, recorder = make_controller(fake_clock, strategies=[strategy], store=store)
            await controller.start()

            await run_tick(controller)
            fake_clock.advance(2.5)
            await run_tick(controller)
            fake_clock.advance(3.0)
            await run_tick(controller)
            await controller.close()
            return controller, recorder

        controller, recorder = asyncio.run(scenario())
        feedback = recorder.of_type(FeedbackEvent)
        assert [f.kind for f in feedback] == [FeedbackKind.DUPLICATE_WARNING] * 2
        assert feedback[0].code == "69801"
        assert controller.get_metrics()["duplicates"] == 3
        assert recorder.of_type(CodeAcceptedEvent) == []

    def test_unusable_text_gives_decode_error(self, fake_clock):
        async def scenario():
            strategy = ScriptedStrategy("remote_symbol", ["----"])
            controller, recorder = make_controller(fake_clock, strategies=[strategy])
            await controller.start()
            await run_tick(controller)
            await run_tick(controller)
            state = controller.state
            await controller.close()
            return recorder, state

        recorder, state = asyncio.run(scenario())
        feedback = recorder.of_type(FeedbackEvent)
        assert [f.kind for f in feedback] == [FeedbackKind.DECODE_ERROR]
        assert state is AcquisitionState.SCANNING

    def test_pause_during_cooldown_holds(self, fake_clock):
        async def scenario():
            strategy = ScriptedStrategy("snapshot", ["42"])
            controller, _ = make_controller(fake_clock, strategies=[strategy], cooldown_sec=0.02)
            await controller.start()
            await run_tick(controller)
            controller.pause()
            await asyncio.sleep(0.06)
            held = controller.state
            controller.resume()
            resumed = controller.state
            await controller.close()
            return held, resumed

        held, resumed = asyncio.run(scenario())
        assert held is AcquisitionState.PAUSED
        assert resumed is AcquisitionState.SCANNING


class TestSingleShotMode:
    """Tests for pause-after-any-decode behaviour."""

    def test_decode_error_pauses_until_resume(self, fake_clock):
        async def scenario():
            strategy = ScriptedStrategy("snapshot", ["----", "SN000777"])
            controller, recorder = make_controller(
                fake_clock, strategies=[strategy], mode=AcquisitionMode.SINGLE_SHOT
            )
            await controller.start()

            await run_tick(controller)
            await asyncio.sleep(0.05)
            after_error = controller.state
            assert not controller._fallback_tick(controller.generation)

            controller.resume()
            await run_tick(controller)
            await asyncio.sleep(0.05)
            after_accept = controller.state
            await controller.close()
            return recorder, after_error, after_accept

        recorder, after_error, after_accept = asyncio.run(scenario())
        assert after_error is AcquisitionState.PAUSED
        assert after_accept is AcquisitionState.PAUSED
        assert [f.kind for f in recorder.of_type(FeedbackEvent)] == [FeedbackKind.DECODE_ERROR]
        assert [e.code for e in recorder.of_type(CodeAcceptedEvent)] == ["000777"]

    def test_store_failure_gives_decode_error_and_pauses(self, fake_clock):
        async def scenario():
            strategy = ScriptedStrategy("snapshot", ["SN000321"])
            controller, recorder = make_controller(
                fake_clock,
                strategies=[strategy],
                store=UnavailableStore(),
                mode=AcquisitionMode.SINGLE_SHOT,
            )
            await controller.start()
            await run_tick(controller)
            state = controller.state
            metrics = controller.get_metrics()
            await controller.close()
            return recorder, state, metrics

        recorder, state, metrics = asyncio.run(scenario())
        feedback = recorder.of_type(FeedbackEvent)
        assert [f.kind for f in feedback] == [FeedbackKind.DECODE_ERROR]
        assert feedback[0].code == "000321"
        assert recorder.of_type(CodeAcceptedEvent) == []
        assert state is AcquisitionState.PAUSED
        assert metrics["store_errors"] == 1
        assert metrics["accepted"] == 0


class TestLoopCoordination:
    """Tests for the busy token, native/fallback coordination and stale results."""

    def test_busy_tick_is_skipped(self, fake_clock):
        async def scenario():
            gate = asyncio.Event()
            strategy = ScriptedStrategy("remote_symbol", [None], gate=gate)
            controller, _ = make_controller(fake_clock, strategies=[strategy])
            await controller.start()

            first = controller._fallback_tick(controller.generation)
            await asyncio.sleep(0)
            second = controller._fallback_tick(controller.generation)
            gate.set()
            await wait_until(lambda: not controller.fallback_busy)
            metrics = controller.get_metrics()
            await controller.close()
            return strategy, first, second, metrics

        strategy, first, second, metrics = asyncio.run(scenario())
        assert first is True
        assert second is False
        assert len(strategy.calls) == 1
        assert metrics["fallback_skipped_busy"] == 1
        assert metrics["fallback_passes"] == 1

    def test_native_hit_skips_fallback_on_same_frame(self, fake_clock):
        async def scenario():
            fallback = ScriptedStrategy("snapshot", ["999"])
            native = ContinuousNativeDecoder(scan_fps=0, decoder=lambda pixels: ["LOT7-SN000123"])
            controller, recorder = make_controller(fake_clock, strategies=[fallback], native=native)
            await controller.start()

            frame = await controller.frame_source.push()
            await wait_until(lambda: recorder.of_type(CodeAcceptedEvent))
            await wait_until(lambda: controller.state is AcquisitionState.SCANNING)

            ticked = controller._fallback_tick(controller.generation)
            metrics = controller.get_metrics()
            await controller.close()
            return fallback, recorder, frame, native, ticked, metrics

        fallback, recorder, frame, native, ticked, metrics = asyncio.run(scenario())
        accepted = recorder.of_type(CodeAcceptedEvent)
        assert [(e.code, e.source_strategy) for e in accepted] == [("000123", "native")]
        assert native.last_decoded_frame_id == frame.frame_id
        assert ticked is False
        assert fallback.calls == []
        assert metrics["fallback_skipped_native"] == 1

    def test_paused_source_does_not_feed_native(self, fake_clock):
        async def scenario():
            native = ContinuousNativeDecoder(scan_fps=0, decoder=lambda pixels: ["5"])
            controller, recorder = make_controller(fake_clock, native=native)
            await controller.start()
            controller.pause()
            await controller.frame_source.push()
            await asyncio.sleep(0.02)
            await controller.close()
            return native, recorder

        native, recorder = asyncio.run(scenario())
        assert native.get_metrics()["scans"] == 0
        assert recorder.events == []

    def test_result_after_close_is_discarded(self, fake_clock):
        async def scenario():
            gate = asyncio.Event()
            strategy = ScriptedStrategy("remote_text", ["000555"], gate=gate)
            controller, recorder = make_controller(fake_clock, strategies=[strategy])
            await controller.start()

            assert controller._fallback_tick(controller.generation)
            await asyncio.sleep(0)
            await controller.close()
            gate.set()
            await wait_until(lambda: controller.get_metrics()["discarded"] == 1)
            return controller, recorder

        controller, recorder = asyncio.run(scenario())
        assert controller.get_metrics()["discarded"] == 1
        assert recorder.events == []
        assert controller.state is AcquisitionState.TERMINATED

    def test_failed_decode_task_is_logged(self, fake_clock, caplog):
        async def broken_pass():
            raise RuntimeError("native decoder bug")

        async def scenario():
            controller, _ = make_controller(fake_clock)
            controller._spawn(broken_pass(), "native_pass")
            await wait_until(lambda: not controller._pass_tasks)
            await asyncio.sleep(0)

        with caplog.at_level(logging.ERROR, logger="codescan_agent.acquisition.controller"):
            asyncio.run(scenario())

        assert "native decoder bug" in caplog.text


class TestFactory:
    """Tests for building a controller from settings."""

    def test_create_controller(self):
        settings = Settings.model_validate(
            {
                "acquisition": {"mode": "single_shot", "product_id": "P-7", "cooldown_ms": 250},
                "decoding": {"strategies": ["snapshot", "remote_symbol"]},
            }
        )
        controller = create_controller(settings, InMemoryCodeStore(), frame_source=FakeFrameSource())

        assert controller.state is AcquisitionState.IDLE
        assert controller.mode is AcquisitionMode.SINGLE_SHOT
        assert controller.product_id == "P-7"
        assert controller.cooldown_sec == 0.25
        assert controller.get_metrics()["chain"]["strategies"] == ["snapshot", "remote_symbol"]
        assert "native" in controller.get_metrics()
