"""
Decode Strategy Chain
=====================

Runs fallback strategies on one frame in priority order until one
succeeds.

LangGraph is used for CONTROL FLOW only.

Graph Structure (for strategies [snapshot, remote_symbol, remote_text]):
    START → snapshot ─hit→ END
               └miss→ remote_symbol ─hit→ END
                          └miss→ remote_text → END

Per-strategy contract enforced here:
    - Exceptions are logged and normalised to "no result"
    - Each attempt is bounded by a timeout
    - Single-flight: a strategy still running from an earlier pass is
      recorded as skipped instead of being re-entered, including one
      whose attempt already timed out
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TypedDict

from langgraph.graph import END, StateGraph

from codescan_agent.codes.cleaning import extract
from codescan_agent.decoding.base import DecodeError, DecodeStrategy
from codescan_agent.models.codes import CandidateCode, DecodeAttempt
from codescan_agent.stream.frame import Frame


logger = logging.getLogger(__name__)


class ChainGraphState(TypedDict):
    """
    State passed through the chain graph.

    Attributes:
        frame: Frame under decode
        attempts: Attempts made so far, in order
        result_text: Text of the winning attempt, if any
        source_strategy: Strategy that produced result_text
    """
    frame: Frame
    attempts: List[DecodeAttempt]
    result_text: Optional[str]
    source_strategy: Optional[str]


@dataclass(frozen=True)
class ChainResult:
    """Outcome of one chain pass over a frame."""

    attempts: List[DecodeAttempt] = field(default_factory=list)
    candidate: Optional[CandidateCode] = None

    @property
    def succeeded(self) -> bool:
        return self.candidate is not None


def make_candidate(raw_text: str, source_strategy: str, timestamp: float) -> CandidateCode:
    """Wrap decoded text as a candidate with its cleaned form."""
    return CandidateCode(
        raw_text=raw_text,
        cleaned=extract(raw_text),
        source_strategy=source_strategy,
        timestamp=timestamp,
    )


class DecodeChain:
    """
    Ordered fallback strategies compiled into a LangGraph workflow.

    Attributes:
        strategies: Strategies in priority order
        timeout_sec: Upper bound on one strategy attempt

    Example:
        chain = DecodeChain([SnapshotDecodeStrategy()], timeout_sec=5.0)
        result = await chain.run(frame)
        if result.succeeded:
            print(result.candidate.cleaned)
    """

    def __init__(
        self,
        strategies: Sequence[DecodeStrategy],
        timeout_sec: Optional[float] = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the chain.

        Args:
            strategies: Strategies in priority order (ids must be unique)
            timeout_sec: Per-strategy timeout (None = unbounded)
            clock: Time source for candidate timestamps

        Raises:
            ValueError: If two strategies share an id
        """
        ids = [s.strategy_id for s in strategies]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate strategy ids in chain: {ids}")

        self.strategies = list(strategies)
        self.timeout_sec = timeout_sec
        self._clock = clock

        self._in_flight: set = set()
        self._passes = 0
        self._successes: Dict[str, int] = {sid: 0 for sid in ids}
        self._failures: Dict[str, int] = {sid: 0 for sid in ids}
        self._skips: Dict[str, int] = {sid: 0 for sid in ids}

        self._graph = self._build_graph() if self.strategies else None

        logger.info(f"DecodeChain initialized: strategies={ids or '[]'}")

    @property
    def strategy_ids(self) -> List[str]:
        return [s.strategy_id for s in self.strategies]

    def _build_graph(self) -> Any:
        """Build the LangGraph workflow, one node per strategy."""
        workflow = StateGraph(ChainGraphState)

        for strategy in self.strategies:
            workflow.add_node(strategy.strategy_id, self._make_node(strategy))

        workflow.set_entry_point(self.strategies[0].strategy_id)

        for current, following in zip(self.strategies, self.strategies[1:]):
            workflow.add_conditional_edges(
                current.strategy_id,
                self._route,
                {"done": END, "next": following.strategy_id},
            )
        workflow.add_edge(self.strategies[-1].strategy_id, END)

        return workflow.compile()

    @staticmethod
    def _route(state: ChainGraphState) -> str:
        return "done" if state.get("result_text") else "next"

    def _make_node(self, strategy: DecodeStrategy):
        async def node(state: ChainGraphState) -> Dict[str, Any]:
            attempt = await self.attempt(strategy, state["frame"])
            update: Dict[str, Any] = {"attempts": state["attempts"] + [attempt]}
            if attempt.succeeded:
                update["result_text"] = attempt.result_text
                update["source_strategy"] = attempt.strategy_id
            return update

        return node

    async def attempt(self, strategy: DecodeStrategy, frame: Frame) -> DecodeAttempt:
        """
        Run one strategy on one frame under the per-strategy contract.

        Never raises (except on cancellation).
        """
        sid = strategy.strategy_id
        if sid in self._in_flight:
            self._skips[sid] = self._skips.get(sid, 0) + 1
            logger.debug(f"Strategy {sid} still in flight, skipping frame {frame.frame_id}")
            return DecodeAttempt(strategy_id=sid, frame_id=frame.frame_id, skipped=True)

        # A timeout only stops the wait; the strategy stays in flight until
        # its own work (often a worker thread) has finished.
        self._in_flight.add(sid)
        task = asyncio.create_task(strategy.decode(frame), name=f"decode_{sid}_{frame.frame_id}")
        task.add_done_callback(lambda done: self._release(sid, done))

        text: Optional[str] = None
        try:
            text = await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            logger.warning(f"Strategy {sid} timed out after {self.timeout_sec}s (frame={frame.frame_id})")
        except DecodeError as e:
            logger.warning(f"Strategy {sid} failed (frame={frame.frame_id}): {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Strategy {sid} raised unexpectedly (frame={frame.frame_id}): {e}")

        text = text.strip() if isinstance(text, str) else None
        if not text:
            self._failures[sid] = self._failures.get(sid, 0) + 1
            return DecodeAttempt(strategy_id=sid, frame_id=frame.frame_id)

        self._successes[sid] = self._successes.get(sid, 0) + 1
        return DecodeAttempt(
            strategy_id=sid,
            frame_id=frame.frame_id,
            result_text=text,
            succeeded=True,
        )

    def _release(self, sid: str, task: asyncio.Task) -> None:
        """Done-callback of a strategy task: clear its in-flight mark."""
        self._in_flight.discard(sid)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Strategy {sid} finished with {task.exception()!r}")

    @property
    def in_flight(self) -> List[str]:
        return sorted(self._in_flight)

    async def run(self, frame: Frame) -> ChainResult:
        """
        Run the chain on a frame; the first success short-circuits.

        Args:
            frame: Snapshot to decode

        Returns:
            ChainResult with every attempt made and the candidate, if any
        """
        self._passes += 1
        if self._graph is None:
            return ChainResult()

        initial: ChainGraphState = {
            "frame": frame,
            "attempts": [],
            "result_text": None,
            "source_strategy": None,
        }
        final = await self._graph.ainvoke(initial)

        candidate = None
        if final.get("result_text"):
            candidate = make_candidate(final["result_text"], final["source_strategy"], self._clock())
            logger.info(
                f"Chain hit: strategy={candidate.source_strategy}, "
                f"frame={frame.frame_id}, code={candidate.cleaned!r}"
            )

        return ChainResult(attempts=list(final["attempts"]), candidate=candidate)

    def get_metrics(self) -> Dict[str, Any]:
        """Get chain metrics for observability."""
        return {
            "passes": self._passes,
            "strategies": self.strategy_ids,
            "successes": dict(self._successes),
            "failures": dict(self._failures),
            "skips": dict(self._skips),
            "in_flight": self.in_flight,
        }
