"""
Collection Progress Tracker
===========================

Single source of truth for progress and ETA across concurrent sessions.

Every update rebuilds an immutable CollectionProgress snapshot and fans it
out to the session's observers:
    - inside a running event loop every delivery is bounded by observer_timeout:
      async observers run as tasks, sync observers on a per-session worker
      thread, so a slow observer never blocks collection
    - without a loop, sync observers run inline and async ones are skipped
    - a failing observer is logged and delivery to the others continues

Observer registration is a per-session Subscription; cleaning up a
session drops its observers.

Usage:
    tracker = ProgressTracker()
    tracker.create_session(session_id, config)
    with tracker.subscribe(session_id, print):
        tracker.update_progress(session_id, Phase.RECENT, 40, 100)
"""

import time
import asyncio
import inspect
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from ..reviews.errors import SessionNotFoundError
from .session_models import (
    CollectionConfig,
    CollectionProgress,
    OverallProgress,
    Phase,
    PhaseMetric,
    PhaseProgress,
)

logger = logging.getLogger(__name__)

Observer = Callable[[CollectionProgress], Any]


def percentage(current: int, target: int) -> int:
    """round(current/target*100) clamped to [0, 100]; 0 when target is 0."""
    if target <= 0:
        return 0
    return max(0, min(100, round(current / target * 100)))


def estimate_remaining(total_target: int, collected: int, elapsed: float) -> float:
    """Throughput extrapolation; 0 when the rate is undefined."""
    if collected <= 0 or elapsed <= 0:
        return 0.0
    rate = collected / elapsed
    return max(0.0, (total_target - collected) / rate)


def is_async_observer(observer: Observer) -> bool:
    """True for coroutine functions and objects with an async __call__."""
    return inspect.iscoroutinefunction(observer) or inspect.iscoroutinefunction(
        getattr(observer, "__call__", None)
    )


@dataclass
class SessionProgressState:
    """Tracker-side state of one session."""
    session_id: str
    start_time: float
    total_target: int
    progress: CollectionProgress
    phase_metrics: Dict[Phase, PhaseMetric] = field(default_factory=dict)
    results: Any = None
    observers: List[Observer] = field(default_factory=list)
    executor: Optional[ThreadPoolExecutor] = None


class Subscription:
    """Handle returned by subscribe(); close() unregisters the observer."""

    def __init__(self, tracker: "ProgressTracker", session_id: str, observer: Observer):
        self._tracker = tracker
        self.session_id = session_id
        self.observer = observer
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self._tracker._unsubscribe(self.session_id, self.observer)
            self.closed = True

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ProgressTracker:
    """
    Per-session progress registry with observer fan-out.

    All mutation happens on the event loop thread, without awaiting,
    so concurrent sessions never interleave inside one update.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        observer_timeout: float = 5.0,
    ):
        self._clock = clock
        self.observer_timeout = observer_timeout
        self._sessions: Dict[str, SessionProgressState] = {}
        self._pending: Set[asyncio.Task] = set()

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================

    def create_session(self, session_id: str, config: CollectionConfig) -> CollectionProgress:
        """Seed a session: totalTarget = sum of phase targets, currentPhase = recent."""
        total = config.target_counts.total
        progress = CollectionProgress(
            session_id=session_id,
            current_phase=Phase.RECENT,
            phase_progress=PhaseProgress(0, config.target_counts.recent, 0),
            overall_progress=OverallProgress(0, total, 0),
            time_elapsed=0.0,
            estimated_time_remaining=0.0,
        )
        self._sessions[session_id] = SessionProgressState(
            session_id=session_id,
            start_time=self._clock(),
            total_target=total,
            progress=progress,
        )
        logger.debug(f"Progress tracking started for {session_id}", extra={"session_id": session_id})
        return progress

    def _require(self, session_id: str) -> SessionProgressState:
        state = self._sessions.get(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)
        return state

    def get_session(self, session_id: str) -> Optional[SessionProgressState]:
        return self._sessions.get(session_id)

    def get_progress(self, session_id: str) -> Optional[CollectionProgress]:
        state = self._sessions.get(session_id)
        return state.progress if state else None

    def cleanup_session(self, session_id: str) -> bool:
        """Drop a session and its observers."""
        state = self._sessions.pop(session_id, None)
        if state is None:
            return False
        state.observers.clear()
        if state.executor is not None:
            state.executor.shutdown(wait=False)
        return True

    # =========================================================================
    # UPDATES
    # =========================================================================

    def update_progress(self, session_id: str, phase: Phase, current: int, target: int) -> CollectionProgress:
        """
        Record the running count of a phase and notify observers.

        The deduplication phase counts removed reviews and never
        contributes to overallProgress.reviewsCollected.
        """
        state = self._require(session_id)
        now = self._clock()

        metric = state.phase_metrics.get(phase)
        if metric is None:
            metric = PhaseMetric(phase=phase, start_time=now, target=target)
            state.phase_metrics[phase] = metric
        metric.reviews_collected = current
        metric.target = target

        collected = sum(
            m.reviews_collected
            for p, m in state.phase_metrics.items()
            if p != Phase.DEDUPLICATION
        )
        elapsed = max(0.0, now - state.start_time)

        state.progress = CollectionProgress(
            session_id=session_id,
            current_phase=phase,
            phase_progress=PhaseProgress(current, target, percentage(current, target)),
            overall_progress=OverallProgress(
                collected, state.total_target, percentage(collected, state.total_target)
            ),
            time_elapsed=elapsed,
            estimated_time_remaining=estimate_remaining(state.total_target, collected, elapsed),
        )

        logger.debug(
            f"{session_id} {phase.value}: {current}/{target} "
            f"(overall {state.progress.overall_progress.percentage}%)",
            extra={"session_id": session_id, "phase": phase.value},
        )
        self._notify(state)
        return state.progress

    def complete_phase(self, session_id: str, phase: Phase) -> None:
        """Set endTime and completed=True on a phase metric (one-way)."""
        state = self._require(session_id)
        metric = state.phase_metrics.get(phase)
        if metric is None:
            metric = PhaseMetric(phase=phase, start_time=self._clock())
            state.phase_metrics[phase] = metric
        if metric.completed:
            return
        metric.end_time = self._clock()
        metric.completed = True
        logger.info(
            f"{session_id} phase {phase.value} completed: {metric.reviews_collected} reviews "
            f"in {metric.duration(metric.end_time):.1f}s",
            extra={"session_id": session_id, "phase": phase.value, "duration": metric.duration(metric.end_time)},
        )

    def complete_collection(self, session_id: str, results: Any) -> CollectionProgress:
        """Force phase=complete, overall 100%, attach results and notify a last time."""
        state = self._require(session_id)
        previous = state.progress
        state.results = results
        state.progress = CollectionProgress(
            session_id=session_id,
            current_phase=Phase.COMPLETE,
            phase_progress=previous.phase_progress,
            overall_progress=OverallProgress(
                previous.overall_progress.reviews_collected, state.total_target, 100
            ),
            time_elapsed=max(0.0, self._clock() - state.start_time),
            estimated_time_remaining=0.0,
        )
        self._notify(state)
        return state.progress

    def get_performance_metrics(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Aggregate and per-phase throughput; open phases are measured against now."""
        state = self._sessions.get(session_id)
        if state is None:
            return None

        now = self._clock()
        total_duration = max(0.0, now - state.start_time)
        phases = {}
        for phase, metric in state.phase_metrics.items():
            duration = metric.duration(now)
            phases[phase.value] = {
                "duration": round(duration, 3),
                "reviewsCollected": metric.reviews_collected,
                "reviewsPerSecond": round(metric.reviews_collected / duration, 3) if duration > 0 else 0.0,
                "completed": metric.completed,
            }

        collected = state.progress.overall_progress.reviews_collected
        return {
            "sessionId": session_id,
            "totalDuration": round(total_duration, 3),
            "reviewsCollected": collected,
            "reviewsPerSecond": round(collected / total_duration, 3) if total_duration > 0 else 0.0,
            "phases": phases,
        }

    # =========================================================================
    # OBSERVERS
    # =========================================================================

    def subscribe(self, session_id: str, observer: Observer) -> Subscription:
        state = self._require(session_id)
        state.observers.append(observer)
        return Subscription(self, session_id, observer)

    def _unsubscribe(self, session_id: str, observer: Observer) -> None:
        state = self._sessions.get(session_id)
        if state and observer in state.observers:
            state.observers.remove(observer)

    def remove_observers(self, session_id: str) -> None:
        state = self._sessions.get(session_id)
        if state:
            state.observers.clear()

    def _notify(self, state: SessionProgressState) -> None:
        progress = state.progress
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for observer in list(state.observers):
            if is_async_observer(observer):
                if loop is None:
                    logger.warning(f"Async observer for {state.session_id} skipped: no running event loop")
                    continue
                try:
                    awaitable = observer(progress)
                except Exception as e:
                    self._log_observer_error(state.session_id, e)
                    continue
                self._dispatch(loop, state.session_id, awaitable)
            elif loop is not None:
                future = loop.run_in_executor(self._executor_for(state), observer, progress)
                self._dispatch(loop, state.session_id, future)
            else:
                try:
                    observer(progress)
                except Exception as e:
                    self._log_observer_error(state.session_id, e)

    def _executor_for(self, state: SessionProgressState) -> ThreadPoolExecutor:
        # One worker per session keeps that session's deliveries in order
        if state.executor is None:
            state.executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"observers-{state.session_id}"
            )
        return state.executor

    def _log_observer_error(self, session_id: str, error: BaseException) -> None:
        logger.warning(
            f"Progress observer failed for {session_id}: {error}",
            extra={"session_id": session_id},
        )

    def _dispatch(self, loop: asyncio.AbstractEventLoop, session_id: str, awaitable: Any) -> None:
        task = loop.create_task(asyncio.wait_for(awaitable, timeout=self.observer_timeout))
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            error = t.exception()
            if isinstance(error, asyncio.TimeoutError):
                logger.warning(
                    f"Observer for {session_id} timed out after {self.observer_timeout}s",
                    extra={"session_id": session_id},
                )
            elif error is not None:
                self._log_observer_error(session_id, error)

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for in-flight observer deliveries."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Flush deliveries and release observer threads (recreated on demand)."""
        await self.drain()
        for state in self._sessions.values():
            if state.executor is not None:
                state.executor.shutdown(wait=False)
                state.executor = None

    @property
    def active_session_ids(self) -> List[str]:
        return list(self._sessions)
