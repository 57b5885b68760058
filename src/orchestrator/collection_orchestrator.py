"""
ReviewSight Collection Orchestrator
===================================

Drives one collection session through its phases and produces a merged,
deduplicated, sampled and analyzed result, or a terminal error.

    pending -> collecting{recent -> worst -> best -> deduplication} -> complete
    any state -> error

Features:
    - One coordinating task per session; sessions are fully independent
    - Per-phase timeout and retry budget (a retry restarts the phase)
    - Total timeout over the harvesting phases
    - Retry of a failed session allocates a brand-new session
    - Sessions purged after a retention window, whatever their state

Callers get a session id immediately; failures are only observable
through get_status() or notification events.

Usage:
    orchestrator = CollectionOrchestrator(harvester=FileHarvester("reviews.json"))
    session_id = await orchestrator.start_collection("https://example.com/place/1")
    status = await orchestrator.wait_for(session_id)
"""

import copy
import time
import uuid
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..ai.review_analyzer import BatchedAnalysisEngine
from ..cache.result_store import ResultStore
from ..data.config import Settings, get_settings
from ..data.harvester import Harvester, PhaseDescriptor, validate_source_url
from ..notifications.webhook_notifier import WebhookNotifier
from ..reviews.errors import (
    CollectionError,
    HarvestingError,
    InvalidStateError,
    PhaseTimeoutError,
    RateLimitExceededError,
    SessionNotFoundError,
)
from ..reviews.review_models import RawReview
from ..reviews.sampling import SamplingEngine, deduplicate, generate_sampling_report
from ..reviews.verdict import TrustVerdictGenerator
from .progress_tracker import ProgressTracker
from .session_models import (
    HARVEST_PHASES,
    CollectionConfig,
    CollectionResults,
    CollectionSession,
    Phase,
    PhaseResult,
    SessionStatus,
    StoppedReason,
)

logger = logging.getLogger(__name__)


class CollectionOrchestrator:
    """
    Top-level phase state machine.

    Owns the session registry; the ProgressTracker owns per-session
    progress. Both are keyed by session id.
    """

    def __init__(
        self,
        harvester: Harvester,
        analysis_engine: Optional[BatchedAnalysisEngine] = None,
        tracker: Optional[ProgressTracker] = None,
        sampler: Optional[SamplingEngine] = None,
        verdict_generator: Optional[TrustVerdictGenerator] = None,
        notifier: Optional[WebhookNotifier] = None,
        result_store: Optional[ResultStore] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.harvester = harvester
        self.analysis_engine = analysis_engine or BatchedAnalysisEngine(
            use_fallback=self.settings.analysis.use_fallback,
            provider=self.settings.analysis.provider,
            model=self.settings.analysis.model,
        )
        self.tracker = tracker or ProgressTracker(
            clock=clock,
            observer_timeout=self.settings.sessions.observer_timeout,
        )
        self.sampler = sampler or SamplingEngine()
        self.verdict_generator = verdict_generator or TrustVerdictGenerator()
        self.notifier = notifier
        self.result_store = result_store
        self._clock = clock
        self._sleep = sleep

        self._sessions: Dict[str, CollectionSession] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._reaper: Optional[asyncio.Task] = None

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def get_default_config(self) -> CollectionConfig:
        return CollectionConfig.from_defaults(self.settings.collection)

    async def start_collection(
        self,
        source: str,
        config: Union[CollectionConfig, Dict[str, Any], None] = None,
    ) -> str:
        """
        Validate the request and start a session in the background.

        Returns:
            New session id

        Raises:
            ValidationError: malformed source or config (nothing is started)
        """
        source = validate_source_url(source, self.settings.sessions.allowed_source_domains)
        if isinstance(config, CollectionConfig):
            config.validate()
            resolved = copy.deepcopy(config)
        else:
            resolved = CollectionConfig.from_dict(config, base=self.get_default_config())
        return self._launch(source, resolved)

    def get_status(self, session_id: str) -> Dict[str, Any]:
        """
        Read-only snapshot of a session.

        Raises:
            SessionNotFoundError: unknown or purged session
        """
        session = self._require(session_id)
        state = self.tracker.get_session(session_id)
        return session.snapshot(
            progress=state.progress if state else None,
            phase_metrics=state.phase_metrics if state else None,
        )

    async def retry(self, session_id: str) -> str:
        """
        Restart a failed session from scratch as a new session.

        Raises:
            SessionNotFoundError: unknown session
            InvalidStateError: the session is not in error
        """
        session = self._require(session_id)
        if session.status != SessionStatus.ERROR:
            raise InvalidStateError(
                f"Session {session_id} is {session.status.value}; only failed sessions can be retried"
            )
        new_id = self._launch(session.source, copy.deepcopy(session.config), retry_of=session_id)
        logger.info(f"Session {session_id} retried as {new_id}", extra={"session_id": new_id})
        return new_id

    def get_active_sessions(self) -> List[Dict[str, Any]]:
        return [session.summary() for session in self._sessions.values()]

    async def wait_for(self, session_id: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Wait until a session reaches a terminal state, then return its status."""
        self._require(session_id)
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        return self.get_status(session_id)

    def cleanup_session(self, session_id: str) -> bool:
        """Forget a session, stop its task and drop its observers."""
        session = self._sessions.pop(session_id, None)
        task = self._tasks.pop(session_id, None)
        if task is not None and not task.done():
            task.cancel()
        self.tracker.cleanup_session(session_id)
        return session is not None

    def purge_expired_sessions(self, now: Optional[float] = None) -> int:
        """Purge sessions older than the retention window, whatever their state."""
        now = self._clock() if now is None else now
        cutoff = now - self.settings.sessions.retention_seconds
        expired = [sid for sid, s in self._sessions.items() if s.start_time < cutoff]
        for sid in expired:
            self.cleanup_session(sid)
        if expired:
            logger.info(f"Purged {len(expired)} expired sessions")
        return len(expired)

    def start_reaper(self) -> asyncio.Task:
        """Start the periodic purge task (idempotent)."""
        if self._reaper is not None and not self._reaper.done():
            return self._reaper

        interval = self.settings.sessions.reaper_interval

        async def _reap():
            while True:
                await asyncio.sleep(interval)
                self.purge_expired_sessions()

        self._reaper = asyncio.get_running_loop().create_task(_reap())
        return self._reaper

    async def close(self) -> None:
        """Stop the reaper and running sessions, flush observer deliveries."""
        tasks = list(self._tasks.values())
        if self._reaper is not None:
            tasks.append(self._reaper)
            self._reaper = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.tracker.close()

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================

    def _require(self, session_id: str) -> CollectionSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _new_session_id(self) -> str:
        return f"collection_{int(self._clock() * 1000)}_{uuid.uuid4().hex[:9]}"

    def _launch(self, source: str, config: CollectionConfig, retry_of: Optional[str] = None) -> str:
        session = CollectionSession(
            session_id=self._new_session_id(),
            source=source,
            config=config,
            start_time=self._clock(),
            retry_of=retry_of,
        )
        sid = session.session_id
        self._sessions[sid] = session
        self.tracker.create_session(sid, config)
        if self.notifier is not None and self.notifier.is_configured():
            self.tracker.subscribe(sid, self.notifier)

        task = asyncio.get_running_loop().create_task(self._run(session))
        self._tasks[sid] = task
        task.add_done_callback(lambda _t, sid=sid: self._tasks.pop(sid, None))

        logger.info(f"Collection session {sid} started for {source}", extra={"session_id": sid})
        return sid

    async def _run(self, session: CollectionSession) -> None:
        """Coordinating task of one session. Never raises (except on cancel)."""
        sid = session.session_id
        session.status = SessionStatus.COLLECTING

        try:
            results = await self._collect(session)
        except asyncio.CancelledError:
            raise
        except CollectionError as e:
            await self._fail(session, e)
            return
        except Exception as e:
            logger.exception(f"Unexpected failure in session {sid}", extra={"session_id": sid})
            await self._fail(session, CollectionError(f"Internal error: {e}"))
            return

        await self._complete(session, results)

    async def _complete(self, session: CollectionSession, results: CollectionResults) -> None:
        sid = session.session_id
        session.results = results
        session.status = SessionStatus.COMPLETE
        session.end_time = self._clock()
        self.tracker.complete_collection(sid, results)

        summary = results.get_summary()
        logger.info(
            f"Collection {sid} complete: {summary['totalUnique']} unique reviews, "
            f"{summary['suspectedFakes']} suspected fakes in {session.end_time - session.start_time:.1f}s",
            extra={"session_id": sid, "event_type": "collection_complete"},
        )

        if self.result_store is not None:
            try:
                await asyncio.to_thread(self.result_store.save_results, sid, results.to_dict())
            except (TypeError, ValueError) as e:
                logger.error(f"Could not persist results of {sid}: {e}", extra={"session_id": sid})

        if self.notifier is not None:
            await asyncio.to_thread(self.notifier.notify_complete, sid, summary)

    async def _fail(self, session: CollectionSession, error: CollectionError) -> None:
        sid = session.session_id
        session.error = error
        session.status = SessionStatus.ERROR
        session.end_time = self._clock()
        logger.error(
            f"Collection {sid} failed ({error.error_type}): {error.message}",
            extra={"session_id": sid, "event_type": "collection_error"},
        )
        if self.notifier is not None:
            await asyncio.to_thread(self.notifier.notify_error, sid, error.to_dict())

    # =========================================================================
    # PHASES
    # =========================================================================

    async def _collect(self, session: CollectionSession) -> CollectionResults:
        sid = session.session_id
        config = session.config
        started = self._clock()
        total_timeout = config.timeouts.total_collection

        # Bounds harvesting only
        try:
            by_category = await asyncio.wait_for(self._harvest_phases(session), timeout=total_timeout)
        except asyncio.TimeoutError:
            raise PhaseTimeoutError(f"Harvesting exceeded total timeout of {total_timeout}s")

        # Deduplication: the metric records removed reviews
        merged = [r for phase in HARVEST_PHASES for r in by_category[phase.value]]
        self.tracker.update_progress(sid, Phase.DEDUPLICATION, 0, len(merged))
        unique, removed = deduplicate(merged)
        self.tracker.update_progress(sid, Phase.DEDUPLICATION, removed, len(merged))
        self.tracker.complete_phase(sid, Phase.DEDUPLICATION)
        logger.info(
            f"{sid}: {len(merged)} collected, {len(unique)} unique, {removed} duplicates removed",
            extra={"session_id": sid, "phase": Phase.DEDUPLICATION.value},
        )

        sampled = self.sampler.sample(unique)
        analysis = await self.analysis_engine.analyze_screened(
            sampled.reviews,
            concurrent=config.performance.analysis_concurrency > 1,
        )
        verdict = self.verdict_generator.generate(sampled.reviews, analysis, sampled, len(unique))

        return CollectionResults(
            unique_reviews=unique,
            reviews_by_category=by_category,
            sampled=sampled,
            analysis=analysis,
            verdict=verdict,
            metadata={
                "sessionId": sid,
                "totalCollected": len(merged),
                "totalUnique": len(unique),
                "duplicatesRemoved": removed,
                "collectionTime": round(self._clock() - started, 3),
                "sortingResults": {
                    phase.value: {
                        "collected": result.collected,
                        "target": result.target,
                        "stoppedReason": result.stopped_reason.value,
                    }
                    for phase, result in session.phase_results.items()
                },
                "samplingReport": generate_sampling_report(len(unique), sampled),
                "qualityFilter": analysis.quality,
            },
        )

    async def _harvest_phases(self, session: CollectionSession) -> Dict[str, List[RawReview]]:
        by_category: Dict[str, List[RawReview]] = {}
        for phase in HARVEST_PHASES:
            by_category[phase.value] = await self._run_phase(session, phase)
        return by_category

    async def _run_phase(self, session: CollectionSession, phase: Phase) -> List[RawReview]:
        """
        Harvest one phase within its timeout and retry budget.

        A failed attempt discards its partial reviews; the next attempt
        restarts the phase from scratch.
        """
        sid = session.session_id
        config = session.config
        target = config.target_counts.for_phase(phase)
        attempts = config.retry_limits.phase_attempts
        extra = {"session_id": sid, "phase": phase.value}
        phase_started = self._clock()
        last_error: Optional[CollectionError] = None

        for attempt in range(1, attempts + 1):
            collected: List[RawReview] = []
            try:
                stopped = await asyncio.wait_for(
                    self._harvest(session, phase, target, collected),
                    timeout=config.timeouts.phase,
                )
            except asyncio.TimeoutError:
                last_error = PhaseTimeoutError(
                    f"Phase '{phase.value}' timed out after {config.timeouts.phase}s"
                )
            except CollectionError as e:
                last_error = e
            except Exception as e:
                last_error = HarvestingError(f"Harvester failed during '{phase.value}': {e}")
            else:
                self.tracker.complete_phase(sid, phase)
                result = PhaseResult(
                    phase=phase,
                    collected=len(collected),
                    target=target,
                    stopped_reason=stopped,
                    attempts=attempt,
                    duration=self._clock() - phase_started,
                )
                session.phase_results[phase] = result
                logger.info(
                    f"{sid} phase {phase.value}: {result.collected}/{target} ({stopped.value})",
                    extra=extra,
                )
                return collected

            if attempt < attempts:
                delay = config.retry_limits.retry_base_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"{sid} phase {phase.value} attempt {attempt}/{attempts} failed: "
                    f"{last_error.message}; retrying in {delay:.1f}s",
                    extra={**extra, "attempt": attempt},
                )
                self.tracker.update_progress(sid, phase, 0, target)
                await self._sleep(delay)

        message = f"Phase '{phase.value}' failed after {attempts} attempts: {last_error.message}"
        if isinstance(last_error, PhaseTimeoutError):
            raise PhaseTimeoutError(message) from last_error
        if isinstance(last_error, RateLimitExceededError):
            raise RateLimitExceededError(message, attempts=attempts) from last_error
        raise HarvestingError(message) from last_error

    async def _harvest(
        self,
        session: CollectionSession,
        phase: Phase,
        target: int,
        collected: List[RawReview],
    ) -> StoppedReason:
        """Pull reviews until the target is reached or the source is exhausted."""
        sid = session.session_id
        batch_size = session.config.performance.batch_size
        self.tracker.update_progress(sid, phase, 0, target)
        if target == 0:
            return StoppedReason.TARGET_REACHED

        stream = self.harvester.harvest(session.source, PhaseDescriptor(phase.value, target))
        stopped = StoppedReason.NO_MORE_CONTENT
        try:
            async for review in stream:
                if isinstance(review, dict):
                    review = RawReview.from_dict(review)
                collected.append(review)
                if len(collected) >= target:
                    stopped = StoppedReason.TARGET_REACHED
                    break
                if len(collected) % batch_size == 0:
                    self.tracker.update_progress(sid, phase, len(collected), target)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        self.tracker.update_progress(sid, phase, len(collected), target)
        return stopped
