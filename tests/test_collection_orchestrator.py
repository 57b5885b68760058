"""
Tests for the collection orchestrator.

Tests the phase state machine end to end with in-memory harvesters:
- Full run: phases, deduplication, sampling, analysis, progress
- Source exhaustion before target
- Per-phase retry budget, session retry, invalid state
- Phase and total timeouts
- Validation, purge, notifications, result persistence
- Quality filter and trust verdict

Usage:
    pytest tests/test_collection_orchestrator.py -v
"""

import re
import json
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from src.ai.llm_client import LLMClient, LLMProvider
from src.ai.review_analyzer import BatchedAnalysisEngine
from src.data.config import (
    AnalysisConfig,
    CollectionDefaults,
    NotificationConfig,
    SessionConfig,
    Settings,
)
from src.notifications.webhook_notifier import WebhookNotifier
from src.orchestrator.collection_orchestrator import CollectionOrchestrator
from src.orchestrator.session_models import CollectionConfig, Phase, TargetCounts
from src.reviews.errors import (
    HarvestingError,
    InvalidStateError,
    SessionNotFoundError,
    ValidationError,
)
from src.reviews.review_models import RawReview


SOURCE = "https://maps.example.com/place/42"
BASE_DATE = datetime(2024, 6, 1, tzinfo=timezone.utc)


# ============================================================================
# FIXTURES
# ============================================================================

def review(review_id, rating=3, author=None, text=None, days_ago=0):
    return RawReview(
        id=review_id,
        author=author or f"Author {review_id}",
        rating=rating,
        text=text or f"Review {review_id} about the service and the food",
        date=BASE_DATE - timedelta(days=days_ago),
    )


class ListHarvester:
    """Yields canned reviews per phase; can fail the first N attempts of a phase."""

    def __init__(self, reviews_by_phase, failures=None, delay=0.0):
        self.reviews_by_phase = reviews_by_phase
        self.failures = dict(failures or {})
        self.delay = delay
        self.calls = []

    async def harvest(self, source, phase):
        self.calls.append(phase.phase)
        remaining = self.failures.get(phase.phase, 0)
        if remaining:
            self.failures[phase.phase] = remaining - 1
            raise HarvestingError(f"blocked on {phase.phase}")
        for item in self.reviews_by_phase.get(phase.phase, []):
            await asyncio.sleep(self.delay)
            yield item


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now


class SlowScoringClient(LLMClient):
    """Healthy scoring service that takes `latency` seconds per call."""
    provider = LLMProvider.ANTHROPIC

    def __init__(self, latency=0.3):
        super().__init__(api_key="test-key", model="slow")
        self.latency = latency
        self.prompts = []

    async def _complete(self, prompt, system, max_tokens, temperature):
        self.prompts.append(prompt)
        await asyncio.sleep(self.latency)
        count = int(re.search(r"Return exactly (\d+) objects", prompt).group(1))
        items = [
            {"sentiment": "positive", "confidence": 0.9, "mismatchDetected": False,
             "isFake": False, "reasons": []}
            for _ in range(count)
        ]
        return json.dumps(items), 100, 50


def make_settings(allowed_domains=None):
    return Settings(
        analysis=AnalysisConfig(provider=None, model=None, use_fallback=True),
        collection=CollectionDefaults(
            target_recent=5,
            target_worst=5,
            target_best=5,
            phase_timeout=5.0,
            total_timeout=10.0,
            phase_retries=3,
            retry_base_delay=1.0,
            batch_size=2,
            analysis_concurrency=2,
        ),
        sessions=SessionConfig(
            retention_seconds=3600.0,
            reaper_interval=300.0,
            observer_timeout=1.0,
            allowed_source_domains=list(allowed_domains or []),
        ),
        notifications=NotificationConfig(webhook_url="", enabled=False),
    )


def standard_reviews():
    """5 recent, 5 worst (2 id duplicates), 5 best (1 content duplicate)."""
    recent = [review(f"r{i}", rating=4, days_ago=i) for i in range(5)]
    worst = [recent[0], recent[1]] + [review(f"w{i}", rating=1, days_ago=10 + i) for i in range(3)]
    best = [review(f"b{i}", rating=5, days_ago=20 + i) for i in range(4)]
    best.append(review("dup-r2", rating=5, author=recent[2].author, text=recent[2].text))
    return {"recent": recent, "worst": worst, "best": best}


def make_orchestrator(harvester, **kwargs):
    kwargs.setdefault("settings", make_settings())
    kwargs.setdefault("analysis_engine", BatchedAnalysisEngine(use_fallback=True))
    kwargs.setdefault("sleep", SleepRecorder())
    return CollectionOrchestrator(harvester=harvester, **kwargs)


def run_session(orchestrator, config=None, source=SOURCE):
    async def scenario():
        sid = await orchestrator.start_collection(source, config)
        status = await orchestrator.wait_for(sid, timeout=5)
        await orchestrator.close()
        return sid, status

    return asyncio.run(scenario())


# ============================================================================
# HAPPY PATH
# ============================================================================

class TestFullCollection:

    def setup_method(self):
        self.harvester = ListHarvester(standard_reviews())
        self.orchestrator = make_orchestrator(self.harvester)

    def test_session_completes(self):
        sid, status = run_session(self.orchestrator)

        assert sid.startswith("collection_")
        assert status["status"] == "complete"
        assert status["error"] is None
        assert status["endTime"] is not None
        assert self.harvester.calls == ["recent", "worst", "best"]

    def test_phase_results(self):
        _, status = run_session(self.orchestrator)

        for phase in ("recent", "worst", "best"):
            result = status["phaseResults"][phase]
            assert result["collected"] == 5
            assert result["target"] == 5
            assert result["stoppedReason"] == "target-reached"
            assert result["attempts"] == 1

    def test_deduplication_and_summary(self):
        _, status = run_session(self.orchestrator)
        results = status["results"]
        summary = results["summary"]

        assert summary["totalCollected"] == 15
        assert summary["totalUnique"] == 12
        assert summary["duplicatesRemoved"] == 3
        assert summary["samplingUsed"] is False
        assert summary["reviewsAnalyzed"] == 12
        assert summary["fallbackOnly"] is True
        assert len(results["reviewsByCategory"]["worst"]) == 5

    def test_analysis_aligned_with_unique_reviews(self):
        _, status = run_session(self.orchestrator)
        results = status["results"]

        unique_ids = [r["id"] for r in results["uniqueReviews"]]
        assert [s["reviewId"] for s in results["sentiment"]] == unique_ids
        assert [f["reviewId"] for f in results["fakeReviews"]] == unique_ids

    def test_final_progress(self):
        _, status = run_session(self.orchestrator)
        progress = status["progress"]

        assert progress["currentPhase"] == "complete"
        assert progress["overallProgress"]["percentage"] == 100
        assert progress["overallProgress"]["reviewsCollected"] == 15
        assert progress["estimatedTimeRemaining"] == 0.0
        assert status["phaseMetrics"]["deduplication"]["reviewsCollected"] == 3
        assert status["phaseMetrics"]["recent"]["completed"] is True

    def test_metadata(self):
        sid, status = run_session(self.orchestrator)
        metadata = status["results"]["metadata"]

        assert metadata["sessionId"] == sid
        assert metadata["sortingResults"]["best"]["stoppedReason"] == "target-reached"
        assert "no sampling required" in metadata["samplingReport"]

    def test_verdict_in_results(self):
        _, status = run_session(self.orchestrator)
        results = status["results"]
        verdict = results["verdict"]

        assert 0 <= verdict["verdict"]["overallScore"] <= 100
        assert results["summary"]["overallScore"] == verdict["verdict"]["overallScore"]
        assert len(verdict["citations"]) == 12
        dates = [c["date"] for c in verdict["citations"]]
        assert dates == sorted(dates, reverse=True)
        assert verdict["transparencyReport"]["analysisBreakdown"]["totalAnalyzed"] == 12
        assert verdict["transparencyReport"]["samplingBreakdown"]["totalOriginalReviews"] == 12
        assert results["metadata"]["qualityFilter"]["skippedEmojiOnly"] == 0

    def test_progress_observer_sees_phases(self):
        seen = []

        async def scenario():
            sid = await self.orchestrator.start_collection(SOURCE)
            self.orchestrator.tracker.subscribe(sid, seen.append)
            await self.orchestrator.wait_for(sid, timeout=5)
            await self.orchestrator.close()

        asyncio.run(scenario())

        phases = [p.current_phase for p in seen]
        assert phases[0] == Phase.RECENT
        assert Phase.DEDUPLICATION in phases
        assert phases[-1] == Phase.COMPLETE
        assert phases.index(Phase.WORST) < phases.index(Phase.BEST)

    def test_config_object_is_copied(self):
        config = CollectionConfig(target_counts=TargetCounts(2, 2, 2))

        async def scenario():
            sid = await self.orchestrator.start_collection(SOURCE, config)
            config.target_counts.recent = 99
            status = await self.orchestrator.wait_for(sid, timeout=5)
            await self.orchestrator.close()
            return status

        status = asyncio.run(scenario())
        assert status["config"]["targetCounts"]["recent"] == 2
        assert status["phaseResults"]["recent"]["collected"] == 2


class TestSourceExhaustion:

    def test_no_more_content(self):
        harvester = ListHarvester({"recent": [review(f"r{i}") for i in range(3)]})
        orchestrator = make_orchestrator(harvester)

        _, status = run_session(orchestrator, {"targetCounts": {"recent": 10, "worst": 4, "best": 0}})

        assert status["status"] == "complete"
        assert status["phaseResults"]["recent"]["collected"] == 3
        assert status["phaseResults"]["recent"]["stoppedReason"] == "no-more-content"
        assert status["phaseResults"]["worst"]["collected"] == 0
        assert status["phaseResults"]["worst"]["stoppedReason"] == "no-more-content"

    def test_zero_target_phase_skipped(self):
        harvester = ListHarvester(standard_reviews())
        orchestrator = make_orchestrator(harvester)

        _, status = run_session(orchestrator, {"targetCounts": {"recent": 5, "worst": 0, "best": 0}})

        assert harvester.calls == ["recent"]
        assert status["phaseResults"]["worst"]["stoppedReason"] == "target-reached"
        assert status["results"]["summary"]["totalUnique"] == 5

    def test_dict_reviews_accepted(self):
        harvester = ListHarvester({"recent": [
            {"id": "d1", "author": "Dana", "rating": "5", "text": "Lovely", "date": "2024-05-01T10:00:00Z"},
        ]})
        orchestrator = make_orchestrator(harvester)

        _, status = run_session(orchestrator, {"targetCounts": {"recent": 1, "worst": 0, "best": 0}})

        assert status["status"] == "complete"
        assert status["results"]["uniqueReviews"][0]["rating"] == 5

    def test_large_collection_is_sampled(self):
        reviews = [review(f"r{i}", rating=(i % 5) + 1, days_ago=i) for i in range(400)]
        harvester = ListHarvester({"recent": reviews})
        orchestrator = make_orchestrator(harvester)

        _, status = run_session(orchestrator, {
            "targetCounts": {"recent": 400, "worst": 0, "best": 0},
            "performance": {"batchSize": 50},
        })

        summary = status["results"]["summary"]
        assert summary["samplingUsed"] is True
        assert summary["totalUnique"] == 400
        assert summary["reviewsAnalyzed"] <= 300
        assert "Intelligent sampling" in status["results"]["metadata"]["samplingReport"]


# ============================================================================
# FAILURES & RETRY
# ============================================================================

class TestPhaseRetry:

    def test_recovers_within_budget(self):
        harvester = ListHarvester(standard_reviews(), failures={"worst": 1})
        sleep = SleepRecorder()
        orchestrator = make_orchestrator(harvester, sleep=sleep)

        _, status = run_session(orchestrator)

        assert status["status"] == "complete"
        assert status["phaseResults"]["worst"]["attempts"] == 2
        assert sleep.delays == [1.0]

    def test_exhausted_retries_fail_session(self):
        harvester = ListHarvester(standard_reviews(), failures={"recent": 3})
        sleep = SleepRecorder()
        orchestrator = make_orchestrator(harvester, sleep=sleep)

        _, status = run_session(orchestrator)

        assert status["status"] == "error"
        assert status["error"]["type"] == "harvesting"
        assert "failed after 3 attempts" in status["error"]["message"]
        assert "blocked on recent" in status["error"]["message"]
        assert status["results"] is None
        assert harvester.calls == ["recent", "recent", "recent"]
        assert sleep.delays == [1.0, 2.0]

    def test_unexpected_harvester_error_is_wrapped(self):
        class BrokenHarvester:
            async def harvest(self, source, phase):
                raise KeyError("selector")
                yield

        orchestrator = make_orchestrator(BrokenHarvester())
        _, status = run_session(orchestrator, {"retryLimits": {"phaseAttempts": 1}})

        assert status["status"] == "error"
        assert status["error"]["type"] == "harvesting"

    def test_retry_creates_new_session(self):
        harvester = ListHarvester(standard_reviews(), failures={"recent": 3})
        orchestrator = make_orchestrator(harvester)

        async def scenario():
            sid = await orchestrator.start_collection(SOURCE)
            first = await orchestrator.wait_for(sid, timeout=5)
            new_sid = await orchestrator.retry(sid)
            second = await orchestrator.wait_for(new_sid, timeout=5)
            old = orchestrator.get_status(sid)
            await orchestrator.close()
            return sid, new_sid, first, second, old

        sid, new_sid, first, second, old = asyncio.run(scenario())

        assert first["status"] == "error"
        assert new_sid != sid
        assert second["status"] == "complete"
        assert second["retryOf"] == sid
        assert second["config"] == first["config"]
        assert old["status"] == "error"

    def test_retry_requires_error_state(self):
        orchestrator = make_orchestrator(ListHarvester(standard_reviews()))

        async def scenario():
            sid = await orchestrator.start_collection(SOURCE)
            await orchestrator.wait_for(sid, timeout=5)
            try:
                with pytest.raises(InvalidStateError):
                    await orchestrator.retry(sid)
                with pytest.raises(SessionNotFoundError):
                    await orchestrator.retry("collection_unknown")
            finally:
                await orchestrator.close()

        asyncio.run(scenario())


class TestTimeouts:

    def test_phase_timeout(self):
        harvester = ListHarvester(standard_reviews(), delay=1.0)
        orchestrator = make_orchestrator(harvester)

        _, status = run_session(orchestrator, {
            "timeouts": {"phase": 0.05},
            "retryLimits": {"phaseAttempts": 1},
        })

        assert status["status"] == "error"
        assert status["error"]["type"] == "timeout"
        assert "timed out" in status["error"]["message"]

    def test_total_timeout(self):
        harvester = ListHarvester(standard_reviews(), delay=1.0)
        orchestrator = make_orchestrator(harvester)

        _, status = run_session(orchestrator, {
            "timeouts": {"phase": 10, "totalCollection": 0.05},
        })

        assert status["status"] == "error"
        assert status["error"]["type"] == "timeout"
        assert "total timeout" in status["error"]["message"]

    def test_total_timeout_bounds_harvesting_only(self):
        client = SlowScoringClient(latency=0.3)
        engine = BatchedAnalysisEngine(llm_client=client, sleep=SleepRecorder())
        orchestrator = make_orchestrator(ListHarvester(standard_reviews()), analysis_engine=engine)

        _, status = run_session(orchestrator, {"timeouts": {"totalCollection": 0.2}})

        assert status["status"] == "complete"
        assert status["error"] is None
        assert status["results"]["summary"]["fallbackOnly"] is False
        assert status["results"]["summary"]["reviewsAnalyzed"] == 12
        assert client.prompts


class TestAnalysisFailure:

    def test_rate_limit_exhaustion_fails_session(self):
        class RateLimitError(Exception):
            status_code = 429

        class AlwaysLimited(LLMClient):
            provider = LLMProvider.ANTHROPIC

            async def _complete(self, prompt, system, max_tokens, temperature):
                raise RateLimitError("429")

        engine = BatchedAnalysisEngine(
            llm_client=AlwaysLimited(api_key="test-key", model="limited"),
            sleep=SleepRecorder(),
            jitter=lambda: 0.0,
        )
        orchestrator = make_orchestrator(ListHarvester(standard_reviews()), analysis_engine=engine)

        _, status = run_session(orchestrator)

        assert status["status"] == "error"
        assert status["error"]["type"] == "rate_limit"


class TestQualityFilter:

    def test_emoji_only_reviews_skip_scoring_but_keep_verdicts(self):
        reviews = {"recent": [
            review("r1", rating=5, text="Great pasta and friendly staff"),
            review("r2", rating=5, text="\U0001F44D\U0001F44D", days_ago=1),
            review("r3", rating=2, text="Slow service, cold food", days_ago=2),
        ]}
        client = SlowScoringClient(latency=0.0)
        engine = BatchedAnalysisEngine(llm_client=client, sleep=SleepRecorder())
        orchestrator = make_orchestrator(ListHarvester(reviews), analysis_engine=engine)

        _, status = run_session(orchestrator, {"targetCounts": {"recent": 3, "worst": 0, "best": 0}})
        results = status["results"]

        assert status["status"] == "complete"
        assert [s["reviewId"] for s in results["sentiment"]] == ["r1", "r2", "r3"]
        assert [f["reviewId"] for f in results["fakeReviews"]] == ["r1", "r2", "r3"]
        assert all("r2|" not in prompt for prompt in client.prompts)
        assert results["metadata"]["qualityFilter"] == {
            "total": 3, "analyzable": 2, "skippedEmpty": 0, "skippedEmojiOnly": 1,
        }
        assert len(results["verdict"]["citations"]) == 3


# ============================================================================
# VALIDATION & REGISTRY
# ============================================================================

class TestValidation:

    def setup_method(self):
        self.orchestrator = make_orchestrator(ListHarvester(standard_reviews()))

    def test_invalid_source(self):
        with pytest.raises(ValidationError):
            asyncio.run(self.orchestrator.start_collection("not a url"))
        assert self.orchestrator.get_active_sessions() == []

    def test_invalid_config(self):
        with pytest.raises(ValidationError):
            asyncio.run(self.orchestrator.start_collection(SOURCE, {"targetCounts": {"recent": -1}}))
        assert self.orchestrator.get_active_sessions() == []

    def test_disallowed_domain(self):
        orchestrator = make_orchestrator(
            ListHarvester(standard_reviews()),
            settings=make_settings(allowed_domains=["example.com"]),
        )
        with pytest.raises(ValidationError):
            asyncio.run(orchestrator.start_collection("https://evil.org/place/1"))

    def test_unknown_session(self):
        with pytest.raises(SessionNotFoundError):
            self.orchestrator.get_status("collection_missing")

    def test_default_config(self):
        config = self.orchestrator.get_default_config()
        assert config.target_counts.total == 15
        assert config.retry_limits.phase_attempts == 3


class TestSessionRegistry:

    def setup_method(self):
        self.clock = FakeClock()
        self.orchestrator = make_orchestrator(ListHarvester(standard_reviews()), clock=self.clock)

    def test_active_sessions_listed(self):
        sid, _ = run_session(self.orchestrator)
        sessions = self.orchestrator.get_active_sessions()
        assert [s["id"] for s in sessions] == [sid]
        assert sessions[0]["status"] == "complete"
        assert sessions[0]["source"] == SOURCE

    def test_purge_after_retention(self):
        sid, _ = run_session(self.orchestrator)

        assert self.orchestrator.purge_expired_sessions(now=self.clock.now + 3599) == 0
        assert self.orchestrator.get_status(sid)["status"] == "complete"

        assert self.orchestrator.purge_expired_sessions(now=self.clock.now + 3601) == 1
        with pytest.raises(SessionNotFoundError):
            self.orchestrator.get_status(sid)
        assert self.orchestrator.tracker.get_progress(sid) is None

    def test_purge_cancels_running_session(self):
        orchestrator = make_orchestrator(
            ListHarvester(standard_reviews(), delay=1.0), clock=self.clock,
        )

        async def scenario():
            sid = await orchestrator.start_collection(SOURCE)
            await asyncio.sleep(0.01)
            purged = orchestrator.purge_expired_sessions(now=self.clock.now + 7200)
            await orchestrator.close()
            return sid, purged

        sid, purged = asyncio.run(scenario())
        assert purged == 1
        assert orchestrator.get_active_sessions() == []

    def test_reaper_started_once(self):
        async def scenario():
            first = self.orchestrator.start_reaper()
            second = self.orchestrator.start_reaper()
            same = first is second
            await self.orchestrator.close()
            return same, first

        same, task = asyncio.run(scenario())
        assert same is True
        assert task.cancelled()


# ============================================================================
# SINKS
# ============================================================================

class TestSinks:

    def test_notifier_called_on_completion(self):
        notifier = MagicMock()
        notifier.is_configured.return_value = False
        orchestrator = make_orchestrator(ListHarvester(standard_reviews()), notifier=notifier)

        sid, _ = run_session(orchestrator)

        notifier.notify_complete.assert_called_once()
        assert notifier.notify_complete.call_args[0][0] == sid
        notifier.notify_error.assert_not_called()

    def test_notifier_called_on_error(self):
        notifier = MagicMock()
        notifier.is_configured.return_value = False
        orchestrator = make_orchestrator(
            ListHarvester(standard_reviews(), failures={"recent": 3}), notifier=notifier,
        )

        sid, _ = run_session(orchestrator)

        notifier.notify_error.assert_called_once()
        called_sid, error = notifier.notify_error.call_args[0]
        assert called_sid == sid
        assert error["type"] == "harvesting"

    def test_webhook_receives_progress_and_completion(self):
        notifier = WebhookNotifier(webhook_url="https://hooks.example.com/reviews", enabled=True)
        orchestrator = make_orchestrator(ListHarvester(standard_reviews()), notifier=notifier)

        with patch("src.notifications.webhook_notifier.requests.post") as mock_post:
            run_session(orchestrator)

        event_types = [c.kwargs["json"]["type"] for c in mock_post.call_args_list]
        assert "collection_progress" in event_types
        assert "collection_complete" in event_types

    def test_results_persisted(self):
        store = MagicMock()
        orchestrator = make_orchestrator(ListHarvester(standard_reviews()), result_store=store)

        sid, _ = run_session(orchestrator)

        store.save_results.assert_called_once()
        saved_sid, payload = store.save_results.call_args[0]
        assert saved_sid == sid
        assert payload["summary"]["totalUnique"] == 12
