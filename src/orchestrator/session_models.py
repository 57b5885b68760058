"""
Collection Session Models
=========================

Session state machine types, per-request collection config and the
progress/result payloads exposed to callers.

    pending -> collecting{recent -> worst -> best -> deduplication} -> complete
    any state -> error

complete and error are terminal.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import pydantic
from pydantic import BaseModel, Field

from ..data.config import get_settings, CollectionDefaults
from ..reviews.errors import CollectionError, ValidationError
from ..reviews.review_models import AnalysisResult, RawReview, SampledReviews
from ..reviews.verdict import VerdictReport


class Phase(str, Enum):
    """Named stages of a collection session."""
    RECENT = "recent"
    WORST = "worst"
    BEST = "best"
    DEDUPLICATION = "deduplication"
    COMPLETE = "complete"


HARVEST_PHASES = (Phase.RECENT, Phase.WORST, Phase.BEST)


class SessionStatus(str, Enum):
    """Collection session status."""
    PENDING = "pending"
    COLLECTING = "collecting"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETE, SessionStatus.ERROR)


class StoppedReason(str, Enum):
    """Why a harvesting phase ended."""
    TARGET_REACHED = "target-reached"
    NO_MORE_CONTENT = "no-more-content"


def to_iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


# =============================================================================
# REQUEST PAYLOAD
# =============================================================================

class TargetCountsRequest(BaseModel):
    """Per-phase review targets."""
    recent: int = Field(default=100, ge=0)
    worst: int = Field(default=100, ge=0)
    best: int = Field(default=100, ge=0)


class TimeoutsRequest(BaseModel):
    """Timeouts in seconds."""
    phase: float = Field(default=120.0, gt=0)
    totalCollection: float = Field(default=300.0, gt=0, alias="total_collection")

    class Config:
        populate_by_name = True


class RetryLimitsRequest(BaseModel):
    """Harvesting retry budget."""
    phaseAttempts: int = Field(default=3, ge=1, alias="phase_attempts")
    retryBaseDelay: float = Field(default=1.0, ge=0, alias="retry_base_delay")

    class Config:
        populate_by_name = True


class PerformanceRequest(BaseModel):
    """Performance knobs."""
    batchSize: int = Field(default=20, ge=1, alias="batch_size")
    analysisConcurrency: int = Field(default=2, ge=1, le=2, alias="analysis_concurrency")

    class Config:
        populate_by_name = True


class CollectionConfigRequest(BaseModel):
    """
    Partial collection config supplied by a caller.

    Keys are accepted in camelCase or snake_case; only the keys actually
    sent override the defaults.
    """
    targetCounts: TargetCountsRequest = Field(default_factory=TargetCountsRequest, alias="target_counts")
    timeouts: TimeoutsRequest = Field(default_factory=TimeoutsRequest)
    retryLimits: RetryLimitsRequest = Field(default_factory=RetryLimitsRequest, alias="retry_limits")
    performance: PerformanceRequest = Field(default_factory=PerformanceRequest)

    class Config:
        populate_by_name = True


def parse_config_request(payload: Any) -> CollectionConfigRequest:
    """
    Raises:
        ValidationError: payload does not match CollectionConfigRequest
    """
    try:
        return CollectionConfigRequest.model_validate(payload)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid collection config: {problems}")


def _overrides(request: BaseModel) -> Dict[str, Any]:
    # Aliases are the dataclass field names
    return request.model_dump(by_alias=True, exclude_unset=True)


# =============================================================================
# COLLECTION CONFIG
# =============================================================================

@dataclass
class TargetCounts:
    recent: int = 100
    worst: int = 100
    best: int = 100

    @property
    def total(self) -> int:
        return self.recent + self.worst + self.best

    def for_phase(self, phase: Phase) -> int:
        return getattr(self, phase.value)


@dataclass
class Timeouts:
    phase: float = 120.0            # per harvesting phase, seconds
    total_collection: float = 300.0


@dataclass
class RetryLimits:
    phase_attempts: int = 3
    retry_base_delay: float = 1.0   # doubled after each failed attempt


@dataclass
class PerformanceConfig:
    batch_size: int = 20            # progress report every N harvested reviews
    analysis_concurrency: int = 2   # 2 = sentiment and fake pipelines in parallel


@dataclass
class CollectionConfig:
    """Per-session collection parameters."""
    target_counts: TargetCounts = field(default_factory=TargetCounts)
    timeouts: Timeouts = field(default_factory=Timeouts)
    retry_limits: RetryLimits = field(default_factory=RetryLimits)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)

    @classmethod
    def from_defaults(cls, defaults: Optional[CollectionDefaults] = None) -> "CollectionConfig":
        d = defaults or get_settings().collection
        return cls(
            target_counts=TargetCounts(d.target_recent, d.target_worst, d.target_best),
            timeouts=Timeouts(d.phase_timeout, d.total_timeout),
            retry_limits=RetryLimits(d.phase_retries, d.retry_base_delay),
            performance=PerformanceConfig(d.batch_size, d.analysis_concurrency),
        )

    @classmethod
    def from_dict(
        cls,
        overrides: Optional[Dict[str, Any]] = None,
        base: Optional["CollectionConfig"] = None,
    ) -> "CollectionConfig":
        """
        Deep-merge a partial request config onto the defaults.

            {"targetCounts": {"recent": 50}, "timeouts": {"totalCollection": 60}}

        Raises:
            ValidationError: on malformed or out-of-range values
        """
        base = base or cls.from_defaults()
        request = parse_config_request({} if overrides is None else overrides)

        config = cls(
            target_counts=replace(base.target_counts, **_overrides(request.targetCounts)),
            timeouts=replace(base.timeouts, **_overrides(request.timeouts)),
            retry_limits=replace(base.retry_limits, **_overrides(request.retryLimits)),
            performance=replace(base.performance, **_overrides(request.performance)),
        )
        config.validate()
        return config

    def validate(self) -> None:
        parse_config_request(self.to_dict())
        if self.target_counts.total == 0:
            raise ValidationError("at least one phase target must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targetCounts": {
                "recent": self.target_counts.recent,
                "worst": self.target_counts.worst,
                "best": self.target_counts.best,
            },
            "timeouts": {
                "phase": self.timeouts.phase,
                "totalCollection": self.timeouts.total_collection,
            },
            "retryLimits": {
                "phaseAttempts": self.retry_limits.phase_attempts,
                "retryBaseDelay": self.retry_limits.retry_base_delay,
            },
            "performance": {
                "batchSize": self.performance.batch_size,
                "analysisConcurrency": self.performance.analysis_concurrency,
            },
        }


# =============================================================================
# PROGRESS
# =============================================================================

@dataclass
class PhaseMetric:
    """Per-phase counters. completed=True is one-way."""
    phase: Phase
    start_time: float
    target: int = 0
    reviews_collected: int = 0
    end_time: Optional[float] = None
    completed: bool = False

    def duration(self, now: float) -> float:
        return max(0.0, (self.end_time if self.end_time is not None else now) - self.start_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "startTime": to_iso(self.start_time),
            "endTime": to_iso(self.end_time),
            "reviewsCollected": self.reviews_collected,
            "target": self.target,
            "completed": self.completed,
        }


@dataclass(frozen=True)
class PhaseProgress:
    current: int
    target: int
    percentage: int


@dataclass(frozen=True)
class OverallProgress:
    reviews_collected: int
    total_target: int
    percentage: int


@dataclass(frozen=True)
class CollectionProgress:
    """Derived progress snapshot, rebuilt on every update."""
    session_id: str
    current_phase: Phase
    phase_progress: PhaseProgress
    overall_progress: OverallProgress
    time_elapsed: float             # seconds
    estimated_time_remaining: float  # seconds, >= 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "currentPhase": self.current_phase.value,
            "phaseProgress": {
                "current": self.phase_progress.current,
                "target": self.phase_progress.target,
                "percentage": self.phase_progress.percentage,
            },
            "overallProgress": {
                "reviewsCollected": self.overall_progress.reviews_collected,
                "totalTarget": self.overall_progress.total_target,
                "percentage": self.overall_progress.percentage,
            },
            "timeElapsed": round(self.time_elapsed, 3),
            "estimatedTimeRemaining": round(self.estimated_time_remaining, 3),
        }


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class PhaseResult:
    """Outcome of one harvesting phase."""
    phase: Phase
    collected: int
    target: int
    stopped_reason: StoppedReason
    attempts: int
    duration: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "collected": self.collected,
            "target": self.target,
            "stoppedReason": self.stopped_reason.value,
            "attempts": self.attempts,
            "duration": round(self.duration, 3),
        }


@dataclass
class CollectionResults:
    """Merged, deduplicated, sampled and analyzed output of a session."""
    unique_reviews: List[RawReview]
    reviews_by_category: Dict[str, List[RawReview]]
    sampled: SampledReviews
    analysis: AnalysisResult
    verdict: Optional[VerdictReport] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def get_summary(self) -> Dict[str, Any]:
        return {
            "totalCollected": self.metadata.get("totalCollected", 0),
            "totalUnique": len(self.unique_reviews),
            "duplicatesRemoved": self.metadata.get("duplicatesRemoved", 0),
            "samplingUsed": self.sampled.sampling_used,
            **self.analysis.get_summary(),
            **(self.verdict.verdict.to_dict() if self.verdict else {}),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uniqueReviews": [r.to_dict() for r in self.unique_reviews],
            "reviewsByCategory": {
                category: [r.to_dict() for r in reviews]
                for category, reviews in self.reviews_by_category.items()
            },
            "sampled": self.sampled.to_dict(),
            "sentiment": [s.to_dict() for s in self.analysis.sentiment],
            "fakeReviews": [f.to_dict() for f in self.analysis.fake_reviews],
            "verdict": self.verdict.to_dict() if self.verdict else None,
            "summary": self.get_summary(),
            "metadata": dict(self.metadata),
        }


# =============================================================================
# SESSION
# =============================================================================

@dataclass
class CollectionSession:
    """
    One collection run. Mutated only by its coordinating task;
    callers only ever see snapshot() dicts.
    """
    session_id: str
    source: str
    config: CollectionConfig
    start_time: float
    status: SessionStatus = SessionStatus.PENDING
    end_time: Optional[float] = None
    phase_results: Dict[Phase, PhaseResult] = field(default_factory=dict)
    results: Optional[CollectionResults] = None
    error: Optional[CollectionError] = None
    retry_of: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.session_id,
            "source": self.source,
            "status": self.status.value,
            "startTime": to_iso(self.start_time),
            "endTime": to_iso(self.end_time),
            "error": self.error.message if self.error else None,
        }

    def snapshot(
        self,
        progress: Optional[CollectionProgress] = None,
        phase_metrics: Optional[Dict[Phase, PhaseMetric]] = None,
    ) -> Dict[str, Any]:
        """Read-only view of the session, safe to hand to callers."""
        return {
            "sessionId": self.session_id,
            "source": self.source,
            "status": self.status.value,
            "startTime": to_iso(self.start_time),
            "endTime": to_iso(self.end_time),
            "config": self.config.to_dict(),
            "progress": progress.to_dict() if progress else None,
            "phaseMetrics": {
                phase.value: metric.to_dict()
                for phase, metric in (phase_metrics or {}).items()
            },
            "phaseResults": {
                phase.value: result.to_dict()
                for phase, result in self.phase_results.items()
            },
            "results": self.results.to_dict() if self.results else None,
            "error": self.error.to_dict() if self.error else None,
            "retryOf": self.retry_of,
        }
