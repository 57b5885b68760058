"""
Review Data Models
==================

Structured inputs and outputs of the review pipeline.

RawReview is what a harvester yields; SentimentAnalysis and
FakeReviewAnalysis are always the 1:1 output of analyzing exactly
one RawReview (they carry its id as review_id).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Any, Optional


class Sentiment(str, Enum):
    """Sentiment polarity of a review."""
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


def parse_review_date(value: Any) -> datetime:
    """Coerce a date value (datetime, ISO string, epoch seconds) to an aware datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValueError(f"Unparseable review date: {value!r}")
    else:
        raise ValueError(f"Missing or invalid review date: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class RawReview:
    """A harvested review. Immutable once ingested."""
    id: str
    author: str
    rating: int                 # 1..5
    text: str
    date: datetime
    original_url: str = ""

    def __post_init__(self):
        if not self.id:
            raise ValueError("review id is required")
        if isinstance(self.rating, bool) or not isinstance(self.rating, int):
            raise ValueError(f"rating must be an integer, got {self.rating!r}")
        if not 1 <= self.rating <= 5:
            raise ValueError(f"rating must be in [1, 5], got {self.rating}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawReview":
        """Build a review from a loosely-shaped dict (camelCase or snake_case)."""
        rating = data.get("rating")
        if isinstance(rating, float) and rating.is_integer():
            rating = int(rating)
        elif isinstance(rating, str) and rating.strip().isdigit():
            rating = int(rating.strip())

        return cls(
            id=str(data.get("id") or data.get("review_id") or ""),
            author=str(data.get("author") or "Anonymous"),
            rating=rating,
            text=str(data.get("text") or ""),
            date=parse_review_date(data.get("date")),
            original_url=str(data.get("originalUrl") or data.get("original_url") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author": self.author,
            "rating": self.rating,
            "text": self.text,
            "date": self.date.isoformat(),
            "originalUrl": self.original_url,
        }


@dataclass
class SentimentAnalysis:
    """Sentiment verdict for one review."""
    review_id: str
    sentiment: Sentiment
    confidence: float           # 0.0 to 1.0
    mismatch_detected: bool     # rating disagrees with the text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reviewId": self.review_id,
            "sentiment": self.sentiment.value,
            "confidence": self.confidence,
            "mismatchDetected": self.mismatch_detected,
        }


@dataclass
class FakeReviewAnalysis:
    """Fake-review verdict for one review."""
    review_id: str
    is_fake: bool
    confidence: float           # 0.0 to 1.0
    reasons: List[str] = field(default_factory=list)   # max 5 short strings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reviewId": self.review_id,
            "isFake": self.is_fake,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
        }


@dataclass
class SamplingBreakdown:
    """Bucket sizes of a sampling pass."""
    recent: int = 0
    fivestar: int = 0
    onestar: int = 0

    @property
    def total(self) -> int:
        return self.recent + self.fivestar + self.onestar


@dataclass
class SampledReviews:
    """Bounded, duplicate-free subset of a review set."""
    reviews: List[RawReview]
    breakdown: SamplingBreakdown
    sampling_used: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reviews": [r.to_dict() for r in self.reviews],
            "breakdown": {
                "recent": self.breakdown.recent,
                "fivestar": self.breakdown.fivestar,
                "onestar": self.breakdown.onestar,
            },
            "samplingUsed": self.sampling_used,
        }


@dataclass
class AnalysisResult:
    """Output of both analysis pipelines over one review set."""
    sentiment: List[SentimentAnalysis] = field(default_factory=list)
    fake_reviews: List[FakeReviewAnalysis] = field(default_factory=list)
    fallback_only: bool = False
    quality: Optional[Dict[str, int]] = None

    @classmethod
    def combine(cls, parts: List["AnalysisResult"], order: List[RawReview]) -> "AnalysisResult":
        """Merge partial results back into the order of `order`."""
        sentiment = {s.review_id: s for part in parts for s in part.sentiment}
        fakes = {f.review_id: f for part in parts for f in part.fake_reviews}
        return cls(
            sentiment=[sentiment[r.id] for r in order if r.id in sentiment],
            fake_reviews=[fakes[r.id] for r in order if r.id in fakes],
            fallback_only=all(p.fallback_only for p in parts) if parts else False,
        )

    @property
    def mismatch_count(self) -> int:
        return sum(1 for s in self.sentiment if s.mismatch_detected)

    @property
    def fake_count(self) -> int:
        return sum(1 for f in self.fake_reviews if f.is_fake)

    def get_summary(self) -> Dict[str, Any]:
        counts = {s.value: 0 for s in Sentiment}
        for item in self.sentiment:
            counts[item.sentiment.value] += 1
        return {
            "reviewsAnalyzed": len(self.sentiment),
            "sentimentDistribution": counts,
            "mismatches": self.mismatch_count,
            "suspectedFakes": self.fake_count,
            "fallbackOnly": self.fallback_only,
            "qualityFilter": self.quality,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sentiment": [s.to_dict() for s in self.sentiment],
            "fakeReviews": [f.to_dict() for f in self.fake_reviews],
            "summary": self.get_summary(),
        }


def reviews_from_dicts(items: List[Dict[str, Any]]) -> List[RawReview]:
    """Parse a list of dicts, raising on the first invalid item."""
    return [RawReview.from_dict(item) for item in items]
