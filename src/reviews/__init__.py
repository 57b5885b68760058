"""
ReviewSight Review Core
=======================

Review data model, sampling/deduplication and deterministic analysis.
No external service required.

Modules:
    review_models    : Data models (RawReview, SentimentAnalysis, FakeReviewAnalysis)
    errors           : Collection & analysis error hierarchy
    sampling         : Bounded, representative sampling and deduplication
    review_signals   : Deterministic fallback heuristics, lexicons keyed by locale
    content_extractor: Pattern-based extraction from raw page text
    quality_filter   : Empty and emoji-only reviews kept out of scoring calls
    verdict          : Trust verdict, citations and transparency report
"""

from .review_models import (
    Sentiment,
    RawReview,
    SentimentAnalysis,
    FakeReviewAnalysis,
    SampledReviews,
    SamplingBreakdown,
    AnalysisResult,
    parse_review_date,
    reviews_from_dicts,
)
from .errors import (
    CollectionError,
    ValidationError,
    SessionNotFoundError,
    InvalidStateError,
    RateLimitExceededError,
    PhaseTimeoutError,
    HarvestingError,
    AnalysisError,
)
from .sampling import SamplingEngine, deduplicate, generate_sampling_report
from .review_signals import FallbackSignalAnalyzer, fallback_sentiment, fallback_fake_review
from .content_extractor import ContentBasedExtractor, ContentExtractionResult
from .quality_filter import QualityScreen, screen_for_analysis
from .verdict import TrustVerdictGenerator, TrustVerdict, VerdictReport, ReviewCitation

__all__ = [
    # Models
    "Sentiment",
    "RawReview",
    "SentimentAnalysis",
    "FakeReviewAnalysis",
    "SampledReviews",
    "SamplingBreakdown",
    "AnalysisResult",
    "parse_review_date",
    "reviews_from_dicts",
    # Errors
    "CollectionError",
    "ValidationError",
    "SessionNotFoundError",
    "InvalidStateError",
    "RateLimitExceededError",
    "PhaseTimeoutError",
    "HarvestingError",
    "AnalysisError",
    # Sampling
    "SamplingEngine",
    "deduplicate",
    "generate_sampling_report",
    # Fallback analysis
    "FallbackSignalAnalyzer",
    "fallback_sentiment",
    "fallback_fake_review",
    # Extraction
    "ContentBasedExtractor",
    "ContentExtractionResult",
    # Quality filter
    "QualityScreen",
    "screen_for_analysis",
    # Verdict
    "TrustVerdictGenerator",
    "TrustVerdict",
    "VerdictReport",
    "ReviewCitation",
]
