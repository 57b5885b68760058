"""
Trust Verdict
=============

Turns per-review analysis into the verdict shown to users:

- Scores are computed on authentic reviews only (suspected fakes removed)
- Every analyzed review, fakes included, is cited with its verdicts
- A transparency report explains sampling and analysis coverage

Scores (0-100):
    overall_score   = average authentic rating / 5
    trustworthiness = share of authentic reviews whose text matches their rating
    red_flags       = mismatch ratio + extreme rating share + low confidence
                      + fake ratio + sanitation hazard mentions

Usage:
    report = TrustVerdictGenerator().generate(sampled.reviews, analysis, sampled, len(unique))
"""

import re
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .review_models import (
    AnalysisResult,
    FakeReviewAnalysis,
    RawReview,
    SampledReviews,
    SentimentAnalysis,
)
from .sampling import generate_sampling_report

logger = logging.getLogger(__name__)


# Matched as whole words, so "rat" does not fire on "great"
SANITATION_HAZARD_KEYWORDS = (
    "cockroach", "cockroaches", "roach", "roaches",
    "rodent", "rodents", "rat", "rats", "mouse", "mice",
    "insect", "insects", "bug", "bugs", "maggot", "maggots",
    "mold", "mould", "mildew",
    "filthy", "filth", "dirty restroom", "dirty bathroom", "dirty toilet",
    "unsanitary", "unsanitary conditions",
    "hygiene", "sanitation", "infestation", "infested",
    "food poisoning", "vomit", "vomiting", "diarrhea", "diarrhoea", "nausea",
    "undercooked", "raw chicken", "raw meat", "hair in food", "sewage",
)


def _ratio(part: int, whole: int) -> float:
    return part / whole if whole else 0.0


def _clamp(score: float) -> int:
    return int(max(0, min(100, score)))


# =============================================================================
# OUTPUT MODELS
# =============================================================================

@dataclass
class TrustVerdict:
    overall_score: int
    trustworthiness: int
    red_flags: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overallScore": self.overall_score,
            "trustworthiness": self.trustworthiness,
            "redFlags": self.red_flags,
        }


@dataclass
class AnalysisMetrics:
    fake_review_ratio: float
    sentiment_mismatch_ratio: float
    confidence_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fakeReviewRatio": self.fake_review_ratio,
            "sentimentMismatchRatio": self.sentiment_mismatch_ratio,
            "confidenceScore": self.confidence_score,
        }


@dataclass
class ReviewCitation:
    """A review quoted alongside both of its verdicts."""
    review: RawReview
    sentiment: SentimentAnalysis
    fake_analysis: FakeReviewAnalysis

    def to_dict(self) -> Dict[str, Any]:
        sentiment = self.sentiment.to_dict()
        sentiment["confidence"] = round(self.sentiment.confidence, 2)
        fake = self.fake_analysis.to_dict()
        fake["confidence"] = round(self.fake_analysis.confidence, 2)
        fake["reasons"] = [r.strip() for r in self.fake_analysis.reasons if r.strip()]
        return {
            "reviewId": self.review.id,
            "author": self.review.author,
            "rating": self.review.rating,
            "text": self.review.text,
            "date": self.review.date.isoformat(),
            "originalUrl": self.review.original_url,
            "sentiment": sentiment,
            "fakeAnalysis": fake,
        }


@dataclass
class VerdictReport:
    """Verdict, metrics, citations and transparency report of one analysis."""
    verdict: TrustVerdict
    metrics: AnalysisMetrics
    citations: List[ReviewCitation]
    sampling: Dict[str, Any]
    transparency_report: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict.to_dict(),
            "sampling": dict(self.sampling),
            "analysis": self.metrics.to_dict(),
            "citations": [c.to_dict() for c in self.citations],
            "transparencyReport": self.transparency_report,
        }


# =============================================================================
# GENERATOR
# =============================================================================

class TrustVerdictGenerator:
    """
    Builds a VerdictReport from analyzed reviews.

    Suspected fakes never weigh on the scores, but they stay in the
    citations and in the fake ratio so users can see what was discarded.
    """

    def __init__(self, hazard_keywords: Sequence[str] = SANITATION_HAZARD_KEYWORDS):
        self.hazard_patterns = [
            re.compile(rf"\b{re.escape(k.lower())}\b") for k in hazard_keywords
        ]

    def generate(
        self,
        reviews: Sequence[RawReview],
        analysis: AnalysisResult,
        sampled: SampledReviews,
        original_count: int,
    ) -> VerdictReport:
        fake_ids = {f.review_id for f in analysis.fake_reviews if f.is_fake}
        authentic = [r for r in reviews if r.id not in fake_ids]
        authentic_sentiment = [s for s in analysis.sentiment if s.review_id not in fake_ids]

        verdict = self.calculate_verdict(authentic, authentic_sentiment, len(fake_ids))
        metrics = self.calculate_metrics(analysis.sentiment, analysis.fake_reviews)
        citations = self.generate_citations(reviews, analysis.sentiment, analysis.fake_reviews)

        logger.info(
            f"Verdict: score={verdict.overall_score} trust={verdict.trustworthiness} "
            f"red_flags={verdict.red_flags} ({len(authentic)} authentic, {len(fake_ids)} suspected fakes)"
        )

        return VerdictReport(
            verdict=verdict,
            metrics=metrics,
            citations=citations,
            sampling={
                "totalReviews": len(sampled.reviews),
                "samplingUsed": sampled.sampling_used,
                "sampleBreakdown": sampled.to_dict()["breakdown"] if sampled.sampling_used else None,
            },
            transparency_report=self.generate_transparency_report(
                original_count, sampled, analysis.sentiment, analysis.fake_reviews
            ),
        )

    # =========================================================================
    # SCORES
    # =========================================================================

    def calculate_verdict(
        self,
        authentic: Sequence[RawReview],
        authentic_sentiment: Sequence[SentimentAnalysis],
        suspected_fakes: int,
    ) -> TrustVerdict:
        """No authentic review left means nothing can be trusted: 0 / 0 / 100."""
        if not authentic:
            return TrustVerdict(overall_score=0, trustworthiness=0, red_flags=100)

        average_rating = sum(r.rating for r in authentic) / len(authentic)
        mismatches = sum(1 for s in authentic_sentiment if s.mismatch_detected)
        mismatch_ratio = _ratio(mismatches, len(authentic_sentiment))

        return TrustVerdict(
            overall_score=_clamp(round(average_rating / 5 * 100)),
            trustworthiness=_clamp(round((1 - mismatch_ratio) * 100)),
            red_flags=_clamp(self.calculate_red_flags(
                authentic, authentic_sentiment, mismatch_ratio, suspected_fakes
            )),
        )

    def calculate_red_flags(
        self,
        authentic: Sequence[RawReview],
        authentic_sentiment: Sequence[SentimentAnalysis],
        mismatch_ratio: float,
        suspected_fakes: int,
    ) -> int:
        score = 0

        if mismatch_ratio > 0.22:
            score += 30
        elif mismatch_ratio > 0.10:
            score += 15

        extremes = _ratio(sum(1 for r in authentic if r.rating in (1, 5)), len(authentic))
        if extremes > 0.8:
            score += 30
        elif extremes > 0.6:
            score += 15

        if authentic_sentiment:
            avg_confidence = sum(s.confidence for s in authentic_sentiment) / len(authentic_sentiment)
            if avg_confidence < 0.5:
                score += 20
            elif avg_confidence < 0.6:
                score += 10

        fake_ratio = _ratio(suspected_fakes, len(authentic) + suspected_fakes)
        if fake_ratio > 0.3:
            score += 35
        elif fake_ratio > 0.15:
            score += 20

        hits = self.count_hazard_keywords(authentic)
        if hits:
            score += min(20, 5 + hits * 2)

        return min(100, score)

    def count_hazard_keywords(self, reviews: Sequence[RawReview]) -> int:
        """Distinct hazard keywords mentioned anywhere in the reviews."""
        corpus = "\n".join((r.text or "").lower() for r in reviews)
        return sum(1 for pattern in self.hazard_patterns if pattern.search(corpus))

    def calculate_metrics(
        self,
        sentiment: Sequence[SentimentAnalysis],
        fake_reviews: Sequence[FakeReviewAnalysis],
    ) -> AnalysisMetrics:
        total = len(sentiment)
        if not total:
            return AnalysisMetrics(0.0, 0.0, 0.0)

        fakes = sum(1 for f in fake_reviews if f.is_fake)
        mismatches = sum(1 for s in sentiment if s.mismatch_detected)
        sentiment_confidence = sum(s.confidence for s in sentiment) / total
        fake_confidence = sum(f.confidence for f in fake_reviews) / total

        return AnalysisMetrics(
            fake_review_ratio=round(fakes / total, 2),
            sentiment_mismatch_ratio=round(mismatches / total, 2),
            confidence_score=round((sentiment_confidence + fake_confidence) / 2, 2),
        )

    # =========================================================================
    # CITATIONS & TRANSPARENCY
    # =========================================================================

    def generate_citations(
        self,
        reviews: Sequence[RawReview],
        sentiment: Sequence[SentimentAnalysis],
        fake_reviews: Sequence[FakeReviewAnalysis],
    ) -> List[ReviewCitation]:
        """One citation per review having both verdicts, newest first."""
        sentiment_by_id = {s.review_id: s for s in sentiment}
        fake_by_id = {f.review_id: f for f in fake_reviews}

        citations = []
        for review in reviews:
            review_sentiment: Optional[SentimentAnalysis] = sentiment_by_id.get(review.id)
            review_fake: Optional[FakeReviewAnalysis] = fake_by_id.get(review.id)
            if review_sentiment is None or review_fake is None:
                logger.warning(
                    f"Review {review.id} not cited: missing "
                    f"{'sentiment' if review_sentiment is None else 'fake-review'} verdict"
                )
                continue
            citations.append(ReviewCitation(review, review_sentiment, review_fake))

        citations.sort(key=lambda c: c.review.date, reverse=True)
        return citations

    def generate_transparency_report(
        self,
        original_count: int,
        sampled: SampledReviews,
        sentiment: Sequence[SentimentAnalysis],
        fake_reviews: Sequence[FakeReviewAnalysis],
    ) -> Dict[str, Any]:
        total = len(sentiment)
        fakes = sum(1 for f in fake_reviews if f.is_fake)
        mismatches = sum(1 for s in sentiment if s.mismatch_detected)
        fake_ids = {f.review_id for f in fake_reviews}
        complete = sum(1 for s in sentiment if s.review_id in fake_ids)

        avg_sentiment_confidence = _ratio(sum(s.confidence for s in sentiment), total)
        avg_fake_confidence = _ratio(sum(f.confidence for f in fake_reviews), total)
        completeness = _ratio(complete, total)

        return {
            "samplingBreakdown": {
                "totalOriginalReviews": original_count,
                "samplingUsed": sampled.sampling_used,
                "sampleBreakdown": sampled.to_dict()["breakdown"] if sampled.sampling_used else None,
                "samplingMethodology": generate_sampling_report(original_count, sampled),
            },
            "analysisBreakdown": {
                "totalAnalyzed": total,
                "fakeReviewCount": fakes,
                "fakeReviewRatio": round(_ratio(fakes, total), 4),
                "sentimentMismatchCount": mismatches,
                "sentimentMismatchRatio": round(_ratio(mismatches, total), 4),
                "averageConfidenceScore": round((avg_sentiment_confidence + avg_fake_confidence) / 2, 2),
            },
            "qualityMetrics": {
                "citationAccuracy": round(completeness * 0.7 + avg_sentiment_confidence * 0.3, 2) if total else 0.0,
                "analysisCompleteness": round(completeness, 2),
            },
        }
