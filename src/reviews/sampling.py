"""
Review Sampling & Deduplication
===============================

Bounds analysis cost on large review sets while keeping them representative
across time (most recent) and sentiment extremity (5★ and 1★).

Strategy:
    - <= 300 reviews: no sampling, input returned verbatim
    - > 300 reviews: 100 most recent, then up to 100 five-star, then up to
      100 one-star, each bucket excluding the ids of the buckets before it

Usage:
    engine = SamplingEngine()
    sampled = engine.sample(reviews)
    unique, removed = deduplicate(recent + worst + best)
"""

import logging
from typing import List, Set, Tuple

from .review_models import RawReview, SampledReviews, SamplingBreakdown

logger = logging.getLogger(__name__)

SAMPLING_THRESHOLD = 300
SAMPLE_SIZE_PER_CATEGORY = 100

# Content key length used to spot the same review harvested twice under different ids
DEDUP_TEXT_PREFIX = 50


def content_key(review: RawReview) -> str:
    return f"{review.author}_{review.text[:DEDUP_TEXT_PREFIX]}"


def deduplicate(reviews: List[RawReview]) -> Tuple[List[RawReview], int]:
    """
    Drop duplicate reviews, first occurrence wins.

    Two reviews are duplicates when they share an id, or when they share
    the same author and the same first 50 characters of text.

    Returns:
        (unique reviews in original order, number removed)
    """
    seen_ids: Set[str] = set()
    seen_keys: Set[str] = set()
    unique: List[RawReview] = []

    for review in reviews:
        key = content_key(review)
        if review.id in seen_ids or key in seen_keys:
            continue
        seen_ids.add(review.id)
        seen_keys.add(key)
        unique.append(review)

    return unique, len(reviews) - len(unique)


class SamplingEngine:
    """
    Deterministic sampler: identical input always yields identical
    bucket membership and ordering.
    """

    def __init__(
        self,
        threshold: int = SAMPLING_THRESHOLD,
        sample_size: int = SAMPLE_SIZE_PER_CATEGORY,
    ):
        self.threshold = threshold
        self.sample_size = sample_size

    def should_sample(self, reviews: List[RawReview]) -> bool:
        return len(reviews) > self.threshold

    def sample(self, reviews: List[RawReview]) -> SampledReviews:
        """Reduce an oversized review set to at most 3 x sample_size reviews."""
        if not self.should_sample(reviews):
            return SampledReviews(
                reviews=reviews,
                breakdown=SamplingBreakdown(recent=len(reviews)),
                sampling_used=False,
            )

        # sorted() is stable: equal dates keep their input order
        by_date = sorted(reviews, key=lambda r: r.date, reverse=True)
        recent = by_date[:self.sample_size]
        excluded = {r.id for r in recent}

        fivestar = [
            r for r in reviews if r.rating == 5 and r.id not in excluded
        ][:self.sample_size]
        excluded.update(r.id for r in fivestar)

        onestar = [
            r for r in reviews if r.rating == 1 and r.id not in excluded
        ][:self.sample_size]

        logger.info(
            f"Sampling {len(reviews)} reviews: {len(recent)} recent, "
            f"{len(fivestar)} five-star, {len(onestar)} one-star"
        )

        return SampledReviews(
            reviews=recent + fivestar + onestar,
            breakdown=SamplingBreakdown(
                recent=len(recent),
                fivestar=len(fivestar),
                onestar=len(onestar),
            ),
            sampling_used=True,
        )


def generate_sampling_report(original_count: int, sampled: SampledReviews) -> str:
    """Explain the sampling methodology applied to a result."""
    if not sampled.sampling_used:
        return (
            f"All {original_count} reviews were analyzed "
            f"(no sampling required as count <= {SAMPLING_THRESHOLD})."
        )

    b = sampled.breakdown
    share = (b.total / original_count * 100) if original_count else 0.0

    return "\n".join([
        f"Intelligent sampling applied to {original_count} reviews:",
        f"- {b.recent} most recent reviews",
        f"- {b.fivestar} five-star reviews (excluding the recent set)",
        f"- {b.onestar} one-star reviews (excluding the recent and five-star sets)",
        "",
        f"Total analyzed: {b.total} reviews ({share:.1f}% of original dataset)",
    ])
