"""
Review Signal Heuristics (Deterministic)
========================================

Local, keyword-based sentiment and fake-review verdicts used whenever the
external scoring service is disabled, degraded, or returns garbage.
No LLM call involved, so results are explainable and reproducible.

Lexicons are data tables keyed by locale so a new language is a new entry,
not a new branch. Matching is substring-based on case-folded text, which
works for scripts without word boundaries as well as for Latin text.

Usage:
    analyzer = FallbackSignalAnalyzer()
    sentiment = analyzer.analyze_sentiment(review)
    fake = analyzer.analyze_fake_review(review)
"""

import re
import logging
from typing import Dict, List, Optional, Tuple

from .review_models import (
    RawReview,
    Sentiment,
    SentimentAnalysis,
    FakeReviewAnalysis,
)

logger = logging.getLogger(__name__)


# =============================================================================
# SENTIMENT LEXICON, keyed by locale
# =============================================================================

SENTIMENT_LEXICON: Dict[str, Dict[str, List[str]]] = {
    "en": {
        "positive": [
            "excellent", "amazing", "great", "good", "fantastic", "wonderful",
            "perfect", "love", "best", "awesome", "outstanding", "superb",
            "delicious", "friendly", "helpful", "recommend",
        ],
        "negative": [
            "terrible", "awful", "bad", "horrible", "worst", "hate",
            "disgusting", "rude", "poor", "disappointing", "waste", "never",
            "avoid", "pathetic", "useless",
        ],
    },
    "he": {
        "positive": [
            "מעולה", "מצוין", "נהדר", "מדהים", "טעים", "אדיב", "אדיבה",
            "ממליץ", "ממליצה", "מושלם", "אהבתי", "שירות טוב",
        ],
        "negative": [
            "גרוע", "נורא", "איום", "מאכזב", "מאוכזב", "זוועה", "מגעיל",
            "גס רוח", "בזבוז", "יקר מדי", "לא שווה",
        ],
    },
}


# =============================================================================
# FAKE-REVIEW LEXICON, keyed by locale
# =============================================================================

GENERIC_PHRASES: Dict[str, List[str]] = {
    "en": [
        "highly recommend", "amazing service", "great experience",
        "excellent quality", "outstanding service", "perfect place",
        "terrible service", "worst experience", "never again", "best ever",
    ],
    "he": [
        "ממליץ בחום", "שירות מעולה", "חוויה מדהימה", "הכי טוב",
        "שירות גרוע", "לא אחזור", "חוויה גרועה",
    ],
}

PROMOTIONAL_PHRASES: Dict[str, List[str]] = {
    "en": [
        "best", "perfect", "amazing", "incredible", "outstanding",
        "must try", "must visit", "unbeatable",
    ],
    "he": [
        "הכי טוב", "מושלם", "מדהים", "חובה לנסות", "הטוב ביותר",
    ],
}


# =============================================================================
# SCRIPT DETECTION
# =============================================================================

SCRIPT_PATTERNS: Dict[str, "re.Pattern[str]"] = {
    "latin": re.compile(r"[A-Za-z\u00C0-\u024F]"),
    "hebrew": re.compile(r"[\u0590-\u05FF]"),
    "arabic": re.compile(r"[\u0600-\u06FF\u0750-\u077F]"),
    "cyrillic": re.compile(r"[\u0400-\u04FF]"),
    "greek": re.compile(r"[\u0370-\u03FF]"),
    "cjk": re.compile(r"[\u3040-\u30FF\u4E00-\u9FFF\uAC00-\uD7AF]"),
}


def detect_script(text: str) -> str:
    """Dominant script of a text by letter count, or 'unknown' when it has no letters."""
    best_script, best_count = "unknown", 0
    for script, pattern in SCRIPT_PATTERNS.items():
        count = len(pattern.findall(text))
        if count > best_count:
            best_script, best_count = script, count
    return best_script


def is_non_latin(text: str) -> bool:
    return detect_script(text) not in ("latin", "unknown")


def count_matches(text: str, table: Dict[str, List[str]]) -> int:
    """Number of distinct phrases of any locale found in an already case-folded text."""
    return sum(
        1
        for phrases in table.values()
        for phrase in phrases
        if phrase in text
    )


# Sentiment heuristics
KEYWORD_BASE_CONFIDENCE = 0.5
KEYWORD_CONFIDENCE_STEP = 0.1
FALLBACK_MAX_CONFIDENCE = 0.7
RATING_DEFAULT_CONFIDENCE = 0.5
MISMATCH_MIN_HITS = 2

# Fake-review heuristics: (reason, confidence) per rule
FAKE_BASE_CONFIDENCE = 0.15
GENERIC_RULE = ("Generic language with minimal detail", 0.4)
BRIEF_EXTREME_RULE = ("Extremely brief with extreme rating", 0.3)
PROMOTIONAL_RULE = ("Excessive promotional language", 0.35)
NON_LATIN_CONFIDENCE_FACTOR = 0.7
FAKE_CONFIDENCE_FLOOR = 0.25


class FallbackSignalAnalyzer:
    """
    Deterministic sentiment and fake-review analyzer.

    Both verdicts are pure functions of (text, rating): identical input
    always yields identical output.
    """

    def __init__(
        self,
        sentiment_lexicon: Optional[Dict[str, Dict[str, List[str]]]] = None,
        generic_phrases: Optional[Dict[str, List[str]]] = None,
        promotional_phrases: Optional[Dict[str, List[str]]] = None,
    ):
        self.sentiment_lexicon = sentiment_lexicon or SENTIMENT_LEXICON
        self.generic_phrases = generic_phrases or GENERIC_PHRASES
        self.promotional_phrases = promotional_phrases or PROMOTIONAL_PHRASES

    def keyword_hits(self, text: str) -> Tuple[int, int]:
        """(positive, negative) distinct keyword hits across every locale."""
        folded = text.casefold()
        positive = count_matches(folded, {k: v["positive"] for k, v in self.sentiment_lexicon.items()})
        negative = count_matches(folded, {k: v["negative"] for k, v in self.sentiment_lexicon.items()})
        return positive, negative

    def analyze_sentiment(self, review: RawReview) -> SentimentAnalysis:
        """
        Keyword majority first, rating second.

        Mismatch is flagged conservatively: only a low rating with at least
        2 positive hits, or a high rating with at least 2 negative hits.
        """
        positive, negative = self.keyword_hits(review.text)

        if positive > negative:
            sentiment = Sentiment.POSITIVE
            confidence = min(FALLBACK_MAX_CONFIDENCE, KEYWORD_BASE_CONFIDENCE + KEYWORD_CONFIDENCE_STEP * positive)
        elif negative > positive:
            sentiment = Sentiment.NEGATIVE
            confidence = min(FALLBACK_MAX_CONFIDENCE, KEYWORD_BASE_CONFIDENCE + KEYWORD_CONFIDENCE_STEP * negative)
        else:
            confidence = RATING_DEFAULT_CONFIDENCE
            if review.rating >= 4:
                sentiment = Sentiment.POSITIVE
            elif review.rating <= 2:
                sentiment = Sentiment.NEGATIVE
            else:
                sentiment = Sentiment.NEUTRAL

        mismatch = (
            (review.rating <= 2 and sentiment == Sentiment.POSITIVE and positive >= MISMATCH_MIN_HITS)
            or (review.rating >= 4 and sentiment == Sentiment.NEGATIVE and negative >= MISMATCH_MIN_HITS)
        )
        if mismatch:
            confidence = min(confidence, FALLBACK_MAX_CONFIDENCE)

        return SentimentAnalysis(
            review_id=review.id,
            sentiment=sentiment,
            confidence=round(confidence, 2),
            mismatch_detected=mismatch,
        )

    def analyze_fake_review(self, review: RawReview) -> FakeReviewAnalysis:
        """
        Precision over recall: a review is only suspected when a conjunctive
        rule fires, and non-Latin short reviews get their suspicion damped.
        """
        folded = review.text.casefold()
        word_count = len(review.text.split())
        generic = count_matches(folded, self.generic_phrases)
        promotional = count_matches(folded, self.promotional_phrases)

        fired: List[Tuple[str, float]] = []
        if generic >= 2 and word_count < 15:
            fired.append(GENERIC_RULE)
        if word_count < 3 and review.rating in (1, 5):
            fired.append(BRIEF_EXTREME_RULE)
        if promotional >= 2 and word_count < 10:
            fired.append(PROMOTIONAL_RULE)

        if not fired:
            return FakeReviewAnalysis(
                review_id=review.id,
                is_fake=False,
                confidence=FAKE_BASE_CONFIDENCE,
                reasons=[],
            )

        confidence = max(level for _, level in fired)
        reasons = [reason for reason, _ in fired]

        if is_non_latin(review.text):
            confidence *= NON_LATIN_CONFIDENCE_FACTOR
            if confidence < FAKE_CONFIDENCE_FLOOR:
                logger.debug(
                    f"Fake suspicion on {review.id} dropped after script adjustment "
                    f"({confidence:.2f} < {FAKE_CONFIDENCE_FLOOR})"
                )
                return FakeReviewAnalysis(
                    review_id=review.id,
                    is_fake=False,
                    confidence=FAKE_BASE_CONFIDENCE,
                    reasons=[],
                )

        return FakeReviewAnalysis(
            review_id=review.id,
            is_fake=True,
            confidence=round(confidence, 2),
            reasons=reasons[:5],
        )


_default_analyzer = FallbackSignalAnalyzer()


def fallback_sentiment(review: RawReview) -> SentimentAnalysis:
    """Sentiment verdict with the default lexicons."""
    return _default_analyzer.analyze_sentiment(review)


def fallback_fake_review(review: RawReview) -> FakeReviewAnalysis:
    """Fake-review verdict with the default lexicons."""
    return _default_analyzer.analyze_fake_review(review)
