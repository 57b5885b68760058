"""
Content-Based Review Extraction
===============================

Best-effort fallback ingestion: finds author / rating / date / text
signatures in raw page text with per-language regular expressions,
each annotated with a confidence weight.

Page text is split into blocks on blank lines; every block is a review
candidate. Candidates are validated (length bounds, non-numeric author,
rating in range, text length) and only those scoring >= 0.4 survive.

Never raises: any internal failure yields an empty, zero-confidence result.

Usage:
    extractor = ContentBasedExtractor()
    result = extractor.extract_by_content(page_text, language="hebrew")
    if extractor.validate_content_extraction(result.reviews):
        ...
"""

import re
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Dict, Any, Optional

from .review_models import RawReview

logger = logging.getLogger(__name__)

MIN_CANDIDATE_CONFIDENCE = 0.4


@dataclass(frozen=True)
class ContentPattern:
    """A field signature with its confidence weight."""
    type: str                       # author | rating | date | text
    pattern: "re.Pattern[str]"
    confidence: float
    language: Optional[str] = None  # None = generic
    value: Optional[int] = None     # fixed rating for word patterns ("five stars")


def _p(type_: str, regex: str, confidence: float, language: Optional[str] = None,
       value: Optional[int] = None, flags: int = 0) -> ContentPattern:
    return ContentPattern(type_, re.compile(regex, flags), confidence, language, value)


_I = re.IGNORECASE
_M = re.MULTILINE

# =============================================================================
# PATTERN TABLE, per field and language
# =============================================================================

REVIEW_PATTERNS: List[ContentPattern] = [
    # Author
    _p("author", r"^[A-Z][a-z]+ [A-Z]\.$", 0.9, "english", flags=_M),
    _p("author", r"^[A-Z][a-z]+ [A-Z][a-z]+$", 0.8, "english", flags=_M),
    _p("author", r"^[A-Z][a-z]+$", 0.7, "english", flags=_M),
    _p("author", r"^[\u0590-\u05FF]+ [\u0590-\u05FF]+$", 0.8, "hebrew", flags=_M),
    _p("author", r"^[\u0590-\u05FF]+$", 0.7, "hebrew", flags=_M),
    _p("author", r"^[A-Za-z\u0590-\u05FF]+ [A-Za-z\u0590-\u05FF]+$", 0.6, flags=_M),

    # Rating
    _p("rating", r"\b(one|1) star(?!\w)", 0.98, "english", value=1, flags=_I),
    _p("rating", r"\b(two|2) stars(?!\w)", 0.98, "english", value=2, flags=_I),
    _p("rating", r"\b(three|3) stars(?!\w)", 0.98, "english", value=3, flags=_I),
    _p("rating", r"\b(four|4) stars(?!\w)", 0.98, "english", value=4, flags=_I),
    _p("rating", r"\b(five|5) stars(?!\w)", 0.98, "english", value=5, flags=_I),
    _p("rating", r"(\d)\s*out\s*of\s*5\s*stars?", 0.95, "english", flags=_I),
    _p("rating", r"(\d)/5\s*stars?", 0.9, "english", flags=_I),
    _p("rating", r"rating[:\s]*(\d)", 0.85, "english", flags=_I),
    _p("rating", r"rated\s*(\d)", 0.85, "english", flags=_I),
    _p("rating", r"כוכב אחד", 0.98, "hebrew", value=1),
    _p("rating", r"שני כוכבים", 0.98, "hebrew", value=2),
    _p("rating", r"שלושה כוכבים", 0.98, "hebrew", value=3),
    _p("rating", r"ארבעה כוכבים", 0.98, "hebrew", value=4),
    _p("rating", r"חמישה כוכבים", 0.98, "hebrew", value=5),
    _p("rating", r"(\d)\s*כוכבים", 0.95, "hebrew"),
    _p("rating", r"דירוג[:\s]*(\d)", 0.85, "hebrew"),
    _p("rating", r"★{1,5}", 0.7),
    _p("rating", r"⭐{1,5}", 0.7),

    # Date
    _p("date", r"(\d+)\s*(day|days|week|weeks|month|months|year|years)\s*ago", 0.9, "english", flags=_I),
    _p("date", r"\ba\s+(day|week|month|year)\s+ago", 0.85, "english", flags=_I),
    _p("date", r"\b(yesterday|today)\b", 0.8, "english", flags=_I),
    _p("date", r"\d{1,2}/\d{1,2}/\d{4}", 0.7, "english"),
    _p("date", r"לפני\s+(\d+)\s+(ימים|שבועות|חודשים|שנים)", 0.9, "hebrew"),
    _p("date", r"לפני\s+(יום|שבוע|חודש|שנה)", 0.85, "hebrew"),

    # Text
    _p("text", r"\b(great|good|excellent|amazing|terrible|awful|bad|horrible|love|hate|recommend|disappointed)\b", 0.6, "english", flags=_I),
    _p("text", r"\b(service|food|place|experience|staff|quality|price|location)\b", 0.5, "english", flags=_I),
    _p("text", r"(מעולה|טוב|נהדר|איום|גרוע|אוהב|שונא|ממליץ|מאוכזב)", 0.6, "hebrew"),
    _p("text", r"(שירות|אוכל|מקום|חוויה|צוות|איכות|מחיר|מיקום)", 0.5, "hebrew"),
    _p("text", r".{20,500}", 0.3),
]

ENGLISH_UNITS = {"day": 1, "week": 7, "month": 30, "year": 365}
HEBREW_UNITS = {
    "יום": 1, "ימים": 1, "שבוע": 7, "שבועות": 7,
    "חודש": 30, "חודשים": 30, "שנה": 365, "שנים": 365,
}


@dataclass
class ReviewCandidate:
    """A block of page text that looks like a review."""
    id: str
    author: str
    rating: int
    text: str
    date: str
    confidence: float
    matched_types: List[str] = field(default_factory=list)


@dataclass
class ContentExtractionDebugInfo:
    total_text_blocks: int = 0
    review_candidates: int = 0
    successful_extractions: int = 0
    failed_extractions: int = 0
    average_confidence: float = 0.0
    pattern_matches: Dict[str, int] = field(default_factory=dict)


@dataclass
class ContentExtractionResult:
    reviews: List[RawReview]
    confidence: float
    extraction_method: str
    patterns_used: List[ContentPattern]
    debug_info: ContentExtractionDebugInfo


def parse_relative_date(value: str, now: Optional[datetime] = None) -> datetime:
    """Resolve '3 weeks ago' / 'לפני חודש' / '12/05/2024' against now; unknown -> now."""
    now = now or datetime.now(timezone.utc)
    if not value:
        return now

    match = re.search(r"(\d+)\s*(day|week|month|year)s?\s*ago", value, _I)
    if match:
        return now - timedelta(days=int(match.group(1)) * ENGLISH_UNITS[match.group(2).lower()])

    match = re.search(r"\ba\s+(day|week|month|year)\s+ago", value, _I)
    if match:
        return now - timedelta(days=ENGLISH_UNITS[match.group(1).lower()])

    if value.strip().lower() == "yesterday":
        return now - timedelta(days=1)

    match = re.search(r"לפני\s+(\d+)\s+(\S+)", value)
    if match and match.group(2) in HEBREW_UNITS:
        return now - timedelta(days=int(match.group(1)) * HEBREW_UNITS[match.group(2)])

    match = re.search(r"לפני\s+(\S+)", value)
    if match and match.group(1) in HEBREW_UNITS:
        return now - timedelta(days=HEBREW_UNITS[match.group(1)])

    match = re.search(r"(\d{1,2})/(\d{1,2})/(\d{4})", value)
    if match:
        try:
            return datetime(int(match.group(3)), int(match.group(2)), int(match.group(1)), tzinfo=timezone.utc)
        except ValueError:
            return now

    return now


class ContentBasedExtractor:
    """
    Pattern-driven review extractor over raw page text.
    """

    def __init__(self, patterns: Optional[List[ContentPattern]] = None):
        self.patterns = patterns or REVIEW_PATTERNS

    def identify_review_patterns(self, content: str, language: str = "english") -> List[ContentPattern]:
        """Patterns for the language (plus generic ones) that actually occur in the content."""
        return [
            p for p in self.patterns
            if (language == "generic" or p.language is None or p.language == language)
            and p.pattern.search(content)
        ]

    def extract_by_content(
        self,
        page_text: str,
        language: str = "english",
        source_url: str = "",
        now: Optional[datetime] = None,
    ) -> ContentExtractionResult:
        """Extract reviews from page text. Returns an empty result on any failure."""
        patterns: List[ContentPattern] = []
        try:
            patterns = self.identify_review_patterns(page_text, language)
            blocks = [b.strip() for b in re.split(r"\n\s*\n", page_text) if b.strip()]
            candidates = [c for c in (self._build_candidate(b, patterns) for b in blocks) if c]

            if not candidates:
                logger.info("No review candidates found using content-based extraction")
                return ContentExtractionResult(
                    reviews=[],
                    confidence=0.0,
                    extraction_method="content-based",
                    patterns_used=patterns,
                    debug_info=ContentExtractionDebugInfo(total_text_blocks=len(blocks)),
                )

            validated = self._validate_and_score(candidates)
            reviews = [
                RawReview(
                    id=c.id,
                    author=c.author or "Anonymous",
                    rating=c.rating,
                    text=c.text,
                    date=parse_relative_date(c.date, now),
                    original_url=source_url,
                )
                for c in validated
            ]
            confidence = self._overall_confidence(validated, patterns)

            logger.info(
                f"Content-based extraction completed: {len(reviews)} reviews "
                f"with {confidence * 100:.1f}% confidence"
            )
            return ContentExtractionResult(
                reviews=reviews,
                confidence=confidence,
                extraction_method="content-based",
                patterns_used=patterns,
                debug_info=self._debug_info(len(blocks), candidates, validated),
            )

        except Exception as e:
            logger.warning(f"Content-based extraction failed: {e}")
            return ContentExtractionResult(
                reviews=[],
                confidence=0.0,
                extraction_method="content-based-failed",
                patterns_used=patterns,
                debug_info=ContentExtractionDebugInfo(
                    failed_extractions=1,
                    pattern_matches={"error": 1},
                ),
            )

    def _build_candidate(self, block: str, patterns: List[ContentPattern]) -> Optional[ReviewCandidate]:
        lines = [line.strip() for line in block.splitlines() if line.strip()]
        if not lines:
            return None

        scores: List[float] = []
        matched: List[str] = []
        used_lines = set()

        author = ""
        for i, line in enumerate(lines):
            hit = next((p for p in patterns if p.type == "author" and p.pattern.fullmatch(line)), None)
            if hit:
                author = line
                used_lines.add(i)
                scores.append(hit.confidence)
                matched.append("author")
                break

        rating = 0
        for p in (p for p in patterns if p.type == "rating"):
            m = p.pattern.search(block)
            if not m:
                continue
            if p.value is not None:
                rating = p.value
            elif m.groups():
                rating = int(m.group(1))
            else:
                rating = len(m.group(0))
            scores.append(p.confidence)
            matched.append("rating")
            used_lines.update(i for i, line in enumerate(lines) if m.group(0) in line and len(line) < 40)
            break

        date = ""
        for p in (p for p in patterns if p.type == "date"):
            m = p.pattern.search(block)
            if m:
                date = m.group(0)
                scores.append(p.confidence)
                matched.append("date")
                used_lines.update(i for i, line in enumerate(lines) if date in line and len(line) < 40)
                break

        remaining = [line for i, line in enumerate(lines) if i not in used_lines]
        text = max(remaining, key=len) if remaining else ""
        if text:
            hit = next((p for p in patterns if p.type == "text" and p.pattern.search(text)), None)
            if hit:
                scores.append(hit.confidence)
                matched.append("text")

        if not rating and not text:
            return None

        digest = hashlib.sha1(f"{author}|{text}".encode("utf-8")).hexdigest()[:16]
        return ReviewCandidate(
            id=f"content_{digest}",
            author=author,
            rating=rating,
            text=text,
            date=date,
            confidence=sum(scores) / len(scores) if scores else 0.0,
            matched_types=matched,
        )

    def _validate_and_score(self, candidates: List[ReviewCandidate]) -> List[ReviewCandidate]:
        validated = []
        for c in candidates:
            score = c.confidence

            if c.author:
                if 2 < len(c.author) < 50:
                    score += 0.1
                if not c.author.isdigit():
                    score += 0.1
            else:
                score -= 0.2

            if 1 <= c.rating <= 5:
                score += 0.2
            else:
                score -= 0.3

            if c.text:
                if 10 <= len(c.text) <= 1000:
                    score += 0.1
                if len(c.text) >= 50:
                    score += 0.1

            if c.date:
                score += 0.05

            c.confidence = max(0.0, min(1.0, score))
            if c.confidence >= MIN_CANDIDATE_CONFIDENCE and 1 <= c.rating <= 5:
                validated.append(c)

        return sorted(validated, key=lambda c: c.confidence, reverse=True)

    def _overall_confidence(self, validated: List[ReviewCandidate], patterns: List[ContentPattern]) -> float:
        if not validated:
            return 0.0
        average = sum(c.confidence for c in validated) / len(validated)
        volume_boost = min(len(validated) / 10, 0.2)
        diversity_boost = len({p.type for p in patterns}) / 4 * 0.1
        return min(average + volume_boost + diversity_boost, 1.0)

    def _debug_info(
        self,
        blocks: int,
        candidates: List[ReviewCandidate],
        validated: List[ReviewCandidate],
    ) -> ContentExtractionDebugInfo:
        pattern_matches: Dict[str, int] = {}
        for c in validated:
            for field_type in c.matched_types:
                pattern_matches[field_type] = pattern_matches.get(field_type, 0) + 1

        return ContentExtractionDebugInfo(
            total_text_blocks=blocks,
            review_candidates=len(candidates),
            successful_extractions=len(validated),
            failed_extractions=len(candidates) - len(validated),
            average_confidence=(sum(c.confidence for c in validated) / len(validated)) if validated else 0.0,
            pattern_matches=pattern_matches,
        )

    def validate_content_extraction(self, reviews: List[RawReview]) -> bool:
        """True when at least half the reviews carry meaningful content."""
        if not reviews:
            return False
        meaningful = [
            r for r in reviews
            if r.author != "Anonymous" and len(r.text) > 10
        ]
        return len(meaningful) >= max(1, len(reviews) * 0.5)
