"""
Tests for the pattern-based content extractor.

Tests:
- English and Hebrew review blocks
- Candidate validation and scoring threshold
- Relative date resolution
- Failure handling (empty result, never raises)

Usage:
    pytest tests/test_content_extractor.py -v
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from src.reviews.content_extractor import (
    ContentBasedExtractor,
    parse_relative_date,
)
from src.reviews.review_models import RawReview


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

ENGLISH_PAGE = """John Smith
5 stars
2 weeks ago
Amazing food and great service, the staff were friendly and helpful throughout our visit.

Mary Jones
1 star
3 days ago
Terrible experience, the food was cold and the waiter was rude to us all evening.

Home | Menu | Contact
"""

HEBREW_PAGE = """דני כהן
חמישה כוכבים
לפני שבוע
האוכל היה מעולה והשירות נהדר, ממליץ בחום לכל מי שמחפש מקום טוב
"""


# ============================================================================
# EXTRACTION
# ============================================================================

class TestEnglishExtraction:

    def setup_method(self):
        self.extractor = ContentBasedExtractor()
        self.result = self.extractor.extract_by_content(
            ENGLISH_PAGE, "english", source_url="https://example.com/p/1", now=NOW,
        )

    def test_reviews_found(self):
        assert [r.author for r in self.result.reviews] == ["John Smith", "Mary Jones"]
        assert [r.rating for r in self.result.reviews] == [5, 1]
        assert self.result.extraction_method == "content-based"

    def test_fields(self):
        john = self.result.reviews[0]
        assert john.text.startswith("Amazing food and great service")
        assert john.date == NOW - timedelta(days=14)
        assert john.original_url == "https://example.com/p/1"
        assert john.id.startswith("content_")

    def test_navigation_block_rejected(self):
        debug = self.result.debug_info
        assert debug.total_text_blocks == 3
        assert debug.review_candidates == 3
        assert debug.successful_extractions == 2
        assert debug.failed_extractions == 1

    def test_confidence(self):
        assert 0.0 < self.result.confidence <= 1.0
        assert self.result.debug_info.average_confidence >= 0.4

    def test_ids_stable(self):
        again = self.extractor.extract_by_content(ENGLISH_PAGE, "english", now=NOW)
        assert [r.id for r in again.reviews] == [r.id for r in self.result.reviews]

    def test_valid_extraction(self):
        assert self.extractor.validate_content_extraction(self.result.reviews) is True

    def test_star_glyph_rating(self):
        page = "Dana Levi\n★★★★\nGood food and a lovely place to visit with kids."
        result = self.extractor.extract_by_content(page, "english", now=NOW)
        assert len(result.reviews) == 1
        assert result.reviews[0].rating == 4
        assert result.reviews[0].date == NOW


class TestHebrewExtraction:

    def test_hebrew_block(self):
        extractor = ContentBasedExtractor()
        result = extractor.extract_by_content(HEBREW_PAGE, "hebrew", now=NOW)

        assert len(result.reviews) == 1
        review = result.reviews[0]
        assert review.author == "דני כהן"
        assert review.rating == 5
        assert review.date == NOW - timedelta(days=7)
        assert "מעולה" in review.text


class TestPatternSelection:

    def setup_method(self):
        self.extractor = ContentBasedExtractor()

    def test_language_filter(self):
        patterns = self.extractor.identify_review_patterns(ENGLISH_PAGE, "english")
        assert patterns
        assert all(p.language in ("english", None) for p in patterns)

    def test_only_patterns_present_in_content(self):
        patterns = self.extractor.identify_review_patterns("nothing to see", "english")
        assert patterns == []

    def test_generic_language_uses_all(self):
        patterns = self.extractor.identify_review_patterns(ENGLISH_PAGE + HEBREW_PAGE, "generic")
        languages = {p.language for p in patterns}
        assert "english" in languages
        assert "hebrew" in languages


# ============================================================================
# FAILURES
# ============================================================================

class TestExtractionFailures:

    def setup_method(self):
        self.extractor = ContentBasedExtractor()

    def test_empty_page(self):
        result = self.extractor.extract_by_content("")
        assert result.reviews == []
        assert result.confidence == 0.0
        assert result.extraction_method == "content-based"

    def test_internal_error_yields_empty_result(self):
        with patch.object(ContentBasedExtractor, "_build_candidate", side_effect=RuntimeError("boom")):
            result = self.extractor.extract_by_content(ENGLISH_PAGE)

        assert result.reviews == []
        assert result.confidence == 0.0
        assert result.extraction_method == "content-based-failed"
        assert result.debug_info.failed_extractions == 1

    def test_validation_rejects_anonymous(self):
        reviews = [
            RawReview(id=f"a{i}", author="Anonymous", rating=3, text="Some longer text here", date=NOW)
            for i in range(3)
        ]
        assert self.extractor.validate_content_extraction(reviews) is False
        assert self.extractor.validate_content_extraction([]) is False


# ============================================================================
# RELATIVE DATES
# ============================================================================

class TestRelativeDates:

    def test_english_units(self):
        assert parse_relative_date("3 days ago", NOW) == NOW - timedelta(days=3)
        assert parse_relative_date("2 months ago", NOW) == NOW - timedelta(days=60)
        assert parse_relative_date("a year ago", NOW) == NOW - timedelta(days=365)
        assert parse_relative_date("yesterday", NOW) == NOW - timedelta(days=1)

    def test_hebrew_units(self):
        assert parse_relative_date("לפני 3 ימים", NOW) == NOW - timedelta(days=3)
        assert parse_relative_date("לפני חודש", NOW) == NOW - timedelta(days=30)

    def test_absolute_date(self):
        assert parse_relative_date("12/05/2024", NOW) == datetime(2024, 5, 12, tzinfo=timezone.utc)

    def test_unknown_defaults_to_now(self):
        assert parse_relative_date("sometime", NOW) == NOW
        assert parse_relative_date("", NOW) == NOW
        assert parse_relative_date("45/13/2024", NOW) == NOW
