"""
Review Quality Filter
=====================

Screens reviews before they reach the scoring service. Empty and
emoji-only reviews carry nothing a model can read, so they are kept out
of the batches and get deterministic fallback verdicts instead.

Usage:
    screen = screen_for_analysis(reviews)
    screen.analyzable, screen.stats

    # or, through the engine
    result = await engine.analyze_screened(reviews)
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from .review_models import RawReview

logger = logging.getLogger(__name__)


EMOJI_PATTERN = re.compile(
    "["
    "\U0001F600-\U0001F64F"     # emoticons
    "\U0001F300-\U0001F5FF"     # symbols & pictographs (incl. skin tones)
    "\U0001F680-\U0001F6FF"     # transport & map
    "\U0001F1E0-\U0001F1FF"     # flags
    "\U0001F900-\U0001FAFF"     # supplemental symbols
    "\u2600-\u26FF"             # misc symbols
    "\u2700-\u27BF"             # dingbats
    "\uFE0F\u200D"              # variation selector, zero-width joiner
    "]"
)


def is_empty(text: str) -> bool:
    return not (text or "").strip()


def is_emoji_only(text: str) -> bool:
    """True when the text is non-empty and nothing but emoji and whitespace."""
    if is_empty(text):
        return False
    return not EMOJI_PATTERN.sub("", text).strip()


@dataclass
class QualityScreen:
    """Outcome of screening a review set."""
    analyzable: List[RawReview] = field(default_factory=list)
    skipped: List[RawReview] = field(default_factory=list)
    skipped_empty: int = 0
    skipped_emoji_only: int = 0

    @property
    def stats(self) -> Dict[str, int]:
        return {
            "total": len(self.analyzable) + len(self.skipped),
            "analyzable": len(self.analyzable),
            "skippedEmpty": self.skipped_empty,
            "skippedEmojiOnly": self.skipped_emoji_only,
        }


def screen_for_analysis(reviews: Sequence[RawReview]) -> QualityScreen:
    """Split reviews into those worth a scoring call and those skipped (order kept)."""
    screen = QualityScreen()
    for review in reviews:
        if is_empty(review.text):
            screen.skipped.append(review)
            screen.skipped_empty += 1
        elif is_emoji_only(review.text):
            screen.skipped.append(review)
            screen.skipped_emoji_only += 1
        else:
            screen.analyzable.append(review)

    if screen.skipped:
        logger.info(
            f"Quality filter: {len(screen.skipped)}/{len(reviews)} reviews skipped "
            f"({screen.skipped_empty} empty, {screen.skipped_emoji_only} emoji-only)"
        )
    return screen
