"""
Review Harvesting Contract
==========================

A harvester turns a source reference and a phase descriptor into a lazy,
finite async sequence of RawReview. The page-rendering mechanism behind
a real harvester is pluggable; FileHarvester serves offline runs and tests.

Phase ordering:
    recent -> newest first
    worst  -> lowest rating first
    best   -> highest rating first

Usage:
    harvester = FileHarvester("reviews.json")
    async for review in harvester.harvest(source, PhaseDescriptor("recent", 100)):
        ...
"""

import json
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Iterable, List, Optional, Protocol
from urllib.parse import urlparse

from ..reviews.errors import HarvestingError, ValidationError
from ..reviews.review_models import RawReview, reviews_from_dicts
from ..reviews.content_extractor import ContentBasedExtractor

logger = logging.getLogger(__name__)

__all__ = [
    "PhaseDescriptor",
    "Harvester",
    "HarvestingError",
    "FileHarvester",
    "order_for_phase",
    "validate_source_url",
]


@dataclass(frozen=True)
class PhaseDescriptor:
    """Which slice of the source to harvest, and how much of it."""
    phase: str      # recent | worst | best
    target: int


class Harvester(Protocol):
    """Pluggable review source."""

    def harvest(self, source: str, phase: PhaseDescriptor) -> AsyncIterator[RawReview]:
        """
        Yield reviews for one phase, in phase order.

        Raises:
            HarvestingError: rate-limited, blocked or malformed source
        """
        ...


def validate_source_url(source: str, allowed_domains: Optional[Iterable[str]] = None) -> str:
    """
    Check that a source reference is an absolute http(s) URL with a host.

    Args:
        source: Source reference
        allowed_domains: When non-empty, the host must equal one of these
            domains or be a subdomain of one

    Returns:
        The stripped source

    Raises:
        ValidationError: if the source is malformed or not allowed
    """
    if not isinstance(source, str) or not source.strip():
        raise ValidationError("source URL is required")

    source = source.strip()
    parsed = urlparse(source)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValidationError(f"source must be an absolute http(s) URL: {source}")

    domains = [d.lower() for d in (allowed_domains or []) if d]
    if domains:
        host = parsed.hostname.lower()
        if not any(host == d or host.endswith("." + d) for d in domains):
            raise ValidationError(f"source host not allowed: {host}")

    return source


def order_for_phase(reviews: List[RawReview], phase: str) -> List[RawReview]:
    """Sort a review list the way the source would present it for a phase."""
    if phase == "recent":
        return sorted(reviews, key=lambda r: r.date, reverse=True)
    if phase == "worst":
        return sorted(reviews, key=lambda r: (r.rating, -r.date.timestamp()))
    if phase == "best":
        return sorted(reviews, key=lambda r: (-r.rating, -r.date.timestamp()))
    raise HarvestingError(f"Unknown harvesting phase: {phase}")


class FileHarvester:
    """
    Harvester backed by a local file.

    .json files hold a list of review dicts; any other file is treated as
    raw page text and run through the pattern-based extractor.
    """

    def __init__(
        self,
        path: str,
        language: str = "english",
        delay: float = 0.0,
        extractor: Optional[ContentBasedExtractor] = None,
    ):
        self.path = Path(path)
        self.language = language
        self.delay = delay
        self.extractor = extractor or ContentBasedExtractor()
        self._reviews: Optional[List[RawReview]] = None

    def load(self, source: str = "") -> List[RawReview]:
        if self._reviews is not None:
            return self._reviews

        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise HarvestingError(f"Cannot read review source {self.path}: {e}")

        if self.path.suffix.lower() == ".json":
            try:
                data = json.loads(content)
            except json.JSONDecodeError as e:
                raise HarvestingError(f"Malformed review file {self.path}: {e}")
            if not isinstance(data, list):
                raise HarvestingError(f"Review file {self.path} must contain a JSON list")
            try:
                reviews = reviews_from_dicts(data)
            except (TypeError, ValueError, AttributeError) as e:
                raise HarvestingError(f"Invalid review in {self.path}: {e}")
        else:
            result = self.extractor.extract_by_content(content, self.language, source_url=source)
            logger.info(
                f"Extracted {len(result.reviews)} reviews from {self.path} "
                f"({result.confidence * 100:.0f}% confidence)"
            )
            reviews = result.reviews

        self._reviews = reviews
        return reviews

    async def harvest(self, source: str, phase: PhaseDescriptor) -> AsyncIterator[RawReview]:
        for review in order_for_phase(self.load(source), phase.phase):
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            yield review
