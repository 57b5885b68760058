"""
ReviewSight Batched Analysis Engine
===================================

Transforme un ensemble de reviews en verdicts par review :
- Sentiment (positive / negative / neutral) + incohérence note/texte
- Probabilité de fausse review (+ raisons)

Deux pipelines indépendants, même forme, paramètres différents :

    pipeline      batch   batchs concurrents   pause entre vagues
    sentiment       12            3                 0.5 s
    fake_review      6            2                 0.75 s

Les batchs sont traités par vagues de `max_concurrent` ; les résultats
sont réassemblés par index de batch, l'ordre de sortie est donc toujours
celui de l'entrée.

Politique d'échec par batch :
- rate-limit : backoff 2^attempt * 30s + jitter, puis RateLimitExceededError
- autre erreur : pause de 2s et nouvel essai, puis fallback déterministe
- réponse illisible : fallback déterministe pour tout le batch

Le pipeline n'échoue jamais globalement, sauf sur rate-limit épuisé.
"""

import json
import math
import random
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..reviews.errors import AnalysisError, RateLimitExceededError
from ..reviews.review_models import (
    AnalysisResult,
    FakeReviewAnalysis,
    RawReview,
    Sentiment,
    SentimentAnalysis,
)
from ..reviews.review_signals import FallbackSignalAnalyzer
from ..reviews.quality_filter import screen_for_analysis

from .llm_client import LLMClient, get_llm_client, is_rate_limit_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineSpec:
    """Paramètres d'un pipeline d'analyse."""
    name: str
    batch_size: int
    max_concurrent: int
    pause_seconds: float    # entre deux vagues


SENTIMENT_PIPELINE = PipelineSpec("sentiment", batch_size=12, max_concurrent=3, pause_seconds=0.5)
FAKE_REVIEW_PIPELINE = PipelineSpec("fake_review", batch_size=6, max_concurrent=2, pause_seconds=0.75)

MAX_ATTEMPTS = 3
RATE_LIMIT_BASE_DELAY = 30.0
RATE_LIMIT_MAX_JITTER = 5.0
ERROR_RETRY_DELAY = 2.0
ANALYSIS_TEMPERATURE = 0.1
MAX_REASONS = 5
MAX_TEXT_CHARS = 500
DEFAULT_CONFIDENCE = 0.5


# =============================================================================
# PROMPTS
# =============================================================================

SENTIMENT_SYSTEM = """You classify customer reviews.
For every review decide whether the text is positive, negative or neutral,
and whether the star rating contradicts the text (mismatch).
Respond ONLY with a compact JSON array, one object per review, same order
as the input. No prose, no markdown."""

SENTIMENT_PROMPT = """Reviews (ID|Rating|Text):
{reviews}

Return exactly {count} objects:
[{{"id":"<ID>","sentiment":"positive|negative|neutral","confidence":0.0-1.0,"mismatchDetected":true|false}}]"""

FAKE_REVIEW_SYSTEM = """You detect fake or incentivized customer reviews.
Be conservative: short legitimate reviews are common, especially in
languages other than English. Flag a review only with concrete signals.
Respond ONLY with a compact JSON array, one object per review, same order
as the input. No prose, no markdown."""

FAKE_REVIEW_PROMPT = """Reviews (ID|Author|Rating|Text):
{reviews}

Return exactly {count} objects (at most 5 short reasons each):
[{{"id":"<ID>","isFake":true|false,"confidence":0.0-1.0,"reasons":["..."]}}]"""


def _clean(text: str) -> str:
    return " ".join(text.replace("|", "/").split())[:MAX_TEXT_CHARS]


def format_sentiment_batch(batch: Sequence[RawReview]) -> str:
    lines = [f"{r.id}|{r.rating}|{_clean(r.text)}" for r in batch]
    return SENTIMENT_PROMPT.format(reviews="\n".join(lines), count=len(batch))


def format_fake_review_batch(batch: Sequence[RawReview]) -> str:
    lines = [f"{r.id}|{_clean(r.author)}|{r.rating}|{_clean(r.text)}" for r in batch]
    return FAKE_REVIEW_PROMPT.format(reviews="\n".join(lines), count=len(batch))


# =============================================================================
# RESPONSE PARSING
# =============================================================================

def extract_json_array(content: str) -> List[Any]:
    """Premier tableau JSON bien formé trouvé dans le texte."""
    decoder = json.JSONDecoder()
    start = content.find("[")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(content, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list):
            return value
        start = content.find("[", start + 1)
    raise AnalysisError("No JSON array found in scoring response")


def coerce_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return DEFAULT_CONFIDENCE
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(number) or not 0.0 <= number <= 1.0:
        return DEFAULT_CONFIDENCE
    return number


def coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def validate_reasons(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    reasons = [r.strip() for r in value if isinstance(r, str) and r.strip()]
    return reasons[:MAX_REASONS]


def _aligned_items(content: str, batch: Sequence[RawReview]) -> List[Dict[str, Any]]:
    items = extract_json_array(content)
    if len(items) != len(batch):
        raise AnalysisError(f"Expected {len(batch)} results, got {len(items)}")
    if not all(isinstance(item, dict) for item in items):
        raise AnalysisError("Scoring response array must contain objects")
    return items


def parse_sentiment_response(content: str, batch: Sequence[RawReview]) -> List[SentimentAnalysis]:
    """Associe chaque élément à la review de même index."""
    results = []
    for review, item in zip(batch, _aligned_items(content, batch)):
        raw = str(item.get("sentiment", "")).strip().lower()
        sentiment = Sentiment(raw) if raw in Sentiment._value2member_map_ else Sentiment.NEUTRAL
        results.append(SentimentAnalysis(
            review_id=review.id,
            sentiment=sentiment,
            confidence=coerce_confidence(item.get("confidence")),
            mismatch_detected=coerce_bool(item.get("mismatchDetected", item.get("mismatch", False))),
        ))
    return results


def parse_fake_review_response(content: str, batch: Sequence[RawReview]) -> List[FakeReviewAnalysis]:
    results = []
    for review, item in zip(batch, _aligned_items(content, batch)):
        results.append(FakeReviewAnalysis(
            review_id=review.id,
            is_fake=coerce_bool(item.get("isFake", False)),
            confidence=coerce_confidence(item.get("confidence")),
            reasons=validate_reasons(item.get("reasons")),
        ))
    return results


# =============================================================================
# ENGINE
# =============================================================================

class BatchedAnalysisEngine:
    """
    Moteur d'analyse par batchs à concurrence bornée.

    Usage:
        engine = BatchedAnalysisEngine()
        result = await engine.analyze(reviews)

        # Mode dégradé forcé : aucun appel externe
        engine = BatchedAnalysisEngine(use_fallback=True)
    """

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        use_fallback: bool = False,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Optional[Callable[[], float]] = None,
        fallback: Optional[FallbackSignalAnalyzer] = None,
        sentiment_pipeline: PipelineSpec = SENTIMENT_PIPELINE,
        fake_review_pipeline: PipelineSpec = FAKE_REVIEW_PIPELINE,
    ):
        self._llm_client = llm_client
        self.use_fallback = use_fallback
        self.provider = provider
        self.model = model
        self._sleep = sleep
        self._jitter = jitter or (lambda: random.uniform(0, RATE_LIMIT_MAX_JITTER))
        self.fallback = fallback or FallbackSignalAnalyzer()
        self.sentiment_pipeline = sentiment_pipeline
        self.fake_review_pipeline = fake_review_pipeline
        self._total_cost = 0.0
        self.stats = {
            "batches": 0,
            "external_calls": 0,
            "fallback_batches": 0,
            "rate_limited": 0,
        }

    def _resolve_client(self) -> Optional[LLMClient]:
        """Client LLM, ou None si aucun n'est configuré (mode fallback)."""
        if self._llm_client is None:
            try:
                client = get_llm_client(provider=self.provider, model=self.model)
            except ValueError as e:
                logger.warning(f"Scoring service unavailable, using fallback analysis: {e}")
                self.use_fallback = True
                return None
            if not client.api_key:
                logger.warning(f"No API key for {client.provider.value}, using fallback analysis")
                self.use_fallback = True
                return None
            self._llm_client = client
        return self._llm_client

    @property
    def fallback_only(self) -> bool:
        return self.use_fallback or self._resolve_client() is None

    async def analyze_sentiment(self, reviews: Sequence[RawReview]) -> List[SentimentAnalysis]:
        """Sentiment + incohérence note/texte pour chaque review, dans l'ordre d'entrée."""
        if self.fallback_only:
            return [self.fallback.analyze_sentiment(r) for r in reviews]

        async def process(batch: Sequence[RawReview], index: int) -> List[SentimentAnalysis]:
            content = await self._call_with_retry(
                self.sentiment_pipeline, SENTIMENT_SYSTEM, format_sentiment_batch(batch), index
            )
            if content is not None:
                try:
                    return parse_sentiment_response(content, batch)
                except AnalysisError as e:
                    logger.warning(
                        f"Unparseable sentiment response for batch {index}: {e}",
                        extra={"pipeline": "sentiment", "batch": index},
                    )
            self.stats["fallback_batches"] += 1
            return [self.fallback.analyze_sentiment(r) for r in batch]

        return await self._run_pipeline(self.sentiment_pipeline, reviews, process)

    async def detect_fake_reviews(self, reviews: Sequence[RawReview]) -> List[FakeReviewAnalysis]:
        """Verdict de fausse review pour chaque review, dans l'ordre d'entrée."""
        if self.fallback_only:
            return [self.fallback.analyze_fake_review(r) for r in reviews]

        async def process(batch: Sequence[RawReview], index: int) -> List[FakeReviewAnalysis]:
            content = await self._call_with_retry(
                self.fake_review_pipeline, FAKE_REVIEW_SYSTEM, format_fake_review_batch(batch), index
            )
            if content is not None:
                try:
                    return parse_fake_review_response(content, batch)
                except AnalysisError as e:
                    logger.warning(
                        f"Unparseable fake-review response for batch {index}: {e}",
                        extra={"pipeline": "fake_review", "batch": index},
                    )
            self.stats["fallback_batches"] += 1
            return [self.fallback.analyze_fake_review(r) for r in batch]

        return await self._run_pipeline(self.fake_review_pipeline, reviews, process)

    async def analyze(self, reviews: Sequence[RawReview], concurrent: bool = True) -> AnalysisResult:
        """
        Lance les deux pipelines.

        Args:
            reviews: Reviews à analyser
            concurrent: True = sentiment et fake_review en parallèle

        Raises:
            RateLimitExceededError si un batch épuise son backoff
        """
        if concurrent:
            outcomes = await asyncio.gather(
                self.analyze_sentiment(reviews),
                self.detect_fake_reviews(reviews),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
            sentiment, fake_reviews = outcomes
        else:
            sentiment = await self.analyze_sentiment(reviews)
            fake_reviews = await self.detect_fake_reviews(reviews)

        result = AnalysisResult(
            sentiment=sentiment,
            fake_reviews=fake_reviews,
            fallback_only=self.fallback_only,
        )
        logger.info(
            f"Analyzed {len(reviews)} reviews: {result.mismatch_count} mismatches, "
            f"{result.fake_count} suspected fakes (fallback_only={result.fallback_only})"
        )
        return result

    async def analyze_screened(self, reviews: Sequence[RawReview], concurrent: bool = True) -> AnalysisResult:
        """
        Comme `analyze`, après passage du filtre qualité.

        Les reviews vides ou composées uniquement d'emojis ne partent pas
        au service de scoring : elles reçoivent directement les verdicts
        déterministes. Chaque review garde un verdict, dans l'ordre d'entrée.
        """
        screen = screen_for_analysis(reviews)
        parts = []
        if screen.analyzable:
            parts.append(await self.analyze(screen.analyzable, concurrent=concurrent))
        if screen.skipped:
            parts.append(AnalysisResult(
                sentiment=[self.fallback.analyze_sentiment(r) for r in screen.skipped],
                fake_reviews=[self.fallback.analyze_fake_review(r) for r in screen.skipped],
                fallback_only=self.fallback_only,
            ))

        result = AnalysisResult.combine(parts, list(reviews))
        result.fallback_only = self.fallback_only
        result.quality = screen.stats
        return result

    async def _run_pipeline(
        self,
        spec: PipelineSpec,
        reviews: Sequence[RawReview],
        process: Callable[[Sequence[RawReview], int], Awaitable[List[Any]]],
    ) -> List[Any]:
        """Découpe en batchs, traite par vagues, réassemble par index."""
        batches = [
            reviews[i:i + spec.batch_size]
            for i in range(0, len(reviews), spec.batch_size)
        ]
        results: List[List[Any]] = [[] for _ in batches]

        for wave_start in range(0, len(batches), spec.max_concurrent):
            wave = range(wave_start, min(wave_start + spec.max_concurrent, len(batches)))
            self.stats["batches"] += len(wave)

            outcomes = await asyncio.gather(
                *(process(batches[i], i) for i in wave),
                return_exceptions=True,
            )
            for i, outcome in zip(wave, outcomes):
                if isinstance(outcome, BaseException):
                    raise outcome
                results[i] = outcome

            if wave_start + spec.max_concurrent < len(batches):
                await self._sleep(spec.pause_seconds)

        return [item for batch_results in results for item in batch_results]

    async def _call_with_retry(
        self,
        spec: PipelineSpec,
        system: str,
        prompt: str,
        batch_index: int,
    ) -> Optional[str]:
        """
        Appelle le service de scoring avec retry.

        Returns:
            Le texte de la réponse, ou None si les erreurs (hors rate-limit)
            ont épuisé les tentatives.

        Raises:
            RateLimitExceededError après la dernière tentative rate-limitée
        """
        client = self._resolve_client()

        for attempt in range(MAX_ATTEMPTS):
            last = attempt == MAX_ATTEMPTS - 1
            try:
                self.stats["external_calls"] += 1
                response = await client.generate(
                    prompt=prompt,
                    system=system,
                    max_tokens=1024,
                    temperature=ANALYSIS_TEMPERATURE,
                )
                self._total_cost += response.cost_usd
                return response.content

            except Exception as e:
                extra = {"pipeline": spec.name, "batch": batch_index, "attempt": attempt + 1}

                if is_rate_limit_error(e):
                    self.stats["rate_limited"] += 1
                    if last:
                        logger.error(f"Rate limit exhausted on {spec.name} batch {batch_index}", extra=extra)
                        raise RateLimitExceededError(
                            f"Scoring service rate limit exceeded after {MAX_ATTEMPTS} attempts "
                            f"({spec.name} batch {batch_index})",
                            attempts=MAX_ATTEMPTS,
                        )
                    delay = (2 ** attempt) * RATE_LIMIT_BASE_DELAY + self._jitter()
                    logger.warning(
                        f"Rate limited on {spec.name} batch {batch_index}, retrying in {delay:.1f}s",
                        extra=extra,
                    )
                    await self._sleep(delay)
                    continue

                if last:
                    logger.warning(
                        f"{spec.name} batch {batch_index} failed after {MAX_ATTEMPTS} attempts, "
                        f"using fallback: {e}",
                        extra=extra,
                    )
                    return None
                logger.warning(f"{spec.name} batch {batch_index} failed ({e}), retrying", extra=extra)
                await self._sleep(ERROR_RETRY_DELAY)

        return None

    @property
    def total_cost(self) -> float:
        """Coût total des appels LLM."""
        return self._total_cost
