"""
ReviewSight AI Module
=====================

Analyse des reviews via un service de scoring externe (LLM) :
- Sentiment et incohérences note/texte
- Détection des fausses reviews
- Fallback déterministe quand le service est dégradé ou désactivé
"""

from .llm_client import (
    LLMClient,
    LLMProvider,
    LLMResponse,
    AnthropicClient,
    OpenAIClient,
    get_llm_client,
    estimate_cost,
    is_rate_limit_error,
)
from .review_analyzer import (
    BatchedAnalysisEngine,
    PipelineSpec,
    SENTIMENT_PIPELINE,
    FAKE_REVIEW_PIPELINE,
)

__all__ = [
    "LLMClient",
    "LLMProvider",
    "LLMResponse",
    "AnthropicClient",
    "OpenAIClient",
    "get_llm_client",
    "estimate_cost",
    "is_rate_limit_error",
    "BatchedAnalysisEngine",
    "PipelineSpec",
    "SENTIMENT_PIPELINE",
    "FAKE_REVIEW_PIPELINE",
]
