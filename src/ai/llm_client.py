"""
ReviewSight LLM Client
======================

Client du service de scoring externe : Claude (Anthropic) par défaut,
OpenAI en alternative.

Le service est utilisé pour :
1. Classer le sentiment des reviews (et repérer les incohérences note/texte)
2. Estimer la probabilité qu'une review soit fausse

Chaque provider n'implémente que `_complete` ; la vérification de la clé,
le calcul du coût et la construction de LLMResponse sont communs.
Les SDK asynchrones permettent à plusieurs batchs de tourner en parallèle.
"""

import os
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

import anthropic
import openai

logger = logging.getLogger(__name__)


class LLMProvider(Enum):
    """Providers supportés."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


DEFAULT_MODELS = {
    LLMProvider.ANTHROPIC: "claude-3-haiku-20240307",
    LLMProvider.OPENAI: "gpt-4o-mini",
}

# USD par million de tokens : (input, output)
MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "claude-3-haiku-20240307": (0.25, 1.25),
    "claude-3-5-haiku-20241022": (0.8, 4.0),
    "claude-sonnet-4-20250514": (3.0, 15.0),
    "gpt-4o": (2.5, 10.0),
    "gpt-4o-mini": (0.15, 0.6),
}
FALLBACK_PRICING = (3.0, 15.0)


def estimate_cost(model: str, tokens_input: int, tokens_output: int) -> float:
    """Coût d'un appel en USD (tarif le plus cher si le modèle est inconnu)."""
    price_in, price_out = MODEL_PRICING.get(model, FALLBACK_PRICING)
    return round((tokens_input * price_in + tokens_output * price_out) / 1_000_000, 6)


@dataclass
class LLMResponse:
    """Réponse du service de scoring."""
    content: str
    model: str
    provider: LLMProvider
    tokens_input: int
    tokens_output: int
    cost_usd: float

    @property
    def total_tokens(self) -> int:
        return self.tokens_input + self.tokens_output


def is_rate_limit_error(error: BaseException) -> bool:
    """
    Détecte un signal de rate-limit, quel que soit le SDK.

    Exceptions RateLimitError des SDK, HTTP 429, ou message contenant "rate limit".
    """
    if isinstance(error, (anthropic.RateLimitError, openai.RateLimitError)):
        return True
    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if status == 429:
        return True
    message = str(error).lower()
    return "rate limit" in message or "rate_limit" in message


class LLMClient(ABC):
    """
    Client de scoring abstrait.

    Les sous-classes déclarent `provider` et `env_keys`, et implémentent
    `_complete` qui renvoie (texte, tokens input, tokens output).
    """

    provider: LLMProvider
    env_keys: Tuple[str, ...] = ()

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key or next(
            (os.getenv(key) for key in self.env_keys if os.getenv(key)), None
        )
        self.model = model or DEFAULT_MODELS[self.provider]
        self._sdk = None

        if not self.api_key:
            logger.warning(f"{' / '.join(self.env_keys) or 'API key'} not set - scoring service disabled")

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Génère une réponse."""
        if not self.api_key:
            raise ValueError(f"{self.provider.value} API key required")

        content, tokens_input, tokens_output = await self._complete(
            prompt, system, max_tokens, temperature
        )
        return LLMResponse(
            content=content,
            model=self.model,
            provider=self.provider,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            cost_usd=estimate_cost(self.model, tokens_input, tokens_output),
        )

    @abstractmethod
    async def _complete(
        self,
        prompt: str,
        system: Optional[str],
        max_tokens: int,
        temperature: float,
    ) -> Tuple[str, int, int]:
        ...


class AnthropicClient(LLMClient):
    """
    Claude (Anthropic).

    claude-3-haiku-20240307 est rapide et suffisant pour l'analyse de reviews ;
    claude-sonnet-4-20250514 est plus précis mais plus cher.
    """

    provider = LLMProvider.ANTHROPIC
    env_keys = ("ANTHROPIC_API_KEY",)

    async def _complete(self, prompt, system, max_tokens, temperature):
        if self._sdk is None:
            self._sdk = anthropic.AsyncAnthropic(api_key=self.api_key)

        request = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            request["system"] = system

        message = await self._sdk.messages.create(**request)
        text = "".join(block.text for block in message.content if getattr(block, "text", None))
        return text, message.usage.input_tokens, message.usage.output_tokens


class OpenAIClient(LLMClient):
    """OpenAI GPT, utilisé quand seule une clé OpenAI est disponible."""

    provider = LLMProvider.OPENAI
    env_keys = ("OPENAI_API_KEY", "GPT_API_KEY")

    async def _complete(self, prompt, system, max_tokens, temperature):
        if self._sdk is None:
            self._sdk = openai.AsyncOpenAI(api_key=self.api_key)

        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})

        completion = await self._sdk.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        usage = completion.usage
        return (
            completion.choices[0].message.content or "",
            usage.prompt_tokens,
            usage.completion_tokens,
        )


def get_llm_client(
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> LLMClient:
    """
    Factory du client de scoring.

    Priorité :
    1. Provider explicite
    2. ANTHROPIC_API_KEY présente → Claude
    3. OPENAI_API_KEY ou GPT_API_KEY présente → GPT

    Raises:
        ValueError: aucun provider explicite et aucune clé disponible
    """
    if provider == "anthropic":
        return AnthropicClient(model=model)
    if provider == "openai":
        return OpenAIClient(model=model)

    if os.getenv("ANTHROPIC_API_KEY"):
        return AnthropicClient(model=model)
    if os.getenv("OPENAI_API_KEY") or os.getenv("GPT_API_KEY"):
        return OpenAIClient(model=model)

    raise ValueError(
        "No LLM API key found. Set ANTHROPIC_API_KEY, OPENAI_API_KEY, or GPT_API_KEY"
    )
