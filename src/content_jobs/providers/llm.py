"""LLM completion provider contract, Anthropic implementation and JSON recovery."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

import anthropic

from content_jobs.articles.models import TokenUsage
from content_jobs.errors import LlmProviderError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7
JSON_ATTEMPTS = 2

# USD per 1M tokens: (input, output).
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-sonnet-4-20250514": (3.0, 15.0),
    "claude-sonnet-4-5": (3.0, 15.0),
    "claude-opus-4-5": (5.0, 25.0),
    "claude-haiku-4-5": (1.0, 5.0),
    "gpt-4o": (2.5, 10.0),
    "gpt-4o-mini": (0.15, 0.6),
}

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)

_JSON_REMINDER = (
    "Your previous reply could not be parsed. Respond with a single valid JSON object "
    "and nothing else."
)


@dataclass(slots=True, frozen=True)
class ModelConfig:
    model: str = DEFAULT_MODEL
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE


@dataclass(slots=True)
class Completion:
    output: str
    usage: TokenUsage


class LlmProvider(Protocol):
    def complete(
        self,
        *,
        system_prompt: str,
        user_input: str,
        model_config: ModelConfig,
    ) -> Completion:
        """Run one completion; raise `LlmProviderError` on failure."""


class AnthropicProvider:
    """`LlmProvider` backed by the Anthropic Messages API."""

    def __init__(
        self,
        *,
        api_key: str,
        timeout_seconds: float = 120.0,
        max_retries: int = 2,
        client: anthropic.Anthropic | None = None,
    ) -> None:
        self._client = client or anthropic.Anthropic(
            api_key=api_key,
            timeout=timeout_seconds,
            max_retries=max_retries,
        )

    def complete(
        self,
        *,
        system_prompt: str,
        user_input: str,
        model_config: ModelConfig,
    ) -> Completion:
        try:
            response = self._client.messages.create(
                model=model_config.model,
                max_tokens=model_config.max_tokens,
                temperature=model_config.temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_input}],
            )
        except anthropic.APIError as error:
            raise LlmProviderError(f"Anthropic request failed: {error}") from error

        usage = TokenUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if not text:
            raise LlmProviderError("Anthropic returned no text content", usage=usage)
        logger.debug(
            "Anthropic %s completion: %s in / %s out tokens",
            model_config.model,
            usage.input_tokens,
            usage.output_tokens,
        )
        return Completion(output=text, usage=usage)


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Recover a JSON object from model output: whole text, fenced block, outer braces."""

    text = text.strip()
    if not text:
        return None
    direct = _try_load_dict(text)
    if direct is not None:
        return direct

    fenced = _FENCED_JSON.search(text)
    if fenced is not None:
        payload = _try_load_dict(fenced.group(1))
        if payload is not None:
            return payload

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return _try_load_dict(text[start : end + 1])


def _try_load_dict(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def generate_json(
    provider: LlmProvider,
    *,
    system_prompt: str,
    user_input: str,
    model_config: ModelConfig,
    attempts: int = JSON_ATTEMPTS,
) -> tuple[dict[str, Any], TokenUsage]:
    """Complete and parse a JSON object, re-prompting once on unparseable output.

    Errors carry the usage accumulated across attempts.
    """

    usage = TokenUsage()
    prompt = user_input
    for attempt in range(1, attempts + 1):
        try:
            completion = provider.complete(
                system_prompt=system_prompt,
                user_input=prompt,
                model_config=model_config,
            )
        except LlmProviderError as error:
            if error.usage is not None:
                usage = usage + error.usage
            raise LlmProviderError(str(error), usage=usage) from error
        usage = usage + completion.usage
        payload = parse_json_object(completion.output)
        if payload is not None:
            return payload, usage
        logger.warning(
            "Unparseable JSON from %s (attempt %s/%s)",
            model_config.model,
            attempt,
            attempts,
        )
        prompt = f"{user_input}\n\n{_JSON_REMINDER}"
    raise LlmProviderError(
        f"Model output was not valid JSON after {attempts} attempts",
        usage=usage,
    )


def estimate_cost_usd(model: str, usage: TokenUsage) -> float:
    """Price a call from the per-model table; unknown models cost nothing."""

    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        return 0.0
    input_price, output_price = pricing
    return (usage.input_tokens * input_price + usage.output_tokens * output_price) / 1_000_000
