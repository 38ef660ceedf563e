"""Agent interface and the per-invocation context handed to agents."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

from content_jobs.articles.models import AgentResult, AgentType, Persona, TokenUsage
from content_jobs.errors import StageFailure, ValidationError
from content_jobs.providers.llm import LlmProvider, ModelConfig
from content_jobs.storage.common import utc_now

logger = logging.getLogger(__name__)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

StepLogSink = Callable[[dict[str, Any]], None]


@dataclass(slots=True)
class AgentContext:
    """What an agent may use while running one pipeline step."""

    article_id: str
    iteration: int
    persona: Persona
    llm: LlmProvider
    log_sink: StepLogSink | None = None
    entries: list[dict[str, Any]] = field(default_factory=list)

    @property
    def model_config(self) -> ModelConfig:
        return ModelConfig(
            model=self.persona.model,
            max_tokens=self.persona.max_tokens,
            temperature=self.persona.temperature,
        )

    def log(self, level: str, message: str, data: Any = None) -> None:
        """Append to the step's log and mirror it to `logging`."""

        logger.log(
            _LEVELS.get(level, logging.INFO),
            "[article %s] [%s] %s",
            self.article_id,
            self.persona.agent_type.value,
            message,
        )
        entry: dict[str, Any] = {
            "timestamp": utc_now().isoformat(),
            "level": level,
            "message": message,
        }
        if data is not None:
            entry["data"] = data
        self.entries.append(entry)
        if self.log_sink is not None:
            self.log_sink(entry)


class Agent(Protocol):
    """One pipeline stage."""

    agent_type: AgentType

    def run(self, agent_input: dict[str, Any], context: AgentContext) -> AgentResult:
        """Produce the stage output.

        Raise `ValidationError` for bad input, `StageFailure` carrying the
        call usage when the model reply is unusable, and `LlmProviderError`
        when the model call fails.
        """


@contextmanager
def model_output_checks(agent_type: AgentType, usage: TokenUsage) -> Iterator[None]:
    """Turn output validation errors into a `StageFailure` that keeps the call usage."""

    try:
        yield
    except ValidationError as error:
        raise StageFailure(agent_type.value, str(error), usage=usage) from error
