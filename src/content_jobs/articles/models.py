"""Domain models for the multi-agent article pipeline."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from content_jobs.errors import ValidationError

DEFAULT_MAX_ITERATIONS = 3
MAX_ITERATIONS_LIMIT = 10
MIN_TARGET_WORD_COUNT = 300
MAX_TARGET_WORD_COUNT = 10_000
DEFAULT_TARGET_WORD_COUNT = 1500


class AgentType(str, Enum):
    """Pipeline stages, in execution order."""

    RESEARCH = "research"
    WRITER = "writer"
    SEO = "seo"
    QA = "qa"


SKIPPABLE_AGENTS = frozenset({AgentType.SEO})


class ArticleStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STEP_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED})


@dataclass(slots=True, frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def as_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(slots=True)
class ArticleSettings:
    """Per-article pipeline options supplied at creation time."""

    auto_post: bool = False
    target_word_count: int | None = None
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    persona_overrides: dict[str, str] = field(default_factory=dict)
    skip_agents: frozenset[AgentType] = frozenset()
    context: str | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None) -> ArticleSettings:  # noqa: C901
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise ValidationError("settings must be an object")
        unknown = sorted(set(raw) - _SETTINGS_KEYS)
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(unknown)}")

        auto_post = raw.get("auto_post", False)
        if not isinstance(auto_post, bool):
            raise ValidationError("auto_post must be a boolean")

        target = raw.get("target_word_count")
        if target is not None and (
            not _is_int(target) or not MIN_TARGET_WORD_COUNT <= target <= MAX_TARGET_WORD_COUNT
        ):
            raise ValidationError(
                f"target_word_count must be between {MIN_TARGET_WORD_COUNT} "
                f"and {MAX_TARGET_WORD_COUNT}",
            )

        max_iterations = raw.get("max_iterations", DEFAULT_MAX_ITERATIONS)
        if not _is_int(max_iterations) or not 1 <= max_iterations <= MAX_ITERATIONS_LIMIT:
            raise ValidationError(f"max_iterations must be between 1 and {MAX_ITERATIONS_LIMIT}")

        overrides = raw.get("persona_overrides") or {}
        if not isinstance(overrides, Mapping):
            raise ValidationError("persona_overrides must be an object")
        stages = {agent.value for agent in AgentType}
        for stage, persona_id in overrides.items():
            if stage not in stages:
                raise ValidationError(f"persona_overrides has unknown stage: {stage}")
            if not isinstance(persona_id, str) or not persona_id:
                raise ValidationError(f"persona_overrides.{stage} must be a persona id")

        skip_raw = raw.get("skip_agents") or []
        if not isinstance(skip_raw, list | tuple | set | frozenset):
            raise ValidationError("skip_agents must be a list")
        skip: set[AgentType] = set()
        for name in skip_raw:
            try:
                agent = AgentType(name)
            except ValueError as error:
                raise ValidationError(f"skip_agents has unknown stage: {name}") from error
            if agent not in SKIPPABLE_AGENTS:
                raise ValidationError(f"Stage cannot be skipped: {agent.value}")
            skip.add(agent)

        context = raw.get("context")
        if context is not None and not isinstance(context, str):
            raise ValidationError("context must be a string")

        return cls(
            auto_post=auto_post,
            target_word_count=target,
            max_iterations=max_iterations,
            persona_overrides=dict(overrides),
            skip_agents=frozenset(skip),
            context=context,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "auto_post": self.auto_post,
            "target_word_count": self.target_word_count,
            "max_iterations": self.max_iterations,
            "persona_overrides": dict(self.persona_overrides),
            "skip_agents": sorted(agent.value for agent in self.skip_agents),
            "context": self.context,
        }


_SETTINGS_KEYS = frozenset(
    {
        "auto_post",
        "target_word_count",
        "max_iterations",
        "persona_overrides",
        "skip_agents",
        "context",
    },
)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(slots=True)
class Persona:
    """Prompt and model parameters bound to one agent invocation."""

    id: str
    agent_type: AgentType
    name: str
    system_prompt: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 4096
    is_default: bool = False
    is_active: bool = True


@dataclass(slots=True)
class PersonaCreate:
    agent_type: AgentType
    name: str
    system_prompt: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 4096
    is_default: bool = False


@dataclass(slots=True)
class AgentResult:
    """Structured agent output plus the tokens spent producing it."""

    output: dict[str, Any]
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(slots=True)
class ArticleJobView:
    id: str
    keyword: str
    settings: ArticleSettings
    status: ArticleStatus
    current_agent: str | None
    current_iteration: int
    max_iterations: int
    progress_percent: int
    total_tokens_used: int
    estimated_cost_usd: float
    final_output: dict[str, Any] | None
    page_id: str | None
    last_error: str | None
    background_job_id: str | None
    created_by: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime


@dataclass(slots=True)
class JobStepView:
    id: str
    job_id: str
    agent_type: str
    persona_id: str | None
    iteration: int
    status: StepStatus
    input: dict[str, Any] | None
    output: dict[str, Any] | None
    prompt_tokens: int
    completion_tokens: int
    tokens_used: int
    logs: list[dict[str, Any]]
    error_message: str | None
    started_at: datetime | None
    completed_at: datetime | None
    duration_ms: int | None
    created_at: datetime
