"""Stage name to agent map consumed by the article orchestrator."""

from __future__ import annotations

from collections.abc import Iterable

from content_jobs.articles.agents.base import Agent
from content_jobs.articles.models import AgentType
from content_jobs.errors import AgentNotFound
from content_jobs.jobs.registry import Registry

PIPELINE_ORDER: tuple[AgentType, ...] = (
    AgentType.RESEARCH,
    AgentType.WRITER,
    AgentType.SEO,
    AgentType.QA,
)


class AgentRegistry(Registry[Agent]):
    def __init__(self) -> None:
        super().__init__(not_found=AgentNotFound)

    def register_agent(self, agent: Agent) -> None:
        self.register(agent.agent_type.value, agent)

    def get_agent(self, agent_type: AgentType) -> Agent:
        return self.get(agent_type.value)

    def pipeline_agents(self, skip: Iterable[AgentType] = ()) -> list[Agent]:
        """Agents in execution order, without the skipped stages."""

        skipped = frozenset(skip)
        return [self.get(stage.value) for stage in PIPELINE_ORDER if stage not in skipped]

    def missing_stages(self) -> list[AgentType]:
        return [stage for stage in PIPELINE_ORDER if stage.value not in self]
