"""Pipeline stage agents."""

from content_jobs.articles.agents.base import Agent, AgentContext
from content_jobs.articles.agents.qa import QaAgent
from content_jobs.articles.agents.research import ResearchAgent
from content_jobs.articles.agents.seo import SeoAgent
from content_jobs.articles.agents.writer import WriterAgent

__all__ = [
    "Agent",
    "AgentContext",
    "QaAgent",
    "ResearchAgent",
    "SeoAgent",
    "WriterAgent",
]
