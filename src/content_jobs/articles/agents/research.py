"""Research stage: keyword metrics, competitors and reader questions. No LLM call."""

from __future__ import annotations

from typing import Any

from content_jobs.articles.agents.base import AgentContext
from content_jobs.articles.models import AgentResult, AgentType, TokenUsage
from content_jobs.articles.validation import require_keys, validate_research_output
from content_jobs.providers.http import HttpFetcher
from content_jobs.providers.serp import KeywordResearchProvider, SerpResult

DEFAULT_COMPETITOR_WORD_COUNT = 1500
MIN_RECOMMENDED_WORD_COUNT = 300
MAX_RECOMMENDED_WORD_COUNT = 5000
COMPETITOR_UPLIFT = 1.15
ANALYZED_COMPETITORS = 5
MAX_COMPETITORS = 10
MAX_CONTENT_GAPS = 5
_GAP_MARKERS = ("how", "what", "why")


class ResearchAgent:
    agent_type = AgentType.RESEARCH

    def __init__(
        self,
        *,
        provider: KeywordResearchProvider,
        location_code: int = 2840,
        language_code: str = "en",
        page_fetcher: HttpFetcher | None = None,
    ) -> None:
        self.provider = provider
        self.location_code = location_code
        self.language_code = language_code
        self.page_fetcher = page_fetcher

    def run(self, agent_input: dict[str, Any], context: AgentContext) -> AgentResult:
        require_keys(agent_input, "keyword", label="research input")
        keyword = str(agent_input["keyword"])
        context.log("info", f'Starting keyword research for "{keyword}"')

        data = self.provider.research(
            keyword,
            location_code=self.location_code,
            language_code=self.language_code,
        )
        context.log("debug", f"Research data fetched. Cost: ${data.cost_usd:.4f}")

        competitors = [
            {"url": result.url, "title": result.title, "word_count": None, "headings": []}
            for result in data.serp_results[:MAX_COMPETITORS]
        ]
        word_counts: list[int] = []
        for index, result in enumerate(data.serp_results[:ANALYZED_COMPETITORS]):
            count, headings = self._analyze_competitor(result, context)
            competitors[index]["word_count"] = count
            competitors[index]["headings"] = headings
            word_counts.append(count)

        average = (
            round(sum(word_counts) / len(word_counts))
            if word_counts
            else DEFAULT_COMPETITOR_WORD_COUNT
        )
        output = {
            "keyword": keyword,
            "keyword_data": {
                "search_volume": data.metrics.search_volume,
                "difficulty": data.metrics.difficulty,
                "intent": data.metrics.intent,
                "cpc": data.metrics.cpc,
            },
            "competitors": competitors,
            "related_keywords": [*data.related_keywords[:10], *data.keyword_suggestions[:5]],
            "paa_questions": data.paa_questions[:10],
            "recommended_word_count": recommended_word_count(average),
            "content_gaps": content_gaps(data.paa_questions),
        }
        validate_research_output(output)
        context.log(
            "info",
            f"Research complete. {len(competitors)} competitors, "
            f"recommended word count {output['recommended_word_count']}",
        )
        return AgentResult(output=output, usage=TokenUsage())

    def _analyze_competitor(
        self,
        result: SerpResult,
        context: AgentContext,
    ) -> tuple[int, list[str]]:
        if self.page_fetcher is not None and result.url:
            page = self.page_fetcher.analyze_page(result.url)
            if page is not None and page.word_count > 0:
                context.log("debug", f"Measured {page.word_count} words on {result.url}")
                return page.word_count, page.headings
        estimate = estimate_word_count(result.description)
        context.log("debug", f"Estimated word count for {result.url}: {estimate}")
        return estimate, []


def estimate_word_count(description: str) -> int:
    """Guess a page's length from its SERP snippet."""

    return max(800, min(len(description) * 12, 4000))


def recommended_word_count(average_competitor_words: int) -> int:
    recommended = round(average_competitor_words * COMPETITOR_UPLIFT)
    recommended = min(recommended, MAX_RECOMMENDED_WORD_COUNT)
    return max(MIN_RECOMMENDED_WORD_COUNT, recommended)


def content_gaps(questions: list[str]) -> list[str]:
    gaps = [
        f"Answer: {question}"
        for question in questions[:MAX_CONTENT_GAPS]
        if any(marker in question.lower() for marker in _GAP_MARKERS)
    ]
    return gaps[:MAX_CONTENT_GAPS]
