"""Keyword research and SERP data for the research stage."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from content_jobs.errors import ContentJobsError

logger = logging.getLogger(__name__)

STATUS_OK = 20000

KEYWORD_OVERVIEW_ENDPOINT = "/v3/dataforseo_labs/google/keyword_overview/live"
SERP_ENDPOINT = "/v3/serp/google/organic/live/advanced"
RELATED_KEYWORDS_ENDPOINT = "/v3/dataforseo_labs/google/related_keywords/live"
KEYWORD_SUGGESTIONS_ENDPOINT = "/v3/dataforseo_labs/google/keyword_suggestions/live"


class KeywordResearchError(ContentJobsError):
    """Keyword provider request failed or returned an error status."""


@dataclass(slots=True)
class KeywordMetrics:
    search_volume: int | None = None
    difficulty: int | None = None
    intent: str | None = None
    cpc: float | None = None
    competition: float | None = None


@dataclass(slots=True)
class SerpResult:
    rank: int
    url: str
    title: str
    description: str
    domain: str | None = None


@dataclass(slots=True)
class KeywordResearch:
    keyword: str
    metrics: KeywordMetrics = field(default_factory=KeywordMetrics)
    serp_results: list[SerpResult] = field(default_factory=list)
    paa_questions: list[str] = field(default_factory=list)
    related_keywords: list[str] = field(default_factory=list)
    keyword_suggestions: list[str] = field(default_factory=list)
    cost_usd: float = 0.0


class KeywordResearchProvider(Protocol):
    def research(self, keyword: str, *, location_code: int, language_code: str) -> KeywordResearch:
        """Collect keyword metrics, SERP results and related queries."""


class DataForSeoClient:
    """`KeywordResearchProvider` over the DataForSEO Labs and SERP APIs."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        login: str,
        password: str,
        base_url: str = "https://api.dataforseo.com",
        timeout_seconds: float = 60.0,
        serp_depth: int = 10,
        related_limit: int = 15,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.serp_depth = serp_depth
        self.related_limit = related_limit
        self._client = httpx.Client(
            base_url=base_url,
            auth=httpx.BasicAuth(login, password),
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    def research(self, keyword: str, *, location_code: int, language_code: str) -> KeywordResearch:
        logger.info("Starting keyword research for: %s", keyword)
        target = {"location_code": location_code, "language_code": language_code}
        result = KeywordResearch(keyword=keyword)

        overview, cost = self._post(KEYWORD_OVERVIEW_ENDPOINT, {"keywords": [keyword], **target})
        result.cost_usd += cost
        result.metrics = _parse_metrics(overview)

        serp, cost = self._post(
            SERP_ENDPOINT,
            {"keyword": keyword, "depth": self.serp_depth, **target},
        )
        result.cost_usd += cost
        result.serp_results, result.paa_questions = _parse_serp(serp, depth=self.serp_depth)

        related, cost = self._post(
            RELATED_KEYWORDS_ENDPOINT,
            {"keyword": keyword, "limit": self.related_limit, **target},
        )
        result.cost_usd += cost
        result.related_keywords = _parse_keyword_items(related)

        suggestions, cost = self._post(
            KEYWORD_SUGGESTIONS_ENDPOINT,
            {"keyword": keyword, "limit": self.related_limit, **target},
        )
        result.cost_usd += cost
        result.keyword_suggestions = _parse_keyword_items(suggestions)

        logger.info("Keyword research complete. Total cost: $%.4f", result.cost_usd)
        return result

    def close(self) -> None:
        self._client.close()

    def _post(self, endpoint: str, task: dict[str, Any]) -> tuple[list[dict[str, Any]], float]:
        try:
            response = self._client.post(endpoint, json=[task])
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as error:
            raise KeywordResearchError(
                f"HTTP {error.response.status_code} from {endpoint}",
            ) from error
        except (httpx.HTTPError, ValueError) as error:
            raise KeywordResearchError(f"Request to {endpoint} failed: {error}") from error

        if body.get("status_code") != STATUS_OK:
            raise KeywordResearchError(f"{endpoint} failed: {body.get('status_message')}")
        tasks = body.get("tasks") or []
        task_result = (tasks[0].get("result") if tasks else None) or []
        return task_result, float(body.get("cost") or 0.0)


def _first_items(result: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if not result:
        return []
    return result[0].get("items") or []


def _parse_metrics(result: list[dict[str, Any]]) -> KeywordMetrics:
    items = _first_items(result)
    if not items:
        return KeywordMetrics()
    item = items[0]
    info = item.get("keyword_info") or {}
    properties = item.get("keyword_properties") or {}
    intent = item.get("search_intent_info") or {}
    return KeywordMetrics(
        search_volume=info.get("search_volume"),
        difficulty=properties.get("keyword_difficulty"),
        intent=intent.get("main_intent"),
        cpc=info.get("cpc"),
        competition=info.get("competition"),
    )


def _parse_serp(result: list[dict[str, Any]], *, depth: int) -> tuple[list[SerpResult], list[str]]:
    organic: list[SerpResult] = []
    questions: list[str] = []
    for item in _first_items(result):
        item_type = item.get("type")
        if item_type == "organic" and len(organic) < depth:
            organic.append(
                SerpResult(
                    rank=int(item.get("rank_group") or len(organic) + 1),
                    url=item.get("url") or "",
                    title=item.get("title") or "",
                    description=item.get("description") or "",
                    domain=item.get("domain"),
                ),
            )
        elif item_type == "people_also_ask":
            for question in item.get("items") or []:
                title = question.get("title")
                if title:
                    questions.append(title)
    return organic, questions


def _parse_keyword_items(result: list[dict[str, Any]]) -> list[str]:
    keywords: list[str] = []
    for item in _first_items(result):
        keyword = (item.get("keyword_data") or {}).get("keyword") or item.get("keyword")
        if keyword:
            keywords.append(keyword)
    return keywords
