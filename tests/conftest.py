"""Shared test fixtures and fakes."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest

from content_jobs.articles.models import TokenUsage
from content_jobs.bootstrap import Runtime, build_runtime
from content_jobs.config import ImageSettings, Settings
from content_jobs.jobs.repository import JobRepository
from content_jobs.providers.blob import LocalBlobStore
from content_jobs.providers.http import HttpFetcher
from content_jobs.providers.llm import Completion, ModelConfig
from content_jobs.providers.serp import KeywordMetrics, KeywordResearch, SerpResult

CALL_USAGE = TokenUsage(input_tokens=100, output_tokens=50)

ARTICLE_CONTENT = """Good boots keep your feet dry. They help you walk far.

## Why hiking boots matter

Hiking boots give you grip on rocks. They keep mud out. Your feet stay warm.

## How to pick a pair

Try boots on late in the day. Your feet are larger then. Walk around the store.

## Caring for your boots

Clean them after each trip. Let them dry in the air. Store them in a cool place.
"""


@dataclass
class LlmCall:
    system_prompt: str
    user_input: str
    model_config: ModelConfig


@dataclass
class ScriptedLlm:
    """Returns queued responses in order; dicts are sent as JSON text."""

    responses: list[Any] = field(default_factory=list)
    usage: TokenUsage = CALL_USAGE
    calls: list[LlmCall] = field(default_factory=list)
    on_call: Callable[[int], None] | None = None

    def queue(self, *responses: Any) -> ScriptedLlm:
        self.responses.extend(responses)
        return self

    def complete(
        self,
        *,
        system_prompt: str,
        user_input: str,
        model_config: ModelConfig,
    ) -> Completion:
        self.calls.append(
            LlmCall(
                system_prompt=system_prompt,
                user_input=user_input,
                model_config=model_config,
            ),
        )
        if self.on_call is not None:
            self.on_call(len(self.calls))
        if not self.responses:
            raise AssertionError("ScriptedLlm ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            response = json.dumps(response)
        return Completion(output=response, usage=self.usage)


@dataclass
class FakeKeywordProvider:
    research_result: KeywordResearch | None = None
    error: Exception | None = None
    calls: list[str] = field(default_factory=list)

    def research(self, keyword: str, *, location_code: int, language_code: str) -> KeywordResearch:
        self.calls.append(keyword)
        if self.error is not None:
            raise self.error
        if self.research_result is not None:
            return self.research_result
        return KeywordResearch(
            keyword=keyword,
            metrics=KeywordMetrics(search_volume=5400, difficulty=32, intent="commercial", cpc=1.2),
            serp_results=[
                SerpResult(
                    rank=index,
                    url=f"https://example.com/{index}",
                    title=f"Competitor {index}",
                    description="x" * 100,
                )
                for index in range(1, 4)
            ],
            paa_questions=[
                "What are the best hiking boots?",
                "Are hiking boots worth it?",
                "How should hiking boots fit?",
            ],
            related_keywords=["trail shoes", "waterproof boots"],
            keyword_suggestions=["hiking boots for women"],
            cost_usd=0.01,
        )


@dataclass
class FakePublisher:
    page_id: str = "page-1"
    error: Exception | None = None
    published: list[dict[str, Any]] = field(default_factory=list)

    def publish(self, *, keyword: str, article: dict[str, Any], seo: dict[str, Any] | None) -> str:
        if self.error is not None:
            raise self.error
        self.published.append({"keyword": keyword, "article": article, "seo": seo})
        return self.page_id


def writer_response(
    *,
    title: str = "Hiking Boots Guide for New Hikers",
    content: str = ARTICLE_CONTENT,
) -> dict[str, Any]:
    return {
        "title": title,
        "slug": "hiking-boots-guide",
        "content": content,
        "excerpt": "How to pick, fit and care for your first pair of hiking boots.",
        "headings": [],
    }


def seo_response(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "meta_title": "Hiking Boots Guide",
        "meta_description": "Pick the right hiking boots with this simple guide.",
        "internal_links": [
            {"anchor_text": "trail shoes", "suggested_path": "/trail-shoes", "reason": "related"},
        ],
        "suggestions": ["Add a sizing table"],
        "optimization_score": 82,
    }
    payload.update(overrides)
    return payload


def qa_response(score: int = 90, *, feedback: str = "Looks good.", issues=None) -> dict[str, Any]:
    return {
        "dimension_scores": {
            "readability": score,
            "seo": score,
            "accuracy": score,
            "engagement": score,
            "brand_voice": score,
        },
        "issues": issues or [],
        "feedback": feedback,
    }


def image_transport(
    *,
    rate_limited: Callable[[str], bool] = lambda url: False,
) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if rate_limited(url):
            return httpx.Response(429, request=request)
        if "missing" in url:
            return httpx.Response(404, request=request)
        return httpx.Response(
            200,
            content=f"image:{url}".encode(),
            headers={"content-type": "image/png"},
            request=request,
        )

    return httpx.MockTransport(handler)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "content_jobs.db",
        images=ImageSettings(blob_root=tmp_path / "blobs", delay_between_items_ms=0),
    )


@pytest.fixture()
def repository(settings: Settings) -> Iterator[JobRepository]:
    repo = JobRepository(settings.db_path, retry_backoff_minutes=(1, 5, 15, 60))
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def llm() -> ScriptedLlm:
    return ScriptedLlm()


@pytest.fixture()
def keyword_provider() -> FakeKeywordProvider:
    return FakeKeywordProvider()


@pytest.fixture()
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture()
def runtime(
    settings: Settings,
    llm: ScriptedLlm,
    keyword_provider: FakeKeywordProvider,
    publisher: FakePublisher,
) -> Iterator[Runtime]:
    fetcher = HttpFetcher(transport=image_transport())
    built = build_runtime(
        settings,
        llm=llm,
        keyword_provider=keyword_provider,
        fetcher=fetcher,
        blob_store=LocalBlobStore(settings.images.blob_root),
        publisher=publisher,
    )
    yield built
    built.close()
    fetcher.close()
