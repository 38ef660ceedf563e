from __future__ import annotations

from typing import Any

import allure
import pytest

from content_jobs.articles.agents.base import AgentContext
from content_jobs.articles.agents.qa import (
    QaAgent,
    adjusted_score,
    check_content,
    dedupe_issues,
    make_issue,
    summarize_issues,
)
from content_jobs.articles.agents.research import (
    ResearchAgent,
    estimate_word_count,
    recommended_word_count,
)
from content_jobs.articles.agents.seo import SeoAgent, analyze_headings, analyze_keyword_density
from content_jobs.articles.agents.writer import WriterAgent, build_writer_prompt, normalize_article
from content_jobs.articles.models import AgentType, Persona, TokenUsage
from content_jobs.articles.text import Heading
from content_jobs.errors import StageFailure, ValidationError
from content_jobs.providers.http import PageAnalysis
from content_jobs.providers.llm import ModelConfig

from conftest import (
    CALL_USAGE,
    FakeKeywordProvider,
    ScriptedLlm,
    qa_response,
    seo_response,
    writer_response,
)

pytestmark = [
    allure.epic("Article Pipeline"),
    allure.feature("Agents"),
]

KEYWORD = "hiking boots"


class FakePageFetcher:
    def __init__(self, pages: dict[str, PageAnalysis]) -> None:
        self.pages = pages
        self.requested: list[str] = []

    def analyze_page(self, url: str) -> PageAnalysis | None:
        self.requested.append(url)
        return self.pages.get(url)


def make_context(
    agent_type: AgentType,
    llm: ScriptedLlm | None = None,
    sink: list[dict[str, Any]] | None = None,
) -> AgentContext:
    persona = Persona(
        id=f"{agent_type.value}-persona",
        agent_type=agent_type,
        name="Test persona",
        system_prompt="You are a test agent.",
        model="claude-haiku-4-5",
        temperature=0.3,
        max_tokens=1024,
    )
    return AgentContext(
        article_id="article-1",
        iteration=1,
        persona=persona,
        llm=llm or ScriptedLlm(),
        log_sink=sink.append if sink is not None else None,
    )


def written_article() -> dict[str, Any]:
    context = make_context(AgentType.WRITER)
    return normalize_article(writer_response(), context)


def test_research_builds_brief_from_keyword_data() -> None:
    provider = FakeKeywordProvider()
    sink: list[dict[str, Any]] = []
    context = make_context(AgentType.RESEARCH, sink=sink)

    result = ResearchAgent(provider=provider).run({"keyword": KEYWORD}, context)

    output = result.output
    assert provider.calls == [KEYWORD]
    assert result.usage == TokenUsage()
    assert output["keyword_data"] == {
        "search_volume": 5400,
        "difficulty": 32,
        "intent": "commercial",
        "cpc": 1.2,
    }
    assert [item["word_count"] for item in output["competitors"]] == [1200, 1200, 1200]
    assert output["recommended_word_count"] == 1380
    assert output["related_keywords"] == [
        "trail shoes",
        "waterproof boots",
        "hiking boots for women",
    ]
    assert output["content_gaps"] == [
        "Answer: What are the best hiking boots?",
        "Answer: How should hiking boots fit?",
    ]
    assert sink == context.entries
    assert sink[0]["message"] == 'Starting keyword research for "hiking boots"'


def test_research_prefers_measured_competitor_pages() -> None:
    fetcher = FakePageFetcher(
        {
            "https://example.com/1": PageAnalysis(
                url="https://example.com/1",
                word_count=2000,
                headings=["Sizing", "Break-in"],
            ),
        },
    )
    agent = ResearchAgent(
        provider=FakeKeywordProvider(),
        page_fetcher=fetcher,  # type: ignore[arg-type]
    )

    output = agent.run({"keyword": KEYWORD}, make_context(AgentType.RESEARCH)).output

    assert len(fetcher.requested) == 3
    assert output["competitors"][0]["word_count"] == 2000
    assert output["competitors"][0]["headings"] == ["Sizing", "Break-in"]
    assert output["competitors"][1]["headings"] == []
    assert output["recommended_word_count"] == 1687


def test_research_requires_keyword() -> None:
    with pytest.raises(ValidationError, match="research input is missing: keyword"):
        ResearchAgent(provider=FakeKeywordProvider()).run({}, make_context(AgentType.RESEARCH))


def test_word_count_heuristics() -> None:
    assert estimate_word_count("") == 800
    assert estimate_word_count("x" * 100) == 1200
    assert estimate_word_count("x" * 1000) == 4000
    assert recommended_word_count(100) == 300
    assert recommended_word_count(1000) == 1150
    assert recommended_word_count(10_000) == 5000


def test_writer_normalizes_model_output() -> None:
    long_title = "Hiking Boots " + "x" * 57
    llm = ScriptedLlm().queue(writer_response(title=long_title))
    context = make_context(AgentType.WRITER, llm)

    result = WriterAgent().run({"keyword": KEYWORD, "target_word_count": 900}, context)

    article = result.output
    assert len(article["title"]) == 60
    assert article["title"].endswith("...")
    assert article["slug"] == "hiking-boots-guide"
    assert [heading["text"] for heading in article["headings"]] == [
        "Why hiking boots matter",
        "How to pick a pair",
        "Caring for your boots",
    ]
    assert article["word_count"] == 72
    assert result.usage == CALL_USAGE
    assert llm.calls[0].system_prompt == "You are a test agent."
    assert llm.calls[0].model_config == ModelConfig(
        model="claude-haiku-4-5",
        max_tokens=1024,
        temperature=0.3,
    )
    assert "Target word count: 900 words (minimum 810, maximum 990)" in llm.calls[0].user_input
    assert any(entry["level"] == "warn" for entry in context.entries)


def test_writer_derives_slug_from_title_when_missing() -> None:
    payload = writer_response(title="Best Boots: 2026 Edition")
    payload["slug"] = ""

    article = normalize_article(payload, make_context(AgentType.WRITER))

    assert article["slug"] == "best-boots-2026-edition"


def test_writer_rejects_empty_content_and_keeps_call_usage() -> None:
    llm = ScriptedLlm().queue(writer_response(content=""))

    with pytest.raises(StageFailure, match="article.content") as raised:
        WriterAgent().run({"keyword": KEYWORD}, make_context(AgentType.WRITER, llm))

    assert raised.value.stage == "writer"
    assert raised.value.usage == CALL_USAGE


def test_writer_prompt_for_first_draft_and_revision() -> None:
    research = {
        "keyword_data": {"search_volume": 5400, "difficulty": None, "intent": None},
        "competitors": [{"title": "Rival guide"}],
        "paa_questions": ["How should hiking boots fit?"],
    }

    first = build_writer_prompt({"keyword": KEYWORD, "research": research, "context": "Beginners"})
    revision = build_writer_prompt(
        {
            "keyword": KEYWORD,
            "research": research,
            "qa_feedback": "Shorten the intro.",
            "previous_article": {"title": "Old", "word_count": 900, "content": "Old body"},
        },
    )

    assert "(minimum 1350, maximum 1650)" in first
    assert "- search volume: 5400" in first
    assert "- Rival guide" in first
    assert "Additional context: Beginners" in first
    assert "REVISION REQUEST" not in first
    assert "REVISION REQUEST" in revision
    assert "QA feedback: Shorten the intro." in revision
    assert "Old body" in revision
    assert "Rival guide" not in revision


def test_seo_builds_metadata_and_schema() -> None:
    article = written_article()
    llm = ScriptedLlm().queue(seo_response())

    result = SeoAgent(publisher_name="Trail Co").run(
        {"keyword": KEYWORD, "article": article},
        make_context(AgentType.SEO, llm),
    )

    output = result.output
    assert output["meta_title"] == "Hiking Boots Guide"
    assert output["optimization_score"] == 82
    assert output["heading_analysis"]["issues"] == []
    assert output["suggestions"] == ["Add a sizing table"]
    assert output["internal_links"][0]["suggested_path"] == "/trail-shoes"
    schema = output["schema_markup"]
    assert schema["@type"] == "Article"
    assert schema["headline"] == article["title"]
    assert schema["wordCount"] == 72
    assert schema["publisher"] == {"@type": "Organization", "name": "Trail Co"}
    assert result.usage == CALL_USAGE


def test_seo_truncates_meta_and_scores_locally_without_model_score() -> None:
    content = "### Fit\n\n" + "word " * 99 + "boots."
    article = {"title": "Boots", "content": content, "excerpt": "Short", "word_count": 101}
    llm = ScriptedLlm().queue(
        seo_response(meta_title="M" * 80, optimization_score=None),
    )

    output = SeoAgent().run(
        {"keyword": "boots", "article": article},
        make_context(AgentType.SEO, llm),
    ).output

    assert len(output["meta_title"]) == 60
    assert output["keyword_density"]["percentage"] == pytest.approx(0.99)
    assert len(output["heading_analysis"]["issues"]) == 1
    assert output["optimization_score"] == 85


def test_seo_requires_article() -> None:
    with pytest.raises(ValidationError, match="seo input is missing: article"):
        SeoAgent().run({"keyword": KEYWORD}, make_context(AgentType.SEO))


def test_seo_without_any_title_fails_with_call_usage() -> None:
    article = {**written_article(), "title": "", "excerpt": ""}
    llm = ScriptedLlm().queue(seo_response(meta_title="", meta_description=""))

    with pytest.raises(StageFailure, match="seo.meta_title") as raised:
        SeoAgent().run({"keyword": KEYWORD, "article": article}, make_context(AgentType.SEO, llm))

    assert raised.value.stage == "seo"
    assert raised.value.usage == CALL_USAGE


def test_analyze_headings_flags_structure_problems() -> None:
    missing_h1 = analyze_headings(
        title="",
        headings=[Heading(level=2, text="Intro"), Heading(level=4, text="Detail")],
    )
    double_h1 = analyze_headings(title="Boots", headings=[Heading(level=1, text="Again")])

    assert missing_h1["issues"] == [
        "Missing H1 heading",
        'Heading level skipped at "Detail" (H2 to H4)',
    ]
    assert missing_h1["suggestions"] == ["Add more H2 sections (found 1, aim for 3+)"]
    assert double_h1["issues"] == ["Multiple H1 headings found (2)"]


def test_analyze_keyword_density_ranges() -> None:
    assert "too low" in analyze_keyword_density("word " * 100, "boots")["analysis"]
    assert "optimal" in analyze_keyword_density("boots " + "word " * 99, "boots")["analysis"]
    assert "too high" in analyze_keyword_density("boots " * 10, "boots")["analysis"]


def test_qa_passes_clean_article() -> None:
    llm = ScriptedLlm().queue(qa_response(90))

    result = QaAgent().run(
        {"keyword": KEYWORD, "article": written_article(), "seo": seo_response()},
        make_context(AgentType.QA, llm),
    )

    output = result.output
    assert output["overall_score"] == 90
    assert output["passed"] is True
    assert output["issues"] == []
    assert output["feedback"] == "Looks good."
    assert output["reading_level"] < 9
    assert "Meta title: Hiking Boots Guide" in llm.calls[0].user_input


def test_qa_blocks_on_critical_model_issue() -> None:
    llm = ScriptedLlm().queue(
        qa_response(
            95,
            feedback="",
            issues=[
                {
                    "category": "accuracy",
                    "severity": "critical",
                    "description": "Wrong waterproofing claim",
                    "suggestion": "Check the membrane details",
                },
                {"category": "engagement", "severity": "bogus", "description": "Flat intro"},
            ],
        ),
    )

    output = QaAgent().run(
        {"keyword": KEYWORD, "article": written_article()},
        make_context(AgentType.QA, llm),
    ).output

    assert output["overall_score"] == 80
    assert output["passed"] is False
    assert [issue["severity"] for issue in output["issues"]] == ["critical", "low"]
    assert output["feedback"].startswith("Fix the following issues:\n- [critical]")


def test_qa_rejects_missing_dimension_scores_and_keeps_call_usage() -> None:
    response = qa_response(90)
    del response["dimension_scores"]["seo"]
    llm = ScriptedLlm().queue(response)

    with pytest.raises(StageFailure, match="qa.dimension_scores.seo") as raised:
        QaAgent().run(
            {"keyword": KEYWORD, "article": written_article()},
            make_context(AgentType.QA, llm),
        )

    assert raised.value.stage == "qa"
    assert raised.value.usage == CALL_USAGE


def test_check_content_rule_issues() -> None:
    issues = check_content(
        keyword=KEYWORD,
        title="A guide \U0001f600",
        content="This amazing boot — truly.",
        reading_level=12.0,
    )

    assert [(issue["category"], issue["severity"]) for issue in issues] == [
        ("brand_voice", "critical"),
        ("brand_voice", "high"),
        ("brand_voice", "medium"),
        ("readability", "medium"),
        ("seo", "medium"),
    ]
    assert issues[2]["description"] == 'Sensational language: "amazing"'


def test_issue_helpers() -> None:
    first = make_issue("seo", "high", "Missing keyword in intro", "Add it")
    duplicate = make_issue("seo", "high", "Missing keyword in intro", "Add it again")
    perfect = dict.fromkeys(("readability", "seo", "accuracy", "engagement", "brand_voice"), 100)

    assert first["id"] == duplicate["id"]
    assert len(first["id"]) == 12
    assert dedupe_issues([first, duplicate]) == [first]
    assert adjusted_score(perfect, [make_issue("x", "critical", str(n)) for n in range(4)]) == 55
    assert adjusted_score(perfect, [make_issue("x", "high", str(n)) for n in range(5)]) == 80
    assert summarize_issues([]) == "No issues found."
    assert summarize_issues([first]) == (
        "Fix the following issues:\n- [high] Missing keyword in intro. Add it"
    )
