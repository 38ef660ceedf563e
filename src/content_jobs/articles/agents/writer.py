"""Writer stage: drafts and revises the article body."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from content_jobs.articles.agents.base import AgentContext, model_output_checks
from content_jobs.articles.models import DEFAULT_TARGET_WORD_COUNT, AgentResult, AgentType
from content_jobs.articles.text import extract_headings, slugify, truncate, word_count
from content_jobs.articles.validation import require_keys, validate_writer_output
from content_jobs.providers.llm import generate_json

MAX_TITLE_LENGTH = 60
MAX_EXCERPT_LENGTH = 160


class WriterAgent:
    agent_type = AgentType.WRITER

    def run(self, agent_input: dict[str, Any], context: AgentContext) -> AgentResult:
        require_keys(agent_input, "keyword", label="writer input")
        is_revision = bool(agent_input.get("qa_feedback") and agent_input.get("previous_article"))
        if is_revision:
            context.log("info", "Revising article from QA feedback")
        else:
            context.log("info", f'Writing article for "{agent_input["keyword"]}"')

        payload, usage = generate_json(
            context.llm,
            system_prompt=context.persona.system_prompt,
            user_input=build_writer_prompt(agent_input),
            model_config=context.model_config,
        )
        context.log("debug", "Model response received", usage.as_dict())

        with model_output_checks(self.agent_type, usage):
            article = normalize_article(payload, context)
            validate_writer_output(article)
        context.log(
            "info",
            f'Article written: "{article["title"]}" ({article["word_count"]} words)',
        )
        return AgentResult(output=article, usage=usage)


def build_writer_prompt(agent_input: Mapping[str, Any]) -> str:
    keyword = agent_input["keyword"]
    target = agent_input.get("target_word_count") or DEFAULT_TARGET_WORD_COUNT
    research = agent_input.get("research") or {}
    feedback = agent_input.get("qa_feedback")
    previous = agent_input.get("previous_article")

    lines = [f'Write an SEO-optimized article for the keyword: "{keyword}"', ""]
    lines.append(
        f"Target word count: {target} words "
        f"(minimum {round(target * 0.9)}, maximum {round(target * 1.1)})",
    )

    keyword_data = research.get("keyword_data") or {}
    if any(value is not None for value in keyword_data.values()):
        lines += ["", "Keyword data:"]
        for name in ("search_volume", "difficulty", "intent"):
            if keyword_data.get(name) is not None:
                lines.append(f"- {name.replace('_', ' ')}: {keyword_data[name]}")

    related = research.get("related_keywords") or []
    if related:
        lines += ["", f"Related keywords to include naturally: {', '.join(related[:10])}"]

    questions = research.get("paa_questions") or []
    if questions:
        lines += ["", "Questions readers ask (answer the relevant ones):"]
        lines += [f"- {question}" for question in questions[:8]]

    gaps = research.get("content_gaps") or []
    if gaps:
        lines += ["", "Content gaps to cover:"]
        lines += [f"- {gap}" for gap in gaps[:5]]

    competitors = research.get("competitors") or []
    if competitors and not feedback:
        lines += ["", "Top ranking titles (do better than these):"]
        lines += [f"- {item.get('title')}" for item in competitors[:5] if item.get("title")]

    if agent_input.get("context"):
        lines += ["", f"Additional context: {agent_input['context']}"]

    if feedback and previous:
        lines += [
            "",
            "REVISION REQUEST",
            "The previous draft did not pass quality review. Fix every issue below.",
            "",
            f"QA feedback: {feedback}",
            "",
            f"Previous title: {previous.get('title', '')}",
            f"Previous word count: {previous.get('word_count', 0)}",
            "Previous content:",
            str(previous.get("content", "")),
        ]

    lines += ["", "Respond with the JSON object only."]
    return "\n".join(lines)


def normalize_article(payload: Mapping[str, Any], context: AgentContext) -> dict[str, Any]:
    """Clamp lengths and fill derivable fields before validation."""

    title = str(payload.get("title") or "").strip()
    if len(title) > MAX_TITLE_LENGTH:
        context.log("warn", f"Title too long ({len(title)} chars), truncating")
        title = truncate(title, MAX_TITLE_LENGTH)

    excerpt = str(payload.get("excerpt") or "").strip()
    if len(excerpt) > MAX_EXCERPT_LENGTH:
        context.log("warn", f"Excerpt too long ({len(excerpt)} chars), truncating")
        excerpt = truncate(excerpt, MAX_EXCERPT_LENGTH)

    content = str(payload.get("content") or "")
    slug = slugify(str(payload.get("slug") or "")) or slugify(title)

    headings = payload.get("headings")
    if not isinstance(headings, list) or not headings:
        headings = [heading.as_dict() for heading in extract_headings(content)]
    headings = [
        heading
        for heading in headings
        if isinstance(heading, Mapping) and heading.get("level") in (2, 3, 4)
    ]

    return {
        "title": title,
        "slug": slug,
        "content": content,
        "excerpt": excerpt,
        "headings": headings,
        "word_count": word_count(content),
    }
