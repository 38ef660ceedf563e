"""SEO stage: metadata, structure checks and schema.org markup."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from content_jobs.articles.agents.base import AgentContext, model_output_checks
from content_jobs.articles.models import AgentResult, AgentType
from content_jobs.articles.text import Heading, extract_headings, keyword_density, truncate
from content_jobs.articles.validation import require_keys, validate_seo_output
from content_jobs.errors import ValidationError
from content_jobs.providers.llm import generate_json
from content_jobs.storage.common import utc_now

MAX_META_TITLE = 60
MAX_META_DESCRIPTION = 160
MIN_DENSITY = 0.5
MAX_DENSITY = 2.5
MIN_H2_SECTIONS = 3
PUBLISHER_NAME = "Content Jobs"


class SeoAgent:
    agent_type = AgentType.SEO

    def __init__(self, *, publisher_name: str = PUBLISHER_NAME) -> None:
        self.publisher_name = publisher_name

    def run(self, agent_input: dict[str, Any], context: AgentContext) -> AgentResult:
        require_keys(agent_input, "keyword", "article", label="seo input")
        keyword = str(agent_input["keyword"])
        article = agent_input["article"]
        if not isinstance(article, Mapping):
            raise ValidationError("seo input.article must be an object")
        context.log("info", f'Optimizing "{article.get("title", "")}"')

        structure = analyze_headings(
            title=str(article.get("title") or ""),
            headings=extract_headings(str(article.get("content") or "")),
        )
        density = analyze_keyword_density(str(article.get("content") or ""), keyword)
        context.log(
            "debug",
            "Local analysis complete",
            {"keyword_density": density, "heading_issues": structure["issues"]},
        )

        payload, usage = generate_json(
            context.llm,
            system_prompt=context.persona.system_prompt,
            user_input=build_seo_prompt(
                keyword=keyword,
                article=article,
                structure=structure,
                density=density,
                research=agent_input.get("research") or {},
            ),
            model_config=context.model_config,
        )

        with model_output_checks(self.agent_type, usage):
            meta_title = str(payload.get("meta_title") or article.get("title") or "").strip()
            if len(meta_title) > MAX_META_TITLE:
                context.log("warn", f"Meta title too long ({len(meta_title)} chars), truncating")
                meta_title = truncate(meta_title, MAX_META_TITLE)
            meta_description = str(
                payload.get("meta_description") or article.get("excerpt") or "",
            ).strip()
            if len(meta_description) > MAX_META_DESCRIPTION:
                context.log(
                    "warn",
                    f"Meta description too long ({len(meta_description)} chars), truncating",
                )
                meta_description = truncate(meta_description, MAX_META_DESCRIPTION)

            suggestions = [str(item) for item in payload.get("suggestions") or []]
            suggestions += structure["suggestions"]
            output = {
                "meta_title": meta_title,
                "meta_description": meta_description,
                "schema_markup": build_schema_markup(
                    keyword=keyword,
                    article=article,
                    description=meta_description,
                    publisher_name=self.publisher_name,
                ),
                "internal_links": _internal_links(payload.get("internal_links")),
                "keyword_density": density,
                "heading_analysis": structure,
                "suggestions": suggestions,
                "optimization_score": _score(payload.get("optimization_score"), structure, density),
            }
            validate_seo_output(output)
        context.log("info", f"SEO optimization score {output['optimization_score']}")
        return AgentResult(output=output, usage=usage)


def analyze_headings(*, title: str, headings: list[Heading]) -> dict[str, Any]:
    """Check the outline; the title counts as the H1."""

    issues: list[str] = []
    suggestions: list[str] = []
    outline = [Heading(level=1, text=title)] if title else []
    outline += headings

    h1_count = sum(1 for heading in outline if heading.level == 1)
    if h1_count == 0:
        issues.append("Missing H1 heading")
    elif h1_count > 1:
        issues.append(f"Multiple H1 headings found ({h1_count})")

    previous_level = 0
    for heading in outline:
        if previous_level and heading.level > previous_level + 1:
            issues.append(
                f'Heading level skipped at "{heading.text}" '
                f"(H{previous_level} to H{heading.level})",
            )
        previous_level = heading.level

    h2_count = sum(1 for heading in outline if heading.level == 2)
    if h2_count < MIN_H2_SECTIONS:
        suggestions.append(
            f"Add more H2 sections (found {h2_count}, aim for {MIN_H2_SECTIONS}+)",
        )

    return {
        "structure": [heading.as_dict() for heading in outline],
        "issues": issues,
        "suggestions": suggestions,
    }


def analyze_keyword_density(content: str, keyword: str) -> dict[str, Any]:
    percentage = keyword_density(content, keyword)
    if percentage < MIN_DENSITY:
        analysis = "Keyword density is too low. Use the keyword more often."
    elif percentage > MAX_DENSITY:
        analysis = "Keyword density is too high. Reduce keyword usage to avoid stuffing."
    else:
        analysis = f"Keyword density is in the optimal range ({MIN_DENSITY}-{MAX_DENSITY}%)."
    return {"percentage": percentage, "analysis": analysis}


def build_schema_markup(
    *,
    keyword: str,
    article: Mapping[str, Any],
    description: str,
    publisher_name: str,
) -> dict[str, Any]:
    now = utc_now().isoformat()
    organization = {"@type": "Organization", "name": publisher_name}
    return {
        "@context": "https://schema.org",
        "@type": "Article",
        "headline": article.get("title"),
        "description": description,
        "keywords": keyword,
        "wordCount": article.get("word_count"),
        "datePublished": now,
        "dateModified": now,
        "author": organization,
        "publisher": organization,
    }


def build_seo_prompt(
    *,
    keyword: str,
    article: Mapping[str, Any],
    structure: Mapping[str, Any],
    density: Mapping[str, Any],
    research: Mapping[str, Any],
) -> str:
    lines = [
        f'Primary keyword: "{keyword}"',
        f"Title: {article.get('title', '')}",
        f"Excerpt: {article.get('excerpt', '')}",
        f"Word count: {article.get('word_count', 0)}",
        f"Keyword density: {density['percentage']}% ({density['analysis']})",
        "Heading structure:",
        json.dumps(structure["structure"]),
    ]
    if structure["issues"]:
        lines.append(f"Heading issues: {'; '.join(structure['issues'])}")
    related = research.get("related_keywords") or []
    if related:
        lines.append(f"Related keywords: {', '.join(related[:10])}")
    lines += ["", "Article content:", str(article.get("content", ""))]
    lines += ["", "Respond with the JSON object only."]
    return "\n".join(lines)


def _internal_links(raw: object) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [dict(link) for link in raw if isinstance(link, Mapping)]


def _score(raw: object, structure: Mapping[str, Any], density: Mapping[str, Any]) -> int:
    """Model score when usable, else a local estimate from the checks."""

    if isinstance(raw, int | float) and not isinstance(raw, bool):
        return max(0, min(100, round(raw)))
    score = 100 - 10 * len(structure["issues"]) - 5 * len(structure["suggestions"])
    if not MIN_DENSITY <= density["percentage"] <= MAX_DENSITY:
        score -= 15
    return max(0, min(100, score))
