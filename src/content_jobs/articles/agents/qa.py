"""QA stage: scores the draft and decides whether it ships."""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Iterable, Mapping
from typing import Any

from content_jobs.articles.agents.base import AgentContext, model_output_checks
from content_jobs.articles.models import AgentResult, AgentType
from content_jobs.articles.text import flesch_kincaid_grade
from content_jobs.articles.validation import (
    ISSUE_SEVERITIES,
    QA_DIMENSIONS,
    require_keys,
    validate_qa_output,
)
from content_jobs.errors import ValidationError
from content_jobs.providers.llm import generate_json

PASS_THRESHOLD = 70
TARGET_READING_LEVEL = 7
READING_LEVEL_TOLERANCE = 2

DIMENSION_WEIGHTS: dict[str, float] = {
    "readability": 0.25,
    "seo": 0.20,
    "accuracy": 0.20,
    "engagement": 0.20,
    "brand_voice": 0.15,
}
CRITICAL_PENALTY = 15
CRITICAL_PENALTY_CAP = 45
HIGH_PENALTY = 5
HIGH_PENALTY_CAP = 20

_EMOJI = re.compile(
    "[\U0001f600-\U0001f64f\U0001f300-\U0001f5ff\U0001f680-\U0001f6ff"
    "\U0001f1e0-\U0001f1ff\u2600-\u26ff\u2700-\u27bf]",
)
EM_DASH = "\u2014"
SENSATIONAL_WORDS: tuple[str, ...] = (
    "amazing",
    "incredible",
    "unbelievable",
    "shocking",
    "mind-blowing",
    "jaw-dropping",
    "game-changing",
    "revolutionary",
    "unprecedented",
    "you won't believe",
    "secret",
    "hack",
    "insane",
    "crazy",
)


class QaAgent:
    agent_type = AgentType.QA

    def __init__(self, *, pass_threshold: int = PASS_THRESHOLD) -> None:
        self.pass_threshold = pass_threshold

    def run(self, agent_input: dict[str, Any], context: AgentContext) -> AgentResult:
        require_keys(agent_input, "keyword", "article", label="qa input")
        keyword = str(agent_input["keyword"])
        article = agent_input["article"]
        if not isinstance(article, Mapping):
            raise ValidationError("qa input.article must be an object")
        content = str(article.get("content") or "")
        context.log("info", f'Reviewing "{article.get("title", "")}"')

        reading_level = round(flesch_kincaid_grade(content), 1)
        local_issues = check_content(
            keyword=keyword,
            title=str(article.get("title") or ""),
            content=content,
            reading_level=reading_level,
        )
        context.log(
            "debug",
            f"Local checks found {len(local_issues)} issues, reading level {reading_level}",
        )

        payload, usage = generate_json(
            context.llm,
            system_prompt=context.persona.system_prompt,
            user_input=build_qa_prompt(
                keyword=keyword,
                article=article,
                seo=agent_input.get("seo"),
                reading_level=reading_level,
            ),
            model_config=context.model_config,
        )

        with model_output_checks(self.agent_type, usage):
            output = self._review(payload, local_issues, reading_level=reading_level)
        overall = output["overall_score"]
        passed = output["passed"]
        issues = output["issues"]
        context.log(
            "info",
            f"QA score {overall} ({'passed' if passed else 'failed'}), {len(issues)} issues",
        )
        return AgentResult(output=output, usage=usage)

    def _review(
        self,
        payload: Mapping[str, Any],
        local_issues: list[dict[str, Any]],
        *,
        reading_level: float,
    ) -> dict[str, Any]:
        dimension_scores = _dimension_scores(payload.get("dimension_scores"))
        issues = dedupe_issues([*local_issues, *_model_issues(payload.get("issues"))])
        overall = adjusted_score(dimension_scores, issues)
        output = {
            "dimension_scores": dimension_scores,
            "overall_score": overall,
            "passed": is_passing(overall, issues, threshold=self.pass_threshold),
            "issues": issues,
            "feedback": str(payload.get("feedback") or "") or summarize_issues(issues),
            "reading_level": reading_level,
        }
        validate_qa_output(output)
        return output


def check_content(
    *,
    keyword: str,
    title: str,
    content: str,
    reading_level: float,
) -> list[dict[str, Any]]:
    """Rule checks that do not need the model."""

    issues: list[dict[str, Any]] = []
    if _EMOJI.search(content) or _EMOJI.search(title):
        issues.append(
            make_issue(
                "brand_voice",
                "critical",
                "Content contains emojis",
                "Remove all emojis from the article",
            ),
        )
    if EM_DASH in content or EM_DASH in title:
        issues.append(
            make_issue(
                "brand_voice",
                "high",
                "Content contains em dashes",
                "Replace em dashes with commas or periods",
            ),
        )
    lowered = content.lower()
    for word in SENSATIONAL_WORDS:
        if re.search(rf"\b{re.escape(word)}\b", lowered):
            issues.append(
                make_issue(
                    "brand_voice",
                    "medium",
                    f'Sensational language: "{word}"',
                    "Use neutral, factual wording",
                ),
            )
    if reading_level > TARGET_READING_LEVEL + READING_LEVEL_TOLERANCE:
        issues.append(
            make_issue(
                "readability",
                "medium",
                f"Reading level {reading_level} is above grade {TARGET_READING_LEVEL}",
                "Use shorter sentences and simpler words",
            ),
        )
    if keyword and keyword.lower() not in title.lower():
        issues.append(
            make_issue(
                "seo",
                "medium",
                "Primary keyword missing from title",
                f'Include "{keyword}" in the title',
            ),
        )
    return issues


def make_issue(
    category: str,
    severity: str,
    description: str,
    suggestion: str = "",
    location: str | None = None,
) -> dict[str, Any]:
    digest = hashlib.sha1(f"{category}:{description}".encode(), usedforsecurity=False)
    return {
        "id": digest.hexdigest()[:12],
        "category": category,
        "severity": severity,
        "description": description,
        "suggestion": suggestion,
        "location": location,
    }


def dedupe_issues(issues: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    seen: set[str] = set()
    unique: list[dict[str, Any]] = []
    for issue in issues:
        key = f"{issue.get('category')}:{str(issue.get('description', ''))[:50]}"
        if key in seen:
            continue
        seen.add(key)
        unique.append(dict(issue))
    return unique


def adjusted_score(scores: Mapping[str, int], issues: Iterable[Mapping[str, Any]]) -> int:
    """Weighted dimensions minus capped penalties, clamped to 0-100."""

    weighted = sum(scores[name] * weight for name, weight in DIMENSION_WEIGHTS.items())
    severities = [issue.get("severity") for issue in issues]
    critical_penalty = min(severities.count("critical") * CRITICAL_PENALTY, CRITICAL_PENALTY_CAP)
    high_penalty = min(severities.count("high") * HIGH_PENALTY, HIGH_PENALTY_CAP)
    return max(0, min(100, round(weighted - critical_penalty - high_penalty)))


def is_passing(score: int, issues: Iterable[Mapping[str, Any]], *, threshold: int) -> bool:
    blocking = any(issue.get("severity") in ("critical", "high") for issue in issues)
    return score >= threshold and not blocking


def summarize_issues(issues: list[dict[str, Any]]) -> str:
    if not issues:
        return "No issues found."
    lines = [
        f"- [{issue['severity']}] {issue['description']}. {issue['suggestion']}".rstrip()
        for issue in issues
    ]
    return "Fix the following issues:\n" + "\n".join(lines)


def build_qa_prompt(
    *,
    keyword: str,
    article: Mapping[str, Any],
    seo: Mapping[str, Any] | None,
    reading_level: float,
) -> str:
    lines = [
        f'Primary keyword: "{keyword}"',
        f"Title: {article.get('title', '')}",
        f"Word count: {article.get('word_count', 0)}",
        f"Measured reading level: grade {reading_level} (target {TARGET_READING_LEVEL})",
    ]
    if seo:
        lines.append(f"Meta title: {seo.get('meta_title', '')}")
        lines.append(f"Meta description: {seo.get('meta_description', '')}")
        density = seo.get("keyword_density")
        if density:
            lines.append(f"Keyword density: {json.dumps(density)}")
    lines += ["", "Article content:", str(article.get("content", ""))]
    lines += ["", "Respond with the JSON object only."]
    return "\n".join(lines)


def _dimension_scores(raw: object) -> dict[str, int]:
    if not isinstance(raw, Mapping):
        raise ValidationError("qa.dimension_scores must be an object")
    scores: dict[str, int] = {}
    for dimension in QA_DIMENSIONS:
        value = raw.get(dimension)
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise ValidationError(f"qa.dimension_scores.{dimension} must be a number")
        scores[dimension] = max(0, min(100, round(value)))
    return scores


def _model_issues(raw: object) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    issues: list[dict[str, Any]] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        severity = str(item.get("severity") or "low").lower()
        if severity not in ISSUE_SEVERITIES:
            severity = "low"
        issues.append(
            make_issue(
                str(item.get("category") or "general"),
                severity,
                str(item.get("description") or ""),
                str(item.get("suggestion") or ""),
                item.get("location"),
            ),
        )
    return issues
