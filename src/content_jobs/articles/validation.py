"""Shape checks for agent inputs and outputs."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from content_jobs.errors import ValidationError

QA_DIMENSIONS: tuple[str, ...] = ("readability", "seo", "accuracy", "engagement", "brand_voice")
ISSUE_SEVERITIES = frozenset({"low", "medium", "high", "critical"})


def require_keys(payload: Mapping[str, Any], *keys: str, label: str) -> None:
    missing = [key for key in keys if payload.get(key) in (None, "")]
    if missing:
        raise ValidationError(f"{label} is missing: {', '.join(missing)}")


def require_text(
    payload: Mapping[str, Any],
    key: str,
    *,
    label: str,
    max_length: int | None = None,
) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label}.{key} must be a non-empty string")
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{label}.{key} exceeds {max_length} characters")
    return value


def require_score(value: object, *, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValidationError(f"{label} must be a number")
    if not 0 <= value <= 100:
        raise ValidationError(f"{label} must be between 0 and 100")
    return round(value)


def validate_research_output(output: Mapping[str, Any]) -> None:
    require_text(output, "keyword", label="research")
    for key in ("competitors", "related_keywords", "paa_questions", "content_gaps"):
        if not isinstance(output.get(key), list):
            raise ValidationError(f"research.{key} must be a list")
    recommended = output.get("recommended_word_count")
    if not isinstance(recommended, int) or recommended <= 0:
        raise ValidationError("research.recommended_word_count must be a positive integer")


def validate_writer_output(output: Mapping[str, Any]) -> None:
    require_text(output, "title", label="article", max_length=60)
    require_text(output, "slug", label="article")
    require_text(output, "content", label="article")
    require_text(output, "excerpt", label="article", max_length=160)
    headings = output.get("headings")
    if not isinstance(headings, list):
        raise ValidationError("article.headings must be a list")
    for heading in headings:
        if not isinstance(heading, Mapping) or heading.get("level") not in (2, 3, 4):
            raise ValidationError("article.headings entries need a level between 2 and 4")
        require_text(heading, "text", label="article.headings")
    if not isinstance(output.get("word_count"), int):
        raise ValidationError("article.word_count must be an integer")


def validate_seo_output(output: Mapping[str, Any]) -> None:
    require_text(output, "meta_title", label="seo", max_length=60)
    require_text(output, "meta_description", label="seo", max_length=160)
    if not isinstance(output.get("schema_markup"), Mapping):
        raise ValidationError("seo.schema_markup must be an object")
    if not isinstance(output.get("internal_links"), list):
        raise ValidationError("seo.internal_links must be a list")
    require_score(output.get("optimization_score"), label="seo.optimization_score")


def validate_qa_output(output: Mapping[str, Any]) -> None:
    scores = output.get("dimension_scores")
    if not isinstance(scores, Mapping):
        raise ValidationError("qa.dimension_scores must be an object")
    for dimension in QA_DIMENSIONS:
        require_score(scores.get(dimension), label=f"qa.dimension_scores.{dimension}")
    require_score(output.get("overall_score"), label="qa.overall_score")
    if not isinstance(output.get("passed"), bool):
        raise ValidationError("qa.passed must be a boolean")
    issues = output.get("issues")
    if not isinstance(issues, list):
        raise ValidationError("qa.issues must be a list")
    for issue in issues:
        if not isinstance(issue, Mapping) or issue.get("severity") not in ISSUE_SEVERITIES:
            raise ValidationError("qa.issues entries need a severity of low/medium/high/critical")
