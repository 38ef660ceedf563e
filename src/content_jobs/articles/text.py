"""Markdown text metrics shared by the writer, SEO and QA stages."""

from __future__ import annotations

import re
from dataclasses import dataclass

_MARKDOWN_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$", re.MULTILINE)
_HEADING_MARKS = re.compile(r"#{1,6}\s")
_EMPHASIS = re.compile(r"\*\*|__|\*|_")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_INLINE_CODE = re.compile(r"`[^`]+`")
_NON_WORD = re.compile(r"[^\w\s'-]")
_SENTENCE_END = re.compile(r"[.!?]+")
_VOWEL_GROUPS = re.compile(r"[aeiouy]+")
_NON_ALPHA = re.compile(r"[^a-z]")
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


@dataclass(slots=True, frozen=True)
class Heading:
    level: int
    text: str

    def as_dict(self) -> dict[str, object]:
        return {"level": self.level, "text": self.text}


def plain_text(markdown: str) -> str:
    text = _HEADING_MARKS.sub("", markdown)
    text = _LINK.sub(r"\1", text)
    text = _INLINE_CODE.sub("", text)
    return _EMPHASIS.sub("", text)


def words(markdown: str) -> list[str]:
    return _NON_WORD.sub(" ", plain_text(markdown)).split()


def word_count(markdown: str) -> int:
    return len(words(markdown))


def sentences(markdown: str) -> list[str]:
    return [part for part in _SENTENCE_END.split(plain_text(markdown)) if part.strip()]


def paragraphs(markdown: str) -> list[str]:
    return [part for part in _PARAGRAPH_BREAK.split(markdown) if part.strip()]


def extract_headings(markdown: str) -> list[Heading]:
    return [
        Heading(level=len(match.group(1)), text=match.group(2).strip())
        for match in _MARKDOWN_HEADING.finditer(markdown)
    ]


def count_syllables(word: str) -> int:
    """Vowel-group approximation with silent-e and -le adjustments."""

    word = _NON_ALPHA.sub("", word.lower())
    if len(word) <= 3:
        return 1
    count = len(_VOWEL_GROUPS.findall(word)) or 1
    if word.endswith("e"):
        count -= 1
    if word.endswith("le") and word[-3] not in "aeiouy":
        count += 1
    return max(1, count)


def flesch_kincaid_grade(markdown: str) -> float:
    """Flesch-Kincaid grade level clamped to 0-20."""

    all_words = words(markdown)
    all_sentences = sentences(markdown)
    if not all_words or not all_sentences:
        return 0.0
    syllables = sum(count_syllables(word) for word in all_words)
    grade = (
        0.39 * (len(all_words) / len(all_sentences))
        + 11.8 * (syllables / len(all_words))
        - 15.59
    )
    return max(0.0, min(20.0, grade))


def keyword_density(markdown: str, keyword: str) -> float:
    """Keyword occurrences per 100 words, rounded to two decimals."""

    text = plain_text(markdown).lower()
    all_words = text.split()
    if not all_words:
        return 0.0
    needle = keyword.lower().strip()
    if not needle:
        return 0.0
    if len(needle.split()) == 1:
        occurrences = sum(1 for word in all_words if needle in word)
    else:
        occurrences = text.count(needle)
    return round(occurrences / len(all_words) * 100, 2)


def slugify(value: str) -> str:
    return _SLUG_INVALID.sub("-", value.lower()).strip("-")


def truncate(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - 3].rstrip() + "..."
