from __future__ import annotations

import allure
import pytest

from content_jobs.articles.text import (
    Heading,
    count_syllables,
    extract_headings,
    flesch_kincaid_grade,
    keyword_density,
    paragraphs,
    plain_text,
    sentences,
    slugify,
    truncate,
    word_count,
)

pytestmark = [
    allure.epic("Article Pipeline"),
    allure.feature("Text Metrics"),
]


def test_plain_text_strips_markdown() -> None:
    markdown = "## Why *boots* matter\n\nThey [keep](https://example.com) feet `dry` **warm**."

    assert plain_text(markdown) == "Why boots matter\n\nThey keep feet  warm."
    assert word_count(markdown) == 7


def test_sentences_and_paragraphs() -> None:
    markdown = "One. Two!\n\nThree?\n\n   \n\nFour"

    assert len(sentences(markdown)) == 4
    assert paragraphs(markdown) == ["One. Two!", "Three?", "Four"]


def test_extract_headings_reads_markdown_levels() -> None:
    markdown = "# Title\n\nIntro text.\n\n## Why boots ##\n\nBody.\n### Fit\n"

    assert extract_headings(markdown) == [
        Heading(level=1, text="Title"),
        Heading(level=2, text="Why boots"),
        Heading(level=3, text="Fit"),
    ]
    assert Heading(level=2, text="Fit").as_dict() == {"level": 2, "text": "Fit"}


@pytest.mark.parametrize(
    ("word", "expected"),
    [
        ("the", 1),
        ("cake", 1),
        ("hiking", 2),
        ("table", 2),
        ("responsibility", 6),
    ],
)
def test_count_syllables(word: str, expected: int) -> None:
    assert count_syllables(word) == expected


def test_flesch_kincaid_grade_is_clamped() -> None:
    assert flesch_kincaid_grade("") == 0.0
    assert flesch_kincaid_grade("The cat sat. The dog ran.") == 0.0
    assert flesch_kincaid_grade(" ".join(["responsibility"] * 60) + ".") == 20.0


def test_keyword_density() -> None:
    text = "Boots are great. Hiking boots rock."

    assert keyword_density(text, "boots") == pytest.approx(33.33)
    assert keyword_density(text, "Hiking Boots") == pytest.approx(16.67)
    assert keyword_density(text, "  ") == 0.0
    assert keyword_density("", "boots") == 0.0


def test_slugify_and_truncate() -> None:
    assert slugify("Hiking Boots: A Guide!") == "hiking-boots-a-guide"
    assert truncate("short", 10) == "short"
    assert truncate("abcdefghij", 8) == "abcde..."
    assert len(truncate("x" * 200, 60)) == 60
