"""SEO scoring for generated posts: readability, meta lengths, headings, keyword density, alt text."""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field

META_TITLE_RANGE = (50, 60)
META_DESCRIPTION_RANGE = (150, 160)
KEYWORD_DENSITY_RANGE = (0.5, 2.5)

# (minimum Flesch score, grade label), checked top-down
READABILITY_GRADES = [
    (90, "5th Grade"),
    (80, "6th Grade"),
    (70, "7th Grade"),
    (60, "8th-9th Grade"),
    (50, "10th-12th Grade"),
    (30, "College"),
]


@dataclass
class SeoValidationResult:
    readability_score: int
    readability_grade: str
    meta_title_length: int
    meta_description_length: int
    heading_structure_valid: bool
    keyword_density: float
    alt_tags_coverage: int
    overall_seo_score: int
    validation_errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def count_syllables(word: str) -> int:
    """Approximate syllables by counting vowel groups."""
    word = re.sub(r"[^a-z]", "", word.lower())
    if len(word) <= 3:
        return 1

    count = 0
    previous_was_vowel = False
    for ch in word:
        is_vowel = ch in "aeiouy"
        if is_vowel and not previous_was_vowel:
            count += 1
        previous_was_vowel = is_vowel

    if word.endswith("e"):
        count -= 1
    return max(1, count)


def flesch_reading_ease(text: str) -> tuple[float, str]:
    """Return (score clamped to 0-100, grade label)."""
    sentences = [s for s in re.split(r"[.!?]+", text or "") if s.strip()]
    words = (text or "").split()
    if not sentences or not words:
        return 0.0, "N/A"

    syllables = sum(count_syllables(w) for w in words)
    avg_words_per_sentence = len(words) / len(sentences)
    avg_syllables_per_word = syllables / len(words)
    score = 206.835 - 1.015 * avg_words_per_sentence - 84.6 * avg_syllables_per_word

    grade = "College Graduate"
    for minimum, label in READABILITY_GRADES:
        if score >= minimum:
            grade = label
            break
    return max(0.0, min(100.0, score)), grade


def heading_structure_valid(headings: list[dict] | None) -> bool:
    """First heading must be H1 and no heading may skip a level going down."""
    if not headings:
        return False
    levels = [int(h.get("level", 0)) for h in headings]
    if levels[0] != 1:
        return False
    for prev, curr in zip(levels, levels[1:]):
        if curr - prev > 1:
            return False
    return True


def keyword_density(content: str, keyword: str) -> float:
    """Exact-phrase occurrences per 100 words, rounded to 2 decimals."""
    if not content or not keyword:
        return 0.0
    words = content.lower().split()
    phrase = keyword.lower().split()
    if not words or not phrase:
        return 0.0

    n = len(phrase)
    occurrences = sum(1 for i in range(len(words) - n + 1) if words[i:i + n] == phrase)
    return _round_half_up(occurrences / len(words) * 100, 2)


def alt_tags_coverage(images: list[dict] | None) -> int:
    """Percent of images with non-empty alt text; 100 when there are no images."""
    if not images:
        return 100
    with_alt = [img for img in images if img.get("alt_text") or img.get("alt")]
    return int(_round_half_up(len(with_alt) / len(images) * 100))


def _in_range(value: float, bounds: tuple) -> bool:
    return bounds[0] <= value <= bounds[1]


def validate_seo(
    title: str,
    meta_title: str | None,
    meta_description: str | None,
    content: str,
    headings: list[dict] | None,
    images: list[dict] | None,
    keyword: str,
) -> SeoValidationResult:
    """Score a post. Pure function: no I/O, same input gives the same result."""
    errors = []

    readability, grade = flesch_reading_ease(content)
    meta_title_length = len(meta_title or "")
    meta_description_length = len(meta_description or "")
    headings_ok = heading_structure_valid(headings or [])
    density = keyword_density(content, keyword)
    alt_coverage = alt_tags_coverage(images or [])

    if not _in_range(meta_title_length, META_TITLE_RANGE):
        errors.append({
            "field": "metaTitle",
            "message": f"Meta title should be 50-60 characters (currently {meta_title_length})",
            "severity": "error" if meta_title_length == 0 else "warning",
        })

    if not _in_range(meta_description_length, META_DESCRIPTION_RANGE):
        errors.append({
            "field": "metaDescription",
            "message": f"Meta description should be 150-160 characters (currently {meta_description_length})",
            "severity": "error" if meta_description_length == 0 else "warning",
        })

    if not headings_ok:
        errors.append({
            "field": "headings",
            "message": "Heading structure is invalid. Ensure proper H1-H2-H3 hierarchy.",
            "severity": "error",
        })

    if not _in_range(density, KEYWORD_DENSITY_RANGE):
        errors.append({
            "field": "keyword",
            "message": f"Keyword density should be 0.5-2.5% (currently {density}%)",
            "severity": "warning",
        })

    if alt_coverage < 100:
        errors.append({
            "field": "images",
            "message": f"Only {alt_coverage}% of images have alt text",
            "severity": "warning",
        })

    components = [
        min(100.0, readability),
        100 if _in_range(meta_title_length, META_TITLE_RANGE) else 50,
        100 if _in_range(meta_description_length, META_DESCRIPTION_RANGE) else 50,
        100 if headings_ok else 0,
        100 if _in_range(density, KEYWORD_DENSITY_RANGE) else 50,
        alt_coverage,
    ]
    overall = int(_round_half_up(sum(components) / len(components)))

    return SeoValidationResult(
        readability_score=int(_round_half_up(readability)),
        readability_grade=grade,
        meta_title_length=meta_title_length,
        meta_description_length=meta_description_length,
        heading_structure_valid=headings_ok,
        keyword_density=density,
        alt_tags_coverage=alt_coverage,
        overall_seo_score=overall,
        validation_errors=errors,
    )
