"""Helpers to normalise extracted text before it is compared or handed to an LLM."""

import html
import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable

# Common boilerplate phrases to strip from extracted article text.
_BOILERPLATE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^advertisement$",
        r"^sponsored content$",
        r"^sign up for our newsletter.*",
        r"^subscribe to our .*",
        r"^related (stories|articles).*",
        r"^read (more|next):.*",
        r"^share this (story|article).*",
        r"^follow us on .*",
        r"^skip to (main )?content$",
        r"^comments?$",
    )
)

_ZERO_WIDTH_CHARS = {
    "\u200b",  # zero-width space
    "\u200c",  # zero-width non-joiner
    "\u200d",  # zero-width joiner
    "\u2060",  # word joiner
    "\ufeff",  # zero-width no-break space / BOM
}

# C0/C1 control characters other than newline and tab.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_HORIZONTAL_WS = re.compile(r"[ \t\u00a0\u2000-\u200a\u202f\u205f\u3000]+")
_WORD_SPLIT = re.compile(r"\s+")


@dataclass(frozen=True)
class ContentBudget:
    content: str
    truncated: bool
    total_characters: int
    word_count: int


def _strip_zero_width(text: str) -> str:
    for char in _ZERO_WIDTH_CHARS:
        text = text.replace(char, "")
    return text


def _remove_boilerplate(lines: Iterable[str]) -> list[str]:
    cleaned: list[str] = []
    for line in lines:
        stripped = line.strip()
        if not stripped:
            cleaned.append("")
            continue
        if any(pattern.match(stripped) for pattern in _BOILERPLATE_PATTERNS):
            continue
        cleaned.append(stripped)
    return cleaned


def _collapse_blank_lines(lines: Iterable[str]) -> str:
    collapsed: list[str] = []
    for line in lines:
        if not line:
            if collapsed and collapsed[-1] == "":
                continue
            collapsed.append("")
        else:
            collapsed.append(line)
    return "\n".join(collapsed).strip()


def normalize_for_prompt(raw_text: str | None) -> str:
    """Normalise whitespace and control characters without touching wording.

    Every candidate is passed through this before lengths are compared, so
    thresholds always see the same representation that ends up in the record.
    """
    if not raw_text:
        return ""

    text = unicodedata.normalize("NFKC", raw_text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _strip_zero_width(text)
    text = _CONTROL_CHARS.sub("", text)
    text = _HORIZONTAL_WS.sub(" ", text)

    lines = [line.strip() for line in text.split("\n")]
    return _collapse_blank_lines(lines)


def clean_text(raw_text: str | None) -> str:
    """Normalise extracted article text and remove obvious boilerplate."""
    if not raw_text:
        return ""

    text = html.unescape(raw_text)
    text = normalize_for_prompt(text)
    return _collapse_blank_lines(_remove_boilerplate(text.split("\n")))


def normalize_candidate(value: object) -> str | None:
    """Collapse a metadata value to a single line, or ``None`` when empty."""
    if not isinstance(value, str):
        return None
    collapsed = _WORD_SPLIT.sub(" ", normalize_for_prompt(value)).strip()
    return collapsed or None


def count_words(text: str) -> int:
    if not text:
        return 0
    return len([word for word in _WORD_SPLIT.split(text) if word])


def apply_content_budget(text: str, max_characters: int | None) -> ContentBudget:
    """Hard-truncate ``text`` to ``max_characters``.

    Character and word totals describe the full text, not the truncated view.
    """
    total_characters = len(text)
    word_count = count_words(text)
    if max_characters is None or total_characters <= max_characters:
        return ContentBudget(text, False, total_characters, word_count)
    return ContentBudget(text[:max_characters], True, total_characters, word_count)
