"""Content selection: choose which normalised candidate becomes the record body.

Every function here takes already-normalised strings; comparing raw and
normalised lengths would skew the thresholds.
"""

from __future__ import annotations

import re
from typing import Optional, Sequence

from linkpreview.config import THRESHOLDS, ContentThresholds
from linkpreview.models.content import TranscriptSegment
from linkpreview.services.transcript import format_transcript_segments
from linkpreview.utils.text_cleaner import normalize_for_prompt

TRANSCRIPT_HEADER = "Transcript:\n"

# Whitespace, control characters and separator punctuation left behind once a
# leading title is removed.
_LEADING_SEPARATORS = re.compile(r"^[\s\x00-\x1f\x7f-\x9f.,:;|\-\u2013\u2014\u00b7\u2022]+")


def select_base_content(
    source_content: str,
    transcript_text: Optional[str],
    transcript_segments: Optional[Sequence[TranscriptSegment]] = None,
) -> str:
    """A resolved transcript always replaces the page candidate."""
    timed = format_transcript_segments(transcript_segments) if transcript_segments else None
    candidate = timed or transcript_text
    if not candidate:
        return source_content
    normalized = normalize_for_prompt(candidate)
    if not normalized:
        return source_content
    return f"{TRANSCRIPT_HEADER}{normalized}"


def strip_leading_title(content: str, title: Optional[str]) -> str:
    """Remove a repeated page title from the start of ``content``.

    The match is case-insensitive and must end on a word boundary, so a title
    of "Example" leaves "Examples of..." untouched.
    """
    if not content or not title:
        return content
    normalized_title = title.strip()
    if not normalized_title:
        return content

    trimmed = content.lstrip()
    if not trimmed.lower().startswith(normalized_title.lower()):
        return content

    remainder = trimmed[len(normalized_title) :]
    if remainder and remainder[0].isalnum() and normalized_title[-1].isalnum():
        return content
    return _LEADING_SEPARATORS.sub("", remainder)


def prefer_readability(
    readability_text: str,
    article_text: str,
    thresholds: ContentThresholds = THRESHOLDS,
) -> bool:
    if len(readability_text) < thresholds.min_readability_content_characters:
        return False
    return len(article_text) < thresholds.min_html_content_characters or thresholds.is_comparable(
        len(readability_text), len(article_text)
    )


def prefer_description(
    description: str,
    body: str,
    *,
    podcast_like: bool,
    readability_preferred: bool = False,
    thresholds: ContentThresholds = THRESHOLDS,
) -> bool:
    """Whether a metadata description should stand in for the body text.

    Body-length tests only apply when readability did not already win.
    """
    if len(description) < thresholds.min_metadata_description_characters:
        return False
    if podcast_like:
        return True
    if readability_preferred:
        return False
    return len(body) < thresholds.min_html_content_characters or thresholds.is_comparable(
        len(description), len(body)
    )
