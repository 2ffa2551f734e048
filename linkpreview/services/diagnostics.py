"""Diagnostics helpers and the single exit point that builds output records."""

from __future__ import annotations

import copy
from typing import Iterable, Optional

from linkpreview.models.content import (
    AttemptRecord,
    ContentFetchDiagnostics,
    ExtractedLinkContent,
    TranscriptResolution,
)
from linkpreview.services.transcript import (
    format_transcript_segments,
    media_duration_from_metadata,
    summarize_transcript,
    transcription_provider_from_metadata,
)
from linkpreview.utils.text_cleaner import apply_content_budget, normalize_for_prompt

STAGE_BIRD = "bird"
STAGE_NITTER = "nitter"
STAGE_FIRECRAWL = "firecrawl"
STAGE_HTML = "html"
STAGE_TRANSCRIPT = "transcript"
STAGE_MARKDOWN = "markdown"

DETAIL_EMPTY = "empty"
DETAIL_BLOCKED = "blocked"
DETAIL_UNAVAILABLE = "unavailable"


def append_note(existing: Optional[str], next_note: Optional[str]) -> Optional[str]:
    if not next_note:
        return existing
    if not existing:
        return next_note
    return f"{existing}; {next_note}"


def last_attempt(attempts: Iterable[AttemptRecord], stage: str) -> Optional[AttemptRecord]:
    found = None
    for attempt in attempts:
        if attempt.stage == stage:
            found = attempt
    return found


def describe_attempts(attempts: Iterable[AttemptRecord]) -> str:
    """``stage ok`` / ``stage failed: reason`` for every recorded attempt."""
    parts = []
    for attempt in attempts:
        if attempt.ok:
            parts.append(f"{attempt.stage} ok")
        elif attempt.error:
            parts.append(f"{attempt.stage} failed: {attempt.error}")
        else:
            parts.append(f"{attempt.stage} {attempt.detail or 'failed'}")
    return "; ".join(parts) if parts else "no stages attempted"


def _bird_note(attempt: Optional[AttemptRecord]) -> str:
    if attempt is None or attempt.detail == DETAIL_UNAVAILABLE:
        return "Bird not available"
    if attempt.error:
        return f"Bird failed: {attempt.error}"
    return "Bird returned no text"


def _nitter_note(attempt: Optional[AttemptRecord]) -> str:
    if attempt is None or attempt.detail == DETAIL_UNAVAILABLE:
        return "Nitter not available"
    if attempt.error:
        return f"Nitter failed: {attempt.error}"
    if attempt.detail == DETAIL_BLOCKED:
        return "Nitter failed: Nitter returned blocked or empty content"
    return "Nitter returned no text"


def describe_tweet_failure(attempts: Iterable[AttemptRecord]) -> str:
    attempts = list(attempts)
    bird = _bird_note(last_attempt(attempts, STAGE_BIRD))
    nitter = _nitter_note(last_attempt(attempts, STAGE_NITTER))
    return f"Unable to fetch tweet content from X. {bird}. {nitter}."


def finalize_extracted_link_content(
    *,
    url: str,
    base_content: str,
    max_characters: Optional[int],
    title: Optional[str],
    description: Optional[str],
    site_name: Optional[str],
    transcript: TranscriptResolution,
    diagnostics: ContentFetchDiagnostics,
) -> ExtractedLinkContent:
    """Normalise, apply the character budget and assemble the immutable record.

    Totals are computed on the normalised text before truncation.
    """
    normalized = normalize_for_prompt(base_content)
    budget = apply_content_budget(normalized, max_characters)
    summary = summarize_transcript(transcript.text)
    segments = list(transcript.segments) if transcript.segments else None

    return ExtractedLinkContent(
        url=url,
        title=title,
        description=description,
        site_name=site_name,
        content=budget.content,
        truncated=budget.truncated,
        total_characters=budget.total_characters,
        word_count=budget.word_count,
        diagnostics=diagnostics,
        transcript_source=transcript.source,
        transcription_provider=transcription_provider_from_metadata(transcript.metadata),
        transcript_characters=summary["transcript_characters"],
        transcript_word_count=summary["transcript_word_count"],
        transcript_lines=summary["transcript_lines"],
        transcript_timed_text=format_transcript_segments(segments),
        transcript_segments=segments,
        transcript_metadata=copy.deepcopy(transcript.metadata) if transcript.metadata else None,
        media_duration_seconds=media_duration_from_metadata(transcript.metadata),
    )
