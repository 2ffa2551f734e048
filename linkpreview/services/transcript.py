"""Boundary to the external transcript resolver.

The pipeline never looks at how a transcript was produced; it calls the
resolver on every generic path and lets the resolver decide applicability.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Optional, Protocol, Sequence

from linkpreview.models.content import (
    TranscriptDiagnostics,
    TranscriptOptions,
    TranscriptResolution,
    TranscriptSegment,
)

if TYPE_CHECKING:
    from linkpreview.services.deps import LinkPreviewDeps

_LINE_SPLIT = re.compile(r"\r?\n")
_WORD_SPLIT = re.compile(r"\s+")


class TranscriptResolver(Protocol):
    def __call__(
        self,
        url: str,
        html: Optional[str],
        deps: "LinkPreviewDeps",
        options: TranscriptOptions,
    ) -> TranscriptResolution: ...


def resolve_unavailable_transcript(
    url: str,
    html: Optional[str],
    deps: "LinkPreviewDeps",
    options: TranscriptOptions,
) -> TranscriptResolution:
    """Default resolver used when no transcript subsystem is wired in."""
    return TranscriptResolution(
        text=None,
        source=None,
        diagnostics=TranscriptDiagnostics(
            cache_mode=options.cache_mode,
            cache_status="bypassed" if options.cache_mode == "bypass" else "unknown",
            text_provided=False,
            provider=None,
            attempted_providers=(),
            notes="No transcript resolver configured",
        ),
    )


def ensure_transcript_diagnostics(
    resolution: TranscriptResolution, cache_mode: str
) -> TranscriptDiagnostics:
    """Return the resolver diagnostics, always carrying a cache mode."""
    if resolution.diagnostics is not None:
        diagnostics = resolution.diagnostics
        if not diagnostics.cache_mode:
            diagnostics = replace(diagnostics, cache_mode=cache_mode)
        return diagnostics

    has_text = bool(resolution.text)
    if cache_mode == "bypass":
        cache_status = "bypassed"
    elif has_text:
        cache_status = "miss"
    else:
        cache_status = "unknown"
    return TranscriptDiagnostics(
        cache_mode=cache_mode,
        cache_status=cache_status,
        text_provided=has_text,
        provider=resolution.source,
        attempted_providers=(resolution.source,) if resolution.source else (),
        notes="Cache bypass requested" if cache_mode == "bypass" else None,
    )


def _format_timestamp(start_ms: int) -> str:
    total_seconds = max(0, int(start_ms // 1000))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def format_transcript_segments(
    segments: Optional[Sequence[TranscriptSegment]],
) -> Optional[str]:
    """Render segments as ``[m:ss] text`` lines; ``None`` when nothing remains."""
    if not segments:
        return None
    lines = []
    for segment in segments:
        text = " ".join(segment.text.split())
        if text:
            lines.append(f"[{_format_timestamp(segment.start_ms)}] {text}")
    return "\n".join(lines) or None


def summarize_transcript(text: Optional[str]) -> dict[str, Optional[int]]:
    if not text:
        return {
            "transcript_characters": None,
            "transcript_lines": None,
            "transcript_word_count": None,
        }
    lines = len([line for line in _LINE_SPLIT.split(text) if line.strip()])
    words = len([word for word in _WORD_SPLIT.split(text) if word])
    return {
        "transcript_characters": len(text) or None,
        "transcript_lines": lines or None,
        "transcript_word_count": words or None,
    }


def transcription_provider_from_metadata(
    metadata: Optional[dict[str, Any]],
) -> Optional[str]:
    if not metadata:
        return None
    provider = metadata.get("transcriptionProvider")
    if isinstance(provider, str) and provider.strip():
        return provider.strip()
    return None


def _positive_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value in (float("inf"), float("-inf")) or value <= 0:
        return None
    return value


def media_duration_from_metadata(metadata: Optional[dict[str, Any]]) -> Optional[float]:
    if not metadata:
        return None
    direct = _positive_number(metadata.get("durationSeconds"))
    if direct is not None:
        return direct
    media = metadata.get("media")
    if isinstance(media, dict):
        return _positive_number(media.get("durationSeconds"))
    return None
