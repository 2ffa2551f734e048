from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

from linkpreview.config import DEFAULT_CACHE_MODE, DEFAULT_TIMEOUT_MS
from linkpreview.models.content import (
    ContentFormat,
    FetchOptions,
    FirecrawlMode,
    MarkdownMode,
)


@dataclass(frozen=True)
class ResolvedOptions:
    timeout_ms: int
    cache_mode: str
    max_characters: Optional[int]
    youtube_transcript: str
    firecrawl_mode: FirecrawlMode
    markdown_requested: bool
    markdown_mode: MarkdownMode
    deadline_ms: Optional[int]

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return int(math.floor(value))


def resolve_timeout_ms(value: Any, default: int = DEFAULT_TIMEOUT_MS) -> int:
    return _positive_int(value) or _positive_int(default) or DEFAULT_TIMEOUT_MS


def resolve_max_characters(value: Any) -> Optional[int]:
    return _positive_int(value)


def resolve_firecrawl_mode(value: Any) -> FirecrawlMode:
    try:
        return FirecrawlMode(value)
    except ValueError:
        return FirecrawlMode.AUTO


def resolve_markdown_mode(value: Any) -> MarkdownMode:
    try:
        return MarkdownMode(value)
    except ValueError:
        return MarkdownMode.AUTO


def resolve_options(
    options: Optional[FetchOptions], default_timeout_ms: int = DEFAULT_TIMEOUT_MS
) -> ResolvedOptions:
    options = options or FetchOptions()
    try:
        markdown_requested = ContentFormat(options.format) is ContentFormat.MARKDOWN
    except ValueError:
        markdown_requested = False
    return ResolvedOptions(
        timeout_ms=resolve_timeout_ms(options.timeout_ms, default_timeout_ms),
        cache_mode=options.cache_mode or DEFAULT_CACHE_MODE,
        max_characters=resolve_max_characters(options.max_characters),
        youtube_transcript=options.youtube_transcript or "auto",
        firecrawl_mode=resolve_firecrawl_mode(options.firecrawl_mode),
        markdown_requested=markdown_requested,
        markdown_mode=resolve_markdown_mode(options.markdown_mode),
        deadline_ms=_positive_int(options.deadline_ms),
    )
