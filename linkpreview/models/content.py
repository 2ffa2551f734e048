from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from linkpreview.config import DEFAULT_CACHE_MODE


class FirecrawlMode(str, Enum):
    OFF = "off"
    AUTO = "auto"
    ALWAYS = "always"


class ContentFormat(str, Enum):
    TEXT = "text"
    MARKDOWN = "markdown"


class MarkdownMode(str, Enum):
    AUTO = "auto"
    LLM = "llm"
    READABILITY = "readability"


class ExtractionStrategy(str, Enum):
    HTML = "html"
    FIRECRAWL = "firecrawl"
    BIRD = "bird"
    NITTER = "nitter"


class LinkRoute(str, Enum):
    """Closed set of URL classes the pipeline dispatches on."""

    SPOTIFY_EPISODE = "spotify_episode"
    APPLE_PODCAST = "apple_podcast"
    YOUTUBE = "youtube"
    TWITTER_STATUS = "twitter_status"
    GENERIC = "generic"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _to_wire(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {
            (_camel(key) if isinstance(key, str) else key): _to_wire(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_to_wire(item) for item in value]
    return value


@dataclass
class FetchOptions:
    """Per-call extraction options."""

    # ``None`` falls back to the client's configured default timeout.
    timeout_ms: Optional[float] = None
    cache_mode: str = DEFAULT_CACHE_MODE
    max_characters: Optional[float] = None
    youtube_transcript: str = "auto"
    firecrawl_mode: FirecrawlMode | str = FirecrawlMode.AUTO
    format: ContentFormat | str = ContentFormat.TEXT
    markdown_mode: MarkdownMode | str = MarkdownMode.AUTO
    # Overall budget across every stage; ``None`` keeps per-stage timeouts only.
    deadline_ms: Optional[float] = None


@dataclass(frozen=True)
class FetchedDocument:
    html: str
    final_url: str
    status_code: int = 200
    elapsed_ms: int = 0


@dataclass(frozen=True)
class ReadabilityResult:
    text: str
    html: Optional[str] = None


@dataclass(frozen=True)
class LinkMetadata:
    title: Optional[str] = None
    description: Optional[str] = None
    site_name: Optional[str] = None
    type: Optional[str] = None


@dataclass(frozen=True)
class FirecrawlScrapeResult:
    markdown: str
    html: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class BirdTweet:
    text: str
    author_username: Optional[str] = None
    author_name: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class TranscriptSegment:
    start_ms: int
    text: str
    end_ms: Optional[int] = None


@dataclass(frozen=True)
class TranscriptDiagnostics:
    cache_mode: Optional[str] = None
    cache_status: str = "unknown"
    text_provided: bool = False
    provider: Optional[str] = None
    attempted_providers: tuple[str, ...] = ()
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "attempted_providers", tuple(self.attempted_providers or ()))


@dataclass(frozen=True)
class TranscriptOptions:
    youtube_transcript_mode: str = "auto"
    cache_mode: str = DEFAULT_CACHE_MODE


@dataclass
class TranscriptResolution:
    text: Optional[str] = None
    source: Optional[str] = None
    diagnostics: Optional[TranscriptDiagnostics] = None
    segments: Optional[list[TranscriptSegment]] = None
    metadata: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class FirecrawlDiagnostics:
    attempted: bool = False
    used: bool = False
    cache_mode: str = DEFAULT_CACHE_MODE
    cache_status: str = "unknown"
    notes: Optional[str] = None


@dataclass(frozen=True)
class MarkdownDiagnostics:
    requested: bool = False
    used: bool = False
    provider: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class AttemptRecord:
    """Outcome of one strategy stage, in the order stages ran."""

    stage: str
    ok: bool
    error: Optional[str] = None
    detail: Optional[str] = None


@dataclass(frozen=True)
class ContentFetchDiagnostics:
    """Immutable snapshot of how one extraction went."""

    strategy: ExtractionStrategy
    firecrawl: FirecrawlDiagnostics
    markdown: MarkdownDiagnostics
    transcript: TranscriptDiagnostics
    attempts: tuple[AttemptRecord, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "attempts", tuple(self.attempts))

    def to_dict(self) -> dict[str, Any]:
        return _to_wire(asdict(self))


@dataclass(frozen=True)
class ProgressEvent:
    kind: str
    url: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "url": self.url}
        payload.update(_to_wire(self.details))
        return payload


@dataclass(frozen=True)
class ExtractedLinkContent:
    url: str
    title: Optional[str]
    description: Optional[str]
    site_name: Optional[str]
    content: str
    truncated: bool
    total_characters: int
    word_count: int
    diagnostics: ContentFetchDiagnostics
    transcript_source: Optional[str] = None
    transcription_provider: Optional[str] = None
    transcript_characters: Optional[int] = None
    transcript_word_count: Optional[int] = None
    transcript_lines: Optional[int] = None
    transcript_timed_text: Optional[str] = None
    transcript_segments: Optional[list[TranscriptSegment]] = None
    transcript_metadata: Optional[dict[str, Any]] = None
    media_duration_seconds: Optional[float] = None

    @property
    def strategy(self) -> ExtractionStrategy:
        return self.diagnostics.strategy

    def to_dict(self) -> dict[str, Any]:
        """Render the record with camelCase keys, ready for JSON encoding.

        ``transcript_metadata`` belongs to the resolver and is passed through
        with its keys untouched.
        """
        payload = _to_wire(asdict(self))
        payload["transcriptMetadata"] = copy.deepcopy(self.transcript_metadata)
        return payload
