"""Turn a URL into clean, size-bounded text ready for an LLM prompt."""

from linkpreview.models.content import (
    AttemptRecord,
    ContentFetchDiagnostics,
    ContentFormat,
    ExtractedLinkContent,
    ExtractionStrategy,
    FetchOptions,
    FirecrawlMode,
    MarkdownMode,
    ProgressEvent,
    TranscriptResolution,
)
from linkpreview.services.client import LinkPreviewClient, create_link_preview_client
from linkpreview.services.deps import LinkPreviewDeps
from linkpreview.services.exceptions import (
    BlockedContentError,
    CapabilityMissingError,
    ExtractionError,
    ExtractionTimeout,
    NetworkError,
    ParseError,
    TranscriptionError,
)
from linkpreview.services.pipeline import fetch_link_content, fetch_link_content_sync

__all__ = [
    "AttemptRecord",
    "BlockedContentError",
    "CapabilityMissingError",
    "ContentFetchDiagnostics",
    "ContentFormat",
    "ExtractedLinkContent",
    "ExtractionError",
    "ExtractionStrategy",
    "ExtractionTimeout",
    "FetchOptions",
    "FirecrawlMode",
    "LinkPreviewClient",
    "LinkPreviewDeps",
    "MarkdownMode",
    "NetworkError",
    "ParseError",
    "ProgressEvent",
    "TranscriptResolution",
    "TranscriptionError",
    "create_link_preview_client",
    "fetch_link_content",
    "fetch_link_content_sync",
]
