from __future__ import annotations


class ExtractionError(Exception):
    """Base class for link extraction errors."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class NetworkError(ExtractionError):
    """The source document could not be fetched."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, url=url)
        self.status_code = status_code


class ParseError(ExtractionError):
    """The URL or document could not be interpreted."""


class CapabilityMissingError(ExtractionError):
    """A required capability (API key, binary) is not configured."""


class TranscriptionError(ExtractionError):
    """Transcript resolution produced no text where one was required."""


class BlockedContentError(ExtractionError):
    """Every applicable strategy returned blocked or empty content."""


class ExtractionTimeout(ExtractionError):
    """The overall extraction deadline was exhausted."""


class FirecrawlError(ExtractionError):
    """The scraping service rejected or failed a request."""


class TweetReaderError(ExtractionError):
    """The social reader could not return a post."""


class MarkdownConversionError(ExtractionError):
    """The HTML to Markdown converter failed."""


__all__ = [
    "ExtractionError",
    "NetworkError",
    "ParseError",
    "CapabilityMissingError",
    "TranscriptionError",
    "BlockedContentError",
    "ExtractionTimeout",
    "FirecrawlError",
    "TweetReaderError",
    "MarkdownConversionError",
]
