"""Capability contracts injected into the pipeline, plus the glue to call them.

Each capability is optional except ``fetch``. The pipeline checks presence in
one place (``LinkPreviewDeps`` properties) instead of at every call site.
Capabilities may be plain callables, which run in a worker thread, or
coroutine functions, which are awaited directly.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

import structlog

from linkpreview.config import (
    DEFAULT_NITTER_HOST,
    DEFAULT_TIMEOUT_MS,
    THRESHOLDS,
    ContentThresholds,
    LinkPreviewSettings,
)
from linkpreview.models.content import (
    AttemptRecord,
    BirdTweet,
    FetchedDocument,
    FirecrawlScrapeResult,
    ProgressEvent,
)
from linkpreview.services.diagnostics import describe_attempts
from linkpreview.services.exceptions import ExtractionTimeout
from linkpreview.services.transcript import (
    TranscriptResolver,
    resolve_unavailable_transcript,
)

logger = structlog.get_logger(__name__)


class HtmlFetcher(Protocol):
    def __call__(self, url: str, *, timeout: float) -> Union[FetchedDocument, str]: ...


class FirecrawlScraper(Protocol):
    def __call__(
        self, url: str, *, cache_mode: str, timeout_ms: int
    ) -> Optional[FirecrawlScrapeResult]: ...


class MarkdownConverter(Protocol):
    def __call__(
        self,
        *,
        url: str,
        html: str,
        title: Optional[str],
        site_name: Optional[str],
        timeout_ms: int,
    ) -> str: ...


class TweetReader(Protocol):
    def __call__(self, *, url: str, timeout_ms: int) -> Optional[BirdTweet]: ...


ProgressSink = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


@dataclass
class LinkPreviewDeps:
    fetch: HtmlFetcher
    resolve_transcript: TranscriptResolver = resolve_unavailable_transcript
    scrape_with_firecrawl: Optional[FirecrawlScraper] = None
    convert_html_to_markdown: Optional[MarkdownConverter] = None
    read_tweet_with_bird: Optional[TweetReader] = None
    openai_api_key: Optional[str] = field(default=None, repr=False)
    fal_api_key: Optional[str] = field(default=None, repr=False)
    on_progress: Optional[ProgressSink] = None
    nitter_host: str = DEFAULT_NITTER_HOST
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    thresholds: ContentThresholds = THRESHOLDS

    @property
    def has_transcription_capability(self) -> bool:
        return bool(self.openai_api_key or self.fal_api_key)

    @property
    def has_firecrawl(self) -> bool:
        return self.scrape_with_firecrawl is not None

    @property
    def has_markdown_converter(self) -> bool:
        return self.convert_html_to_markdown is not None

    @property
    def has_tweet_reader(self) -> bool:
        return self.read_tweet_with_bird is not None

    def with_capabilities(self, **changes: Any) -> LinkPreviewDeps:
        return replace(self, **changes)

    @classmethod
    def from_settings(
        cls, settings: Optional[LinkPreviewSettings] = None, **overrides: Any
    ) -> LinkPreviewDeps:
        """Wire the default adapters for whatever the settings enable."""
        from linkpreview.services.firecrawl import FirecrawlClient
        from linkpreview.services.fetch import RequestsHtmlFetcher
        from linkpreview.services.markdown import LlmMarkdownConverter
        from linkpreview.services.twitter import BirdCliReader

        settings = settings or LinkPreviewSettings()
        deps = cls(
            fetch=RequestsHtmlFetcher(user_agent=settings.LINK_PREVIEW_USER_AGENT),
            scrape_with_firecrawl=FirecrawlClient.from_settings(settings),
            convert_html_to_markdown=LlmMarkdownConverter.from_settings(settings),
            read_tweet_with_bird=BirdCliReader.from_settings(settings),
            openai_api_key=settings.OPENAI_API_KEY,
            fal_api_key=settings.FAL_KEY,
            nitter_host=settings.NITTER_HOST,
            default_timeout_ms=settings.DEFAULT_TIMEOUT_MS,
        )
        return deps.with_capabilities(**overrides) if overrides else deps


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)) and not str(exc):
        return "timed out"
    return str(exc) or exc.__class__.__name__


def _is_coroutine_callable(func: Callable[..., Any]) -> bool:
    return inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(
        getattr(func, "__call__", None)
    )


async def call_capability(
    func: Callable[..., Any], *args: Any, stage_timeout: float, **kwargs: Any
) -> Any:
    """Run a sync or async capability under ``asyncio.wait_for``.

    Sync callables keep running in their worker thread after a timeout; the
    pipeline simply stops waiting for them.
    """

    async def _run() -> Any:
        if _is_coroutine_callable(func):
            return await func(*args, **kwargs)
        result = await asyncio.to_thread(func, *args, **kwargs)
        if inspect.isawaitable(result):
            return await result
        return result

    return await asyncio.wait_for(_run(), timeout=stage_timeout)


class StageBudget:
    """Per-stage timeouts, optionally clamped to an overall deadline."""

    def __init__(
        self,
        deadline_ms: Optional[int],
        *,
        min_stage_seconds: float = THRESHOLDS.min_stage_seconds,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._clock = clock
        self._min_stage_seconds = min_stage_seconds
        self._deadline = clock() + deadline_ms / 1000 if deadline_ms else None

    @property
    def bounded(self) -> bool:
        return self._deadline is not None

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return self._deadline - self._clock()

    def timeout_for(
        self,
        stage: str,
        timeout_ms: int,
        attempts: list[AttemptRecord],
        *,
        url: Optional[str] = None,
    ) -> float:
        """Seconds the next stage may take; raises once the deadline is spent."""
        seconds = timeout_ms / 1000
        remaining = self.remaining()
        if remaining is None:
            return seconds
        if remaining <= self._min_stage_seconds:
            logger.warning(
                event="extraction_deadline_exhausted",
                operation="pipeline.deadline",
                stage=stage,
                remaining_seconds=round(remaining, 3),
            )
            raise ExtractionTimeout(
                f"Extraction deadline exhausted before {stage}; attempts: "
                f"{describe_attempts(attempts)}",
                url=url,
            )
        return min(seconds, remaining)


class ProgressReporter:
    """Fire-and-forget delivery of progress events to an optional sink.

    Sink failures are logged and never reach the pipeline. Async sinks are
    scheduled as tasks rather than awaited.
    """

    def __init__(self, sink: Optional[ProgressSink]) -> None:
        self._sink = sink
        self._pending: set[asyncio.Future] = set()

    def emit(self, kind: str, url: str, **details: Any) -> None:
        if self._sink is None:
            return
        event = ProgressEvent(kind=kind, url=url, details=details)
        logger.debug(event="progress_emit", operation="progress.emit", kind=kind)
        try:
            result = self._sink(event)
        except Exception as exc:
            self._log_failure(kind, exc)
            return
        if inspect.isawaitable(result):
            try:
                task = asyncio.ensure_future(result)
            except RuntimeError as exc:
                self._log_failure(kind, exc)
                return
            self._pending.add(task)
            task.add_done_callback(lambda done: self._finish(kind, done))

    def _finish(self, kind: str, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log_failure(kind, exc)

    @staticmethod
    def _log_failure(kind: str, exc: BaseException) -> None:
        logger.warning(
            event="progress_sink_failed",
            operation="progress.emit",
            kind=kind,
            error=describe_error(exc),
        )
