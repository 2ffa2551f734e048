"""URL to ``ExtractedLinkContent``: strategy selection, fallbacks and merging.

Strategy order for a single call:

1. podcast directories short-circuit to transcript resolution;
2. X/Twitter status URLs try the Bird reader, then the Nitter mirror;
3. ``firecrawl_mode="always"`` scrapes before any direct fetch;
4. the direct HTML fetch, with Firecrawl as fallback when it fails or the page
   looks blocked or thin.

Every stage outcome is appended to an ``AttemptRecord`` list that feeds both
the diagnostics and the error raised when all strategies are exhausted.
"""

from __future__ import annotations

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Optional

import structlog

from linkpreview.models.content import (
    AttemptRecord,
    ContentFetchDiagnostics,
    ExtractedLinkContent,
    ExtractionStrategy,
    FetchOptions,
    FetchedDocument,
    FirecrawlMode,
    FirecrawlScrapeResult,
    LinkMetadata,
    LinkRoute,
    MarkdownDiagnostics,
    ReadabilityResult,
    TranscriptDiagnostics,
    TranscriptOptions,
    TranscriptResolution,
)
from linkpreview.services.deps import (
    LinkPreviewDeps,
    ProgressReporter,
    StageBudget,
    call_capability,
    describe_error,
)
from linkpreview.services.diagnostics import (
    DETAIL_BLOCKED,
    DETAIL_EMPTY,
    DETAIL_UNAVAILABLE,
    STAGE_BIRD,
    STAGE_HTML,
    STAGE_MARKDOWN,
    STAGE_NITTER,
    STAGE_TRANSCRIPT,
    append_note,
    describe_tweet_failure,
    finalize_extracted_link_content,
)
from linkpreview.services.exceptions import (
    BlockedContentError,
    CapabilityMissingError,
    ExtractionError,
    NetworkError,
    ParseError,
    TranscriptionError,
)
from linkpreview.services.fetch import fetch_html_document
from linkpreview.services.firecrawl import FirecrawlFallback, should_fallback_to_firecrawl
from linkpreview.services.markdown import convert_markdown_for_html
from linkpreview.services.metadata import (
    extract_jsonld_content,
    extract_metadata_from_firecrawl,
    extract_metadata_from_html,
    is_podcast_like_jsonld_type,
    merge_metadata,
    pick_first_text,
)
from linkpreview.services.options import ResolvedOptions, resolve_options
from linkpreview.services.parser import extract_article_content, extract_readability_from_html
from linkpreview.services.router import (
    RouteMatch,
    classify_link,
    is_podcast_host,
    safe_hostname,
    to_nitter_url,
)
from linkpreview.services.selection import (
    prefer_description,
    prefer_readability,
    select_base_content,
    strip_leading_title,
)
from linkpreview.services.transcript import ensure_transcript_diagnostics
from linkpreview.services.twitter import is_anubis_html, is_blocked_twitter_content
from linkpreview.services.youtube import (
    extract_youtube_short_description,
    extract_youtube_video_id,
    is_youtube_url,
    is_youtube_video_url,
)
from linkpreview.utils.correlation import extraction_context, update_context
from linkpreview.utils.text_cleaner import normalize_for_prompt

logger = structlog.get_logger(__name__)

_PODCAST_MISSING_KEY_MESSAGES = {
    LinkRoute.SPOTIFY_EPISODE: (
        "Spotify episode transcription requires OPENAI_API_KEY or FAL_KEY (Whisper); "
        "otherwise you may only get a captcha/recaptcha HTML page."
    ),
    LinkRoute.APPLE_PODCAST: (
        "Apple Podcasts transcription requires OPENAI_API_KEY or FAL_KEY (Whisper); "
        "otherwise you may only get a slow/blocked HTML page."
    ),
}
_PODCAST_TRANSCRIPT_NOTES = {
    LinkRoute.SPOTIFY_EPISODE: "Spotify episode: skipped HTML fetch to avoid captcha pages",
    LinkRoute.APPLE_PODCAST: (
        "Apple Podcasts: skipped HTML fetch (prefer iTunes lookup / enclosures)"
    ),
}

REASON_FORCED = "Firecrawl forced via options"
REASON_FETCH_FAILED = "HTML fetch failed; falling back to Firecrawl"
REASON_THIN_CONTENT = "HTML content looked blocked/thin; falling back to Firecrawl"


@dataclass(frozen=True)
class HtmlAnalysis:
    """Normalised candidates derived from one HTML document."""

    metadata: LinkMetadata
    podcast_like: bool
    article_text: str
    readability: Optional[ReadabilityResult]
    readability_preferred: bool
    body_candidate: str


def analyse_html(
    html: str,
    url: str,
    readability: Optional[ReadabilityResult],
    deps: LinkPreviewDeps,
) -> HtmlAnalysis:
    """Pure, CPU-bound part of the HTML path; runs in a worker thread."""
    thresholds = deps.thresholds
    jsonld = extract_jsonld_content(html)
    metadata = merge_metadata(jsonld, extract_metadata_from_html(html, url), url=url)
    podcast_like = is_podcast_like_jsonld_type(jsonld.type if jsonld else None) or (
        is_podcast_host(url)
    )

    article_text = normalize_for_prompt(extract_article_content(html))
    if readability is None:
        readability = extract_readability_from_html(html, url)
    readability_text = normalize_for_prompt(readability.text) if readability else ""
    use_readability = prefer_readability(readability_text, article_text, thresholds)
    body = readability_text if use_readability else article_text

    description = normalize_for_prompt(metadata.description)
    if prefer_description(
        description,
        body,
        podcast_like=podcast_like,
        readability_preferred=use_readability,
        thresholds=thresholds,
    ):
        body = description

    return HtmlAnalysis(
        metadata=metadata,
        podcast_like=podcast_like,
        article_text=article_text,
        readability=readability,
        readability_preferred=use_readability,
        body_candidate=body,
    )


class LinkContentExtraction:
    """State for one ``fetch_link_content`` call.

    Nothing here outlives the call; concurrent calls share only ``deps``.
    """

    def __init__(self, url: str, options: ResolvedOptions, deps: LinkPreviewDeps) -> None:
        self.url = url
        self.options = options
        self.deps = deps
        self.route: RouteMatch = classify_link(url)
        self.attempts: list[AttemptRecord] = []
        self.reporter = ProgressReporter(deps.on_progress)
        self.budget = StageBudget(
            options.deadline_ms, min_stage_seconds=deps.thresholds.min_stage_seconds
        )
        self.firecrawl = FirecrawlFallback(
            url,
            deps.scrape_with_firecrawl,
            mode=options.firecrawl_mode,
            cache_mode=options.cache_mode,
            timeout_ms=options.timeout_ms,
            budget=self.budget,
            reporter=self.reporter,
            attempts=self.attempts,
        )

    def _stage_timeout(self, stage: str) -> float:
        return self.budget.timeout_for(
            stage, self.options.timeout_ms, self.attempts, url=self.url
        )

    def _diagnostics(
        self,
        strategy: ExtractionStrategy,
        markdown: MarkdownDiagnostics,
        transcript: TranscriptDiagnostics,
    ) -> ContentFetchDiagnostics:
        return ContentFetchDiagnostics(
            strategy=strategy,
            firecrawl=self.firecrawl.diagnostics,
            markdown=markdown,
            transcript=transcript,
            attempts=tuple(self.attempts),
        )

    async def run(self) -> ExtractedLinkContent:
        if self.route.is_podcast:
            return await self._podcast_short_circuit()

        if self.route.route is LinkRoute.TWITTER_STATUS:
            tweet = await self._attempt_bird()
            if tweet is not None:
                return tweet
            mirrored = await self._attempt_nitter()
            if mirrored is not None:
                return mirrored

        if self.options.firecrawl_mode is FirecrawlMode.ALWAYS:
            forced = await self._firecrawl_result(REASON_FORCED)
            if forced is not None:
                return forced

        document, html_error = await self._fetch_direct()
        if document is None:
            return await self._recover_from_failed_fetch(html_error)
        html = document.html
        effective_url = document.final_url

        readability: Optional[ReadabilityResult] = None
        if self.options.firecrawl_mode is FirecrawlMode.AUTO and await asyncio.to_thread(
            should_fallback_to_firecrawl, html, self.deps.thresholds
        ):
            readability = await asyncio.to_thread(
                extract_readability_from_html, html, effective_url
            )
            readability_text = normalize_for_prompt(readability.text) if readability else ""
            if len(readability_text) < self.deps.thresholds.min_readability_content_characters:
                fallback = await self._firecrawl_result(REASON_THIN_CONTENT)
                if fallback is not None:
                    return fallback

        result = await self._build_from_html(
            html, ExtractionStrategy.HTML, readability, url=effective_url
        )
        if self.route.route is LinkRoute.TWITTER_STATUS and is_blocked_twitter_content(
            result.content
        ):
            raise BlockedContentError(describe_tweet_failure(self.attempts), url=self.url)
        return result

    async def _recover_from_failed_fetch(
        self, html_error: Optional[BaseException]
    ) -> ExtractedLinkContent:
        if not self.firecrawl.usable:
            if isinstance(html_error, ExtractionError):
                raise html_error
            if html_error is not None:
                raise NetworkError(
                    f"Failed to fetch HTML document: {describe_error(html_error)}",
                    url=self.url,
                ) from html_error
            raise NetworkError("Failed to fetch HTML document", url=self.url)

        fallback = await self._firecrawl_result(REASON_FETCH_FAILED)
        if fallback is not None:
            return fallback

        notes = self.firecrawl.diagnostics.notes
        message = "Failed to fetch HTML document"
        if notes:
            message += f"; Firecrawl notes: {notes}"
        if html_error is not None:
            message += f"; HTML error: {describe_error(html_error)}"
        raise NetworkError(message, url=self.url)

    async def _resolve_transcript(
        self, html: Optional[str], url: Optional[str] = None
    ) -> TranscriptResolution:
        url = url or self.url
        timeout = self._stage_timeout(STAGE_TRANSCRIPT)
        service = "podcast" if self.route.is_podcast else (
            "youtube" if self.route.route is LinkRoute.YOUTUBE else "generic"
        )
        self.reporter.emit("transcript-start", url, service=service, hint=None)
        try:
            resolution = await call_capability(
                self.deps.resolve_transcript,
                url,
                html,
                self.deps,
                TranscriptOptions(
                    youtube_transcript_mode=self.options.youtube_transcript,
                    cache_mode=self.options.cache_mode,
                ),
                stage_timeout=timeout,
            )
        except Exception as exc:
            message = describe_error(exc)
            logger.warning(
                event="transcript_failed",
                operation="pipeline.transcript",
                status="error",
                error=message,
            )
            self.attempts.append(AttemptRecord(STAGE_TRANSCRIPT, False, error=message))
            self.reporter.emit(
                "transcript-done", url, ok=False, service=service, source=None, hint=None
            )
            return TranscriptResolution(
                diagnostics=TranscriptDiagnostics(
                    cache_mode=self.options.cache_mode,
                    notes=f"Transcript resolution failed: {message}",
                )
            )

        resolution = resolution or TranscriptResolution()
        self.reporter.emit(
            "transcript-done",
            url,
            ok=bool(resolution.text),
            service=service,
            source=resolution.source,
            hint=None,
        )
        if resolution.text:
            self.attempts.append(
                AttemptRecord(STAGE_TRANSCRIPT, True, detail=resolution.source)
            )
        return resolution

    async def _podcast_short_circuit(self) -> ExtractedLinkContent:
        route = self.route.route
        platform = self.route.platform
        if not self.deps.has_transcription_capability:
            raise CapabilityMissingError(_PODCAST_MISSING_KEY_MESSAGES[route], url=self.url)

        transcript = await self._resolve_transcript(None)
        if not transcript.text:
            notes = transcript.diagnostics.notes if transcript.diagnostics else None
            suffix = f" ({notes})" if notes else ""
            raise TranscriptionError(
                f"Failed to transcribe {platform} episode{suffix}", url=self.url
            )

        transcript_diagnostics = ensure_transcript_diagnostics(
            transcript, self.options.cache_mode
        )
        transcript_diagnostics = replace(
            transcript_diagnostics,
            notes=append_note(transcript_diagnostics.notes, _PODCAST_TRANSCRIPT_NOTES[route]),
        )
        self.firecrawl.note(f"{platform} short-circuit skipped HTML/Firecrawl")
        markdown = MarkdownDiagnostics(
            requested=self.options.markdown_requested,
            notes=f"{platform} short-circuit uses transcript content",
        )
        return self._finalize(
            base_content=select_base_content("", transcript.text, transcript.segments),
            metadata=LinkMetadata(site_name=platform),
            transcript=transcript,
            diagnostics=self._diagnostics(
                ExtractionStrategy.HTML, markdown, transcript_diagnostics
            ),
        )

    async def _attempt_bird(self) -> Optional[ExtractedLinkContent]:
        reader = self.deps.read_tweet_with_bird
        if reader is None:
            self.attempts.append(AttemptRecord(STAGE_BIRD, False, detail=DETAIL_UNAVAILABLE))
            return None

        timeout = self._stage_timeout(STAGE_BIRD)
        self.reporter.emit("bird-start", self.url)
        try:
            tweet = await call_capability(
                reader,
                stage_timeout=timeout,
                url=self.url,
                timeout_ms=int(timeout * 1000),
            )
        except Exception as exc:
            message = describe_error(exc)
            logger.info(
                event="bird_failed",
                operation="pipeline.bird",
                status="error",
                error=message,
            )
            self.attempts.append(AttemptRecord(STAGE_BIRD, False, error=message))
            self.reporter.emit("bird-done", self.url, ok=False, text_bytes=None)
            return None

        text = (tweet.text or "").strip() if tweet is not None else ""
        if not text:
            self.attempts.append(AttemptRecord(STAGE_BIRD, False, detail=DETAIL_EMPTY))
            self.reporter.emit("bird-done", self.url, ok=False, text_bytes=None)
            return None

        self.attempts.append(AttemptRecord(STAGE_BIRD, True))
        transcript = TranscriptResolution()
        markdown = MarkdownDiagnostics(
            requested=self.options.markdown_requested,
            notes="Bird tweet fetch provides plain text",
        )
        title = f"@{tweet.author_username}" if tweet.author_username else None
        result = self._finalize(
            base_content=text,
            metadata=LinkMetadata(title=title, site_name="X"),
            transcript=transcript,
            diagnostics=self._diagnostics(
                ExtractionStrategy.BIRD,
                markdown,
                ensure_transcript_diagnostics(transcript, self.options.cache_mode),
            ),
        )
        self.reporter.emit(
            "bird-done", self.url, ok=True, text_bytes=len(result.content.encode("utf-8"))
        )
        return result

    async def _attempt_nitter(self) -> Optional[ExtractedLinkContent]:
        nitter_url = to_nitter_url(self.url, self.deps.nitter_host)
        if nitter_url is None:
            self.attempts.append(
                AttemptRecord(STAGE_NITTER, False, detail=DETAIL_UNAVAILABLE)
            )
            return None

        timeout = self._stage_timeout(STAGE_NITTER)
        self.reporter.emit("nitter-start", self.url)
        try:
            document = await fetch_html_document(self.deps.fetch, nitter_url, timeout=timeout)
        except Exception as exc:
            self.attempts.append(
                AttemptRecord(STAGE_NITTER, False, error=describe_error(exc))
            )
            self.reporter.emit("nitter-done", self.url, ok=False, text_bytes=None)
            return None

        html = document.html
        if not html.strip():
            self.attempts.append(AttemptRecord(STAGE_NITTER, False, detail=DETAIL_EMPTY))
            self.reporter.emit("nitter-done", self.url, ok=False, text_bytes=None)
            return None
        if is_anubis_html(html):
            self.attempts.append(
                AttemptRecord(
                    STAGE_NITTER, False, error="Nitter returned an Anubis challenge page"
                )
            )
            self.reporter.emit("nitter-done", self.url, ok=False, text_bytes=None)
            return None

        self.reporter.emit(
            "nitter-done", self.url, ok=True, text_bytes=len(html.encode("utf-8"))
        )
        self.attempts.append(AttemptRecord(STAGE_NITTER, True, detail="fetched"))
        result = await self._build_from_html(
            html, ExtractionStrategy.NITTER, None, url=self.url
        )
        if is_blocked_twitter_content(result.content):
            self.attempts.append(
                AttemptRecord(STAGE_NITTER, False, detail=DETAIL_BLOCKED)
            )
            return None
        return result

    async def _fetch_direct(
        self,
    ) -> tuple[Optional[FetchedDocument], Optional[BaseException]]:
        timeout = self._stage_timeout(STAGE_HTML)
        try:
            document = await fetch_html_document(
                self.deps.fetch, self.url, timeout=timeout, reporter=self.reporter
            )
        except Exception as exc:
            message = describe_error(exc)
            logger.info(
                event="html_fetch_failed",
                operation="pipeline.fetch_html",
                status="error",
                error=message,
            )
            self.attempts.append(AttemptRecord(STAGE_HTML, False, error=message))
            return None, exc
        if not document.html:
            self.attempts.append(AttemptRecord(STAGE_HTML, False, detail=DETAIL_EMPTY))
            return None, None
        self.attempts.append(AttemptRecord(STAGE_HTML, True))
        return document, None

    async def _firecrawl_result(self, reason: str) -> Optional[ExtractedLinkContent]:
        payload = await self.firecrawl.attempt(reason)
        if payload is None:
            return None
        result = await self._build_from_firecrawl(payload)
        if result is not None:
            return result
        self.firecrawl.note("Firecrawl returned empty content")
        return None

    async def _build_from_firecrawl(
        self, payload: FirecrawlScrapeResult
    ) -> Optional[ExtractedLinkContent]:
        markdown = normalize_for_prompt(payload.markdown)
        if not markdown:
            self.firecrawl.note("Firecrawl markdown normalization yielded empty text")
            return None

        page_html = payload.html
        jsonld = await asyncio.to_thread(extract_jsonld_content, page_html) if page_html else None
        html_metadata = (
            await asyncio.to_thread(extract_metadata_from_html, page_html, self.url)
            if page_html
            else LinkMetadata()
        )
        scraper_metadata = extract_metadata_from_firecrawl(payload.metadata)
        transcript = await self._resolve_transcript(page_html)

        merged = merge_metadata(jsonld, scraper_metadata, html_metadata)
        site_name = pick_first_text(
            [scraper_metadata.site_name, html_metadata.site_name, safe_hostname(self.url)]
        )
        podcast_like = is_podcast_like_jsonld_type(jsonld.type if jsonld else None) or (
            is_podcast_host(self.url)
        )
        description = normalize_for_prompt(merged.description)
        candidate = (
            description
            if prefer_description(
                description, markdown, podcast_like=podcast_like, thresholds=self.deps.thresholds
            )
            else markdown
        )
        base_content = select_base_content(candidate, transcript.text, transcript.segments)
        if not base_content:
            self.firecrawl.note("Firecrawl produced content that normalized to an empty string")
            return None

        self.firecrawl.mark_used()
        markdown_diagnostics = MarkdownDiagnostics(
            requested=self.options.markdown_requested, used=True, provider="firecrawl"
        )
        return self._finalize(
            base_content=base_content,
            metadata=LinkMetadata(
                title=merged.title, description=merged.description, site_name=site_name
            ),
            transcript=transcript,
            diagnostics=self._diagnostics(
                ExtractionStrategy.FIRECRAWL,
                markdown_diagnostics,
                ensure_transcript_diagnostics(transcript, self.options.cache_mode),
            ),
        )

    def _markdown_stage_timeout(self, url: str) -> float:
        if (
            self.options.markdown_requested
            and self.deps.has_markdown_converter
            and not is_youtube_url(url)
        ):
            return self._stage_timeout(STAGE_MARKDOWN)
        return self.options.timeout_seconds

    async def _build_from_html(
        self,
        html: str,
        strategy: ExtractionStrategy,
        readability: Optional[ReadabilityResult],
        *,
        url: str,
    ) -> ExtractedLinkContent:
        if is_youtube_video_url(url) and not extract_youtube_video_id(url):
            raise ParseError("Invalid YouTube video id in URL", url=url)

        analysis = await asyncio.to_thread(analyse_html, html, url, readability, self.deps)
        transcript = await self._resolve_transcript(html, url)

        candidate = analysis.body_candidate
        if transcript.text is None:
            youtube_description = extract_youtube_short_description(html)
            if youtube_description:
                candidate = normalize_for_prompt(youtube_description)

        base_content = select_base_content(candidate, transcript.text, transcript.segments)
        if base_content == analysis.article_text:
            base_content = strip_leading_title(base_content, analysis.metadata.title)

        outcome = await convert_markdown_for_html(
            url=url,
            html=html,
            readability_html=analysis.readability.html if analysis.readability else None,
            base_content=base_content,
            requested=self.options.markdown_requested,
            mode=self.options.markdown_mode,
            title=analysis.metadata.title,
            site_name=analysis.metadata.site_name,
            converter=self.deps.convert_html_to_markdown,
            timeout_ms=self.options.timeout_ms,
            stage_timeout=self._markdown_stage_timeout(url),
            attempts=self.attempts,
        )

        return self._finalize(
            base_content=outcome.content,
            url=url,
            metadata=analysis.metadata,
            transcript=transcript,
            diagnostics=self._diagnostics(
                strategy,
                outcome.diagnostics,
                ensure_transcript_diagnostics(transcript, self.options.cache_mode),
            ),
        )

    def _finalize(
        self,
        *,
        base_content: str,
        metadata: LinkMetadata,
        transcript: TranscriptResolution,
        diagnostics: ContentFetchDiagnostics,
        url: Optional[str] = None,
    ) -> ExtractedLinkContent:
        return finalize_extracted_link_content(
            url=url or self.url,
            base_content=base_content,
            max_characters=self.options.max_characters,
            title=metadata.title,
            description=metadata.description,
            site_name=metadata.site_name,
            transcript=transcript,
            diagnostics=diagnostics,
        )


async def fetch_link_content(
    url: str,
    options: Optional[FetchOptions],
    deps: LinkPreviewDeps,
) -> ExtractedLinkContent:
    """Extract LLM-ready content for ``url``.

    Raises an ``ExtractionError`` subclass only once every applicable strategy
    has failed; the message names each attempt and why it failed.
    """
    resolved = resolve_options(options, deps.default_timeout_ms)
    started = time.perf_counter()
    with extraction_context(url, strategy=None):
        extraction = LinkContentExtraction(url, resolved, deps)
        logger.info(
            event="link_extraction_started",
            operation="pipeline.fetch_link_content",
            route=extraction.route.route.value,
            firecrawl_mode=resolved.firecrawl_mode.value,
        )
        try:
            result = await extraction.run()
        except ExtractionError as exc:
            logger.warning(
                event="link_extraction_failed",
                operation="pipeline.fetch_link_content",
                status="error",
                error_type=type(exc).__name__,
                error=str(exc),
                elapsed_ms=int((time.perf_counter() - started) * 1000),
            )
            raise
        update_context(strategy=result.strategy.value)
        logger.info(
            event="link_extraction_finished",
            operation="pipeline.fetch_link_content",
            status="success",
            chars=result.total_characters,
            truncated=result.truncated,
            elapsed_ms=int((time.perf_counter() - started) * 1000),
        )
        return result


def fetch_link_content_sync(
    url: str,
    options: Optional[FetchOptions],
    deps: LinkPreviewDeps,
) -> ExtractedLinkContent:
    """Blocking wrapper for callers without an event loop of their own."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(fetch_link_content(url, options, deps))

    # Already inside a running loop: run on a private loop in a worker thread.
    with ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(asyncio.run, fetch_link_content(url, options, deps))
        return future.result()
