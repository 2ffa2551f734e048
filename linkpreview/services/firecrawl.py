"""Firecrawl scraping-service adapter and the decision of when to pay for it."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Optional

import requests
import structlog

from linkpreview.config import (
    BLOCKED_HTML_HINT_PATTERN,
    THRESHOLDS,
    ContentThresholds,
    LinkPreviewSettings,
)
from linkpreview.models.content import (
    AttemptRecord,
    FirecrawlDiagnostics,
    FirecrawlMode,
    FirecrawlScrapeResult,
)
from linkpreview.services.deps import (
    FirecrawlScraper,
    ProgressReporter,
    StageBudget,
    call_capability,
    describe_error,
)
from linkpreview.services.diagnostics import STAGE_FIRECRAWL, append_note
from linkpreview.services.exceptions import FirecrawlError
from linkpreview.services.parser import extract_article_content, extract_plain_text
from linkpreview.services.youtube import is_youtube_url
from linkpreview.utils.text_cleaner import normalize_for_prompt

logger = structlog.get_logger(__name__)

SCRAPE_PATH = "/v1/scrape"


def should_fallback_to_firecrawl(
    html: str, thresholds: ContentThresholds = THRESHOLDS
) -> bool:
    """Decide whether a directly fetched page needs the scraping service.

    Block or CAPTCHA hints always trigger. Thin article text only triggers when
    the raw document is large, so genuinely small pages never cost a scrape.
    """
    plain_text = normalize_for_prompt(extract_plain_text(html))
    if BLOCKED_HTML_HINT_PATTERN.search(plain_text):
        return True
    article = normalize_for_prompt(extract_article_content(html))
    if len(article) >= thresholds.min_html_content_characters:
        return False
    return len(html) >= thresholds.min_document_characters_for_fallback


def initial_firecrawl_diagnostics(cache_mode: str) -> FirecrawlDiagnostics:
    return FirecrawlDiagnostics(
        attempted=False,
        used=False,
        cache_mode=cache_mode,
        cache_status="bypassed" if cache_mode == "bypass" else "unknown",
        notes=None,
    )


class FirecrawlClient:
    """Calls the Firecrawl ``/v1/scrape`` endpoint for markdown and raw HTML."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.firecrawl.dev",
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: LinkPreviewSettings) -> Optional[FirecrawlClient]:
        if not settings.FIRECRAWL_API_KEY:
            return None
        return cls(settings.FIRECRAWL_API_KEY, base_url=settings.FIRECRAWL_BASE_URL)

    def _build_payload(self, url: str, cache_mode: str, timeout_ms: int) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "url": url,
            "formats": ["markdown", "html"],
            "onlyMainContent": True,
            "timeout": timeout_ms,
        }
        if cache_mode == "bypass":
            payload["maxAge"] = 0
        return payload

    def __call__(
        self, url: str, *, cache_mode: str, timeout_ms: int
    ) -> Optional[FirecrawlScrapeResult]:
        try:
            response = self._session.post(
                f"{self._base_url}{SCRAPE_PATH}",
                json=self._build_payload(url, cache_mode, timeout_ms),
                headers={"Authorization": f"Bearer {self._api_key}"},
                # Leave headroom for the service to report its own timeout.
                timeout=timeout_ms / 1000 + 5,
            )
        except requests.RequestException as exc:
            raise FirecrawlError(f"Firecrawl request failed: {exc}", url=url) from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400 or not body.get("success", False):
            reason = body.get("error") or f"HTTP {response.status_code}"
            raise FirecrawlError(f"Firecrawl scrape failed: {reason}", url=url)

        data = body.get("data") or {}
        markdown = data.get("markdown") or ""
        html = data.get("html") or data.get("rawHtml")
        if not markdown and not html:
            return None
        metadata = data.get("metadata")
        return FirecrawlScrapeResult(
            markdown=markdown,
            html=html,
            metadata=metadata if isinstance(metadata, dict) else None,
        )


def _cache_status_from(payload: FirecrawlScrapeResult, cache_mode: str) -> str:
    if cache_mode == "bypass":
        return "bypassed"
    state = (payload.metadata or {}).get("cacheState")
    if state in ("hit", "miss"):
        return state
    return "unknown"


class FirecrawlFallback:
    """Per-call memo around the scraping service.

    The first trigger scrapes; every later trigger only appends its reason to
    the notes and reuses the stored payload.
    """

    def __init__(
        self,
        url: str,
        scraper: Optional[FirecrawlScraper],
        *,
        mode: FirecrawlMode,
        cache_mode: str,
        timeout_ms: int,
        budget: StageBudget,
        reporter: ProgressReporter,
        attempts: list[AttemptRecord],
    ) -> None:
        self.url = url
        self.diagnostics = initial_firecrawl_diagnostics(cache_mode)
        self._scraper = scraper
        self._mode = mode
        self._cache_mode = cache_mode
        self._timeout_ms = timeout_ms
        self._budget = budget
        self._reporter = reporter
        self._attempts = attempts
        self._attempted = False
        self._payload: Optional[FirecrawlScrapeResult] = None

    @property
    def usable(self) -> bool:
        return (
            self._scraper is not None
            and self._mode is not FirecrawlMode.OFF
            and not is_youtube_url(self.url)
        )

    @property
    def attempted(self) -> bool:
        return self._attempted

    def note(self, message: str) -> None:
        self.diagnostics = replace(
            self.diagnostics, notes=append_note(self.diagnostics.notes, message)
        )

    def mark_used(self) -> None:
        self.diagnostics = replace(self.diagnostics, used=True)

    async def attempt(self, reason: str) -> Optional[FirecrawlScrapeResult]:
        if not self.usable:
            return None
        if not self._attempted:
            timeout = self._budget.timeout_for(
                STAGE_FIRECRAWL, self._timeout_ms, self._attempts, url=self.url
            )
            self._attempted = True
            self._payload = await self._scrape(reason, timeout)
        self.note(reason)
        return self._payload

    async def _scrape(self, reason: str, timeout: float) -> Optional[FirecrawlScrapeResult]:
        self._reporter.emit("firecrawl-start", self.url, reason=reason)
        self.diagnostics = replace(self.diagnostics, attempted=True)
        try:
            payload = await call_capability(
                self._scraper,
                self.url,
                stage_timeout=timeout,
                cache_mode=self._cache_mode,
                timeout_ms=int(timeout * 1000),
            )
        except Exception as exc:
            message = describe_error(exc)
            logger.warning(
                event="firecrawl_failed",
                operation="firecrawl.scrape",
                status="error",
                error=message,
            )
            self.note(f"Firecrawl error: {message}")
            self._attempts.append(AttemptRecord(STAGE_FIRECRAWL, False, error=message))
            self._reporter.emit(
                "firecrawl-done", self.url, ok=False, markdown_bytes=None, html_bytes=None
            )
            return None

        if payload is None:
            self.note("Firecrawl returned no content")
            self._attempts.append(
                AttemptRecord(STAGE_FIRECRAWL, False, detail="empty")
            )
            self._reporter.emit(
                "firecrawl-done", self.url, ok=False, markdown_bytes=None, html_bytes=None
            )
            return None

        self.diagnostics = replace(
            self.diagnostics, cache_status=_cache_status_from(payload, self._cache_mode)
        )
        self._attempts.append(AttemptRecord(STAGE_FIRECRAWL, True))
        self._reporter.emit(
            "firecrawl-done",
            self.url,
            ok=True,
            markdown_bytes=len((payload.markdown or "").encode("utf-8")),
            html_bytes=len(payload.html.encode("utf-8")) if payload.html else None,
        )
        logger.info(
            event="firecrawl_scraped",
            operation="firecrawl.scrape",
            status="success",
            reason=reason,
        )
        return payload
