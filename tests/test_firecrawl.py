import asyncio
from types import SimpleNamespace

import pytest
import requests

from linkpreview.config import ContentThresholds
from linkpreview.models.content import FirecrawlMode, FirecrawlScrapeResult
from linkpreview.services.deps import ProgressReporter, StageBudget
from linkpreview.services.exceptions import FirecrawlError
from linkpreview.services.firecrawl import (
    FirecrawlClient,
    FirecrawlFallback,
    initial_firecrawl_diagnostics,
    should_fallback_to_firecrawl,
)

THRESHOLDS = ContentThresholds()


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def post(self, url, json, headers, timeout):
        self.calls.append(SimpleNamespace(url=url, json=json, headers=headers, timeout=timeout))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def test_small_documents_never_fall_back():
    assert not should_fallback_to_firecrawl("<p>tiny</p>", THRESHOLDS)


def test_block_hints_fall_back():
    html = "<html><body><h1>Attention Required! | Cloudflare</h1></body></html>"

    assert should_fallback_to_firecrawl(html, THRESHOLDS)


def test_large_documents_with_thin_text_fall_back():
    html = "<html><body><div>hi</div>" + "<script>var x = 1;</script>" * 400 + "</body></html>"

    assert should_fallback_to_firecrawl(html, THRESHOLDS)


def test_substantial_articles_do_not_fall_back():
    html = "<html><body><article><p>" + "word " * 100 + "</p></article>" + " " * 6000 + "</body></html>"

    assert not should_fallback_to_firecrawl(html, THRESHOLDS)


def test_initial_diagnostics_reflect_cache_mode():
    assert initial_firecrawl_diagnostics("bypass").cache_status == "bypassed"
    assert initial_firecrawl_diagnostics("default").cache_status == "unknown"


def test_client_posts_scrape_request():
    session = FakeSession(
        FakeResponse(
            body={
                "success": True,
                "data": {
                    "markdown": "# Hi",
                    "html": "<h1>Hi</h1>",
                    "metadata": {"title": "Hi", "cacheState": "hit"},
                },
            }
        )
    )
    client = FirecrawlClient("fc-key", base_url="https://fc.example/", session=session)

    result = client("https://example.com", cache_mode="bypass", timeout_ms=10_000)

    assert result == FirecrawlScrapeResult(
        markdown="# Hi", html="<h1>Hi</h1>", metadata={"title": "Hi", "cacheState": "hit"}
    )
    call = session.calls[0]
    assert call.url == "https://fc.example/v1/scrape"
    assert call.headers == {"Authorization": "Bearer fc-key"}
    assert call.json["maxAge"] == 0
    assert call.json["formats"] == ["markdown", "html"]


def test_client_raises_on_service_error():
    session = FakeSession(FakeResponse(status_code=402, body={"success": False, "error": "Payment required"}))
    client = FirecrawlClient("fc-key", session=session)

    with pytest.raises(FirecrawlError, match="Payment required"):
        client("https://example.com", cache_mode="default", timeout_ms=1000)


def test_client_wraps_transport_errors():
    client = FirecrawlClient("fc-key", session=FakeSession(requests.Timeout("slow")))

    with pytest.raises(FirecrawlError, match="slow"):
        client("https://example.com", cache_mode="default", timeout_ms=1000)


def test_client_returns_none_without_content():
    session = FakeSession(FakeResponse(body={"success": True, "data": {}}))

    assert FirecrawlClient("k", session=session)("https://e.com", cache_mode="default", timeout_ms=1) is None


def _fallback(scraper, mode=FirecrawlMode.AUTO, url="https://example.com", attempts=None):
    return FirecrawlFallback(
        url,
        scraper,
        mode=mode,
        cache_mode="default",
        timeout_ms=5000,
        budget=StageBudget(None),
        reporter=ProgressReporter(None),
        attempts=attempts if attempts is not None else [],
    )


def test_fallback_scrapes_once_and_appends_reasons():
    calls = []
    payload = FirecrawlScrapeResult(markdown="body", metadata={"cacheState": "miss"})

    def scraper(url, *, cache_mode, timeout_ms):
        calls.append(url)
        return payload

    fallback = _fallback(scraper)

    async def _twice():
        first = await fallback.attempt("first reason")
        second = await fallback.attempt("second reason")
        return first, second

    first, second = asyncio.run(_twice())

    assert first is second is payload
    assert calls == ["https://example.com"]
    assert fallback.diagnostics.notes == "first reason; second reason"
    assert fallback.diagnostics.cache_status == "miss"
    assert fallback.attempted


def test_fallback_records_scraper_errors():
    attempts = []

    def scraper(url, *, cache_mode, timeout_ms):
        raise FirecrawlError("Firecrawl scrape failed: HTTP 500")

    fallback = _fallback(scraper, attempts=attempts)

    assert asyncio.run(fallback.attempt("why")) is None
    assert fallback.diagnostics.notes == "Firecrawl error: Firecrawl scrape failed: HTTP 500; why"
    assert attempts[0].stage == "firecrawl"
    assert attempts[0].ok is False


def test_fallback_unusable_for_youtube_and_off_mode():
    def scraper(url, **kwargs):
        return None

    assert not _fallback(scraper, url="https://youtu.be/dQw4w9WgXcQ").usable
    assert not _fallback(scraper, mode=FirecrawlMode.OFF).usable
    assert not _fallback(None).usable
    assert asyncio.run(_fallback(None).attempt("x")) is None
