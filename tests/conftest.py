from types import SimpleNamespace

import pytest

from linkpreview.config import ContentThresholds
from linkpreview.models.content import FirecrawlScrapeResult
from linkpreview.services.deps import LinkPreviewDeps
from linkpreview.services.exceptions import NetworkError

ARTICLE_PARAGRAPH = (
    "The harbour town rebuilt its sea wall after the winter storms, and the "
    "council published a long report describing how the new stones were laid, "
    "which quarries supplied them and what the fishermen thought of the work. "
)


def article_html(title="Harbour News", paragraphs=6, extra_head=""):
    body = "".join(f"<p>{ARTICLE_PARAGRAPH}</p>" for _ in range(paragraphs))
    return (
        f"<html><head><title>{title}</title>{extra_head}</head>"
        f"<body><nav>Home | About</nav><article><h1>{title}</h1>{body}</article>"
        "<footer>Copyright</footer></body></html>"
    )


class FakeFetcher:
    """Maps URLs to HTML strings or exceptions and records every call."""

    def __init__(self, pages=None, default=None):
        self.pages = dict(pages or {})
        self.default = default
        self.calls = []

    def __call__(self, url, *, timeout):
        self.calls.append(SimpleNamespace(url=url, timeout=timeout))
        page = self.pages.get(url, self.default)
        if page is None:
            raise NetworkError("Failed to fetch URL: HTTP 404", url=url, status_code=404)
        if isinstance(page, Exception):
            raise page
        return page


class FakeScraper:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def __call__(self, url, *, cache_mode, timeout_ms):
        self.calls.append(
            SimpleNamespace(url=url, cache_mode=cache_mode, timeout_ms=timeout_ms)
        )
        if self.error is not None:
            raise self.error
        return self.result


class ProgressRecorder:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    @property
    def kinds(self):
        return [event.kind for event in self.events]


@pytest.fixture()
def thresholds():
    return ContentThresholds()


@pytest.fixture()
def progress():
    return ProgressRecorder()


@pytest.fixture()
def firecrawl_payload():
    markdown = "# Scraped\n\n" + ARTICLE_PARAGRAPH * 3
    return FirecrawlScrapeResult(
        markdown=markdown,
        html=None,
        metadata={"title": "Scraped Title", "ogSiteName": "Scraped Site"},
    )


@pytest.fixture()
def make_deps(thresholds):
    def _make(fetcher=None, **overrides):
        return LinkPreviewDeps(
            fetch=fetcher or FakeFetcher(),
            thresholds=thresholds,
            **overrides,
        )

    return _make


@pytest.fixture()
def make_fetcher():
    return FakeFetcher


@pytest.fixture()
def make_scraper():
    return FakeScraper


@pytest.fixture()
def page():
    return article_html
