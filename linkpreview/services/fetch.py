import logging
import os
import random
import threading
import time
from typing import Optional, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from linkpreview.models.content import FetchedDocument
from linkpreview.services.deps import ProgressReporter, call_capability
from linkpreview.services.exceptions import NetworkError

logger = logging.getLogger(__name__)

USER_AGENT = os.getenv(
    "LINK_PREVIEW_USER_AGENT",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
)
ACCEPT_LANG_OPTIONS = [
    value.strip()
    for value in os.getenv(
        "FETCH_ACCEPT_LANGUAGE_OPTIONS", "en-US,en;q=0.9|en-GB,en;q=0.8|en;q=0.7"
    ).split("|")
    if value.strip()
]
ACCEPT_HEADER = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

# Statuses that usually mean bot protection rather than a missing page.
BLOCKED_STATUS_CODES = {401, 403, 429, 503}
_HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml", "text/plain", "xml")

_session_lock = threading.Lock()
_session: requests.Session | None = None


def _single_attempt_adapter() -> HTTPAdapter:
    # Resilience comes from switching strategies, never from repeating a request.
    return HTTPAdapter(max_retries=Retry(total=0), pool_connections=16, pool_maxsize=32)


def _get_session() -> requests.Session:
    global _session
    if _session is not None:
        return _session
    with _session_lock:
        if _session is not None:
            return _session
        sess = requests.Session()
        adapter = _single_attempt_adapter()
        sess.mount("https://", adapter)
        sess.mount("http://", adapter)
        _session = sess
    return _session


def _build_headers(user_agent: Optional[str]) -> dict[str, str]:
    return {
        "User-Agent": user_agent or USER_AGENT,
        "Accept-Language": (
            random.choice(ACCEPT_LANG_OPTIONS) if ACCEPT_LANG_OPTIONS else "en-US,en;q=0.9"
        ),
        "Accept": ACCEPT_HEADER,
        "Cache-Control": "no-cache",
    }


def _is_html_response(response: requests.Response) -> bool:
    content_type = (response.headers.get("Content-Type") or "").lower()
    if not content_type:
        return True
    return any(marker in content_type for marker in _HTML_CONTENT_TYPES)


class RequestsHtmlFetcher:
    """Default ``fetch`` capability: one GET with a hard timeout, no retries.

    Thread-safe; the pooled session is shared across calls.
    """

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self._session = session
        self._user_agent = user_agent

    def __call__(self, url: str, *, timeout: float) -> FetchedDocument:
        session = self._session or _get_session()
        headers = _build_headers(self._user_agent)
        started = time.perf_counter()
        try:
            response = session.get(
                url,
                headers=headers,
                timeout=timeout,
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            logger.warning(
                "fetch.request_exception",
                extra={"url": url, "error": str(exc)},
            )
            raise NetworkError(f"Failed to fetch URL: {exc}", url=url) from exc

        if response.status_code >= 400:
            logger.warning(
                "fetch.http_error",
                extra={"url": url, "status": response.status_code},
            )
            raise NetworkError(
                f"Failed to fetch URL: HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )

        if not _is_html_response(response):
            content_type = response.headers.get("Content-Type")
            raise NetworkError(
                f"Unsupported content type: {content_type}",
                url=url,
                status_code=response.status_code,
            )

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        document = FetchedDocument(
            html=response.text,
            final_url=response.url or url,
            status_code=response.status_code,
            elapsed_ms=elapsed_ms,
        )
        logger.debug(
            "fetch.success",
            extra={
                "url": document.final_url,
                "status": document.status_code,
                "elapsed_ms": elapsed_ms,
            },
        )
        return document


def _as_document(result: Union[FetchedDocument, str, None], url: str) -> FetchedDocument:
    if isinstance(result, FetchedDocument):
        return FetchedDocument(
            html=result.html or "",
            final_url=result.final_url or url,
            status_code=result.status_code,
            elapsed_ms=result.elapsed_ms,
        )
    return FetchedDocument(html=result or "", final_url=url)


async def fetch_html_document(
    fetch,
    url: str,
    *,
    timeout: float,
    reporter: Optional[ProgressReporter] = None,
) -> FetchedDocument:
    """Fetch ``url`` once through the injected capability and report progress.

    Plain-string results are wrapped so callers always see the post-redirect
    ``final_url``.
    """
    if reporter:
        reporter.emit("fetch-html-start", url)
    try:
        result = await call_capability(fetch, url, stage_timeout=timeout, timeout=timeout)
    except NetworkError as exc:
        if reporter and exc.status_code in BLOCKED_STATUS_CODES:
            reporter.emit("fetch-html-blocked", url, status_code=exc.status_code)
        raise
    document = _as_document(result, url)
    if reporter:
        size = len(document.html.encode("utf-8"))
        reporter.emit("fetch-html-done", url, downloaded_bytes=size, total_bytes=size)
    return document
