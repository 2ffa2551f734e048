"""HTML to text extraction: plain text, article body, readability and sanitising."""

from __future__ import annotations

import re
from typing import Optional

import structlog
import trafilatura
from bs4 import BeautifulSoup, Comment
from readability import Document

from linkpreview.models.content import ReadabilityResult
from linkpreview.utils.text_cleaner import clean_text, normalize_for_prompt

logger = structlog.get_logger(__name__)

_NON_CONTENT_TAGS = ["script", "style", "noscript", "template", "svg", "canvas"]
_CHROME_TAGS = ["header", "footer", "nav", "aside", "iframe", "button"]
_MARKDOWN_STRIP_TAGS = [
    *_NON_CONTENT_TAGS,
    "iframe",
    "form",
    "input",
    "button",
    "select",
    "textarea",
    "link",
    "meta",
    "object",
    "embed",
]
_BLOCK_TAGS = [
    "address",
    "article",
    "blockquote",
    "dd",
    "div",
    "dl",
    "dt",
    "figcaption",
    "figure",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "hr",
    "li",
    "main",
    "ol",
    "p",
    "pre",
    "section",
    "table",
    "td",
    "th",
    "tr",
    "ul",
]
_KEPT_ATTRIBUTES = {"href", "src", "alt", "title", "colspan", "rowspan"}
_TAG_PATTERN = re.compile(r"<[^>]+>")


def _initialise_soup(html: str) -> Optional[BeautifulSoup]:
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:  # pragma: no cover - fallback parser
        try:
            return BeautifulSoup(html, "html.parser")
        except Exception:  # pragma: no cover - unexpected HTML edge case
            return None


def _decompose(soup, tags: list[str]) -> None:
    for tag in soup.find_all(tags):
        tag.decompose()


def _block_text(node) -> str:
    """Text of ``node`` with block elements and ``<br>`` on their own lines."""
    for br in node.find_all("br"):
        br.replace_with("\n")
    for block in node.find_all(_BLOCK_TAGS):
        block.insert_before("\n")
        block.insert_after("\n")
    return node.get_text()


def extract_plain_text(html: str) -> str:
    """All visible text of the document, including navigation chrome."""
    if not html:
        return ""
    soup = _initialise_soup(html)
    if soup is None:
        return normalize_for_prompt(_TAG_PATTERN.sub(" ", html))
    _decompose(soup, _NON_CONTENT_TAGS)
    return normalize_for_prompt(_block_text(soup))


def extract_article_content(html: str) -> str:
    """Text of the main content container with page chrome removed."""
    if not html:
        return ""
    soup = _initialise_soup(html)
    if soup is None:
        return clean_text(_TAG_PATTERN.sub(" ", html))

    # Remove noisy sections before harvesting text.
    _decompose(soup, [*_NON_CONTENT_TAGS, *_CHROME_TAGS])

    container = soup.find("article") or soup.find("main") or soup.body or soup
    return clean_text(_block_text(container))


def _extract_with_readability(html: str, url: Optional[str]) -> Optional[ReadabilityResult]:
    try:
        document = Document(html, url=url)
        summary_html = document.summary(html_partial=True) or ""
    except Exception as exc:
        logger.debug(
            event="readability_failed",
            operation="parser.readability",
            engine="readability",
            error=str(exc),
        )
        return None

    soup = _initialise_soup(summary_html)
    if soup is None:
        text = clean_text(_TAG_PATTERN.sub(" ", summary_html))
    else:
        text = clean_text(_block_text(soup))
    if not text:
        return None
    return ReadabilityResult(text=text, html=summary_html)


def _extract_with_trafilatura(html: str, url: Optional[str]) -> Optional[ReadabilityResult]:
    try:
        text = trafilatura.extract(
            html,
            url=url,
            include_comments=False,
            include_tables=True,
            favor_recall=True,
        )
    except Exception as exc:
        logger.debug(
            event="readability_failed",
            operation="parser.readability",
            engine="trafilatura",
            error=str(exc),
        )
        return None
    cleaned = clean_text(text)
    if not cleaned:
        return None
    return ReadabilityResult(text=cleaned, html=None)


def extract_readability_from_html(
    html: str, url: Optional[str] = None
) -> Optional[ReadabilityResult]:
    """Isolate the main article; readability-lxml first, trafilatura second.

    Returns ``None`` when neither engine finds any text.
    """
    if not html:
        return None
    result = _extract_with_readability(html, url) or _extract_with_trafilatura(html, url)
    logger.debug(
        event="readability_result",
        operation="parser.readability",
        url=url,
        status="success" if result else "empty",
        chars=len(result.text) if result else 0,
    )
    return result


def sanitize_html_for_markdown_conversion(html: str) -> str:
    """Strip scripts, forms, comments and presentational attributes."""
    if not html:
        return ""
    soup = _initialise_soup(html)
    if soup is None:
        return html
    _decompose(soup, _MARKDOWN_STRIP_TAGS)
    for comment in soup.find_all(string=lambda value: isinstance(value, Comment)):
        comment.extract()
    for tag in soup.find_all(True):
        tag.attrs = {
            key: value for key, value in tag.attrs.items() if key in _KEPT_ATTRIBUTES
        }
    root = soup.body or soup
    return "".join(str(child) for child in root.children).strip()
