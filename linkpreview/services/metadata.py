"""Metadata extraction from meta tags, JSON-LD blocks and scraper payloads."""

from __future__ import annotations

import json
from typing import Any, Iterable, Iterator, Optional

import structlog
from bs4 import BeautifulSoup

from linkpreview.models.content import LinkMetadata
from linkpreview.services.router import safe_hostname
from linkpreview.utils.text_cleaner import normalize_candidate

logger = structlog.get_logger(__name__)

_PODCAST_LIKE_TYPES = {"audioobject", "episode", "radioepisode", "musicrecording"}
_ARTICLE_LIKE_TYPES = {
    "article",
    "newsarticle",
    "blogposting",
    "reportagenewsarticle",
    "techarticle",
    "scholarlyarticle",
    "videoobject",
    "webpage",
    "product",
    "recipe",
}


def pick_first_text(candidates: Iterable[Any]) -> Optional[str]:
    """First candidate that is non-empty after normalisation."""
    for candidate in candidates:
        normalized = normalize_candidate(candidate)
        if normalized:
            return normalized
    return None


def is_podcast_like_jsonld_type(type_name: Optional[str]) -> bool:
    if not type_name:
        return False
    normalized = type_name.lower()
    if "podcast" in normalized:
        return True
    return normalized in _PODCAST_LIKE_TYPES


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def _meta_content(soup: BeautifulSoup, *keys: str) -> Optional[str]:
    for key in keys:
        tag = soup.find("meta", attrs={"property": key}) or soup.find(
            "meta", attrs={"name": key}
        )
        if tag is None:
            continue
        value = normalize_candidate(tag.get("content"))
        if value:
            return value
    return None


def extract_metadata_from_html(html: str, url: Optional[str] = None) -> LinkMetadata:
    """Read OpenGraph, Twitter card and plain ``<meta>``/``<title>`` values."""
    if not html:
        return LinkMetadata()
    soup = _soup(html)
    title_tag = soup.find("title")
    title = _meta_content(soup, "og:title", "twitter:title") or normalize_candidate(
        title_tag.get_text() if title_tag else None
    )
    description = _meta_content(
        soup, "og:description", "twitter:description", "description"
    )
    site_name = _meta_content(soup, "og:site_name", "application-name")
    if not site_name and url:
        site_name = safe_hostname(url)
    return LinkMetadata(
        title=title,
        description=description,
        site_name=site_name,
        type=_meta_content(soup, "og:type"),
    )


def _flatten_jsonld(payload: Any) -> Iterator[dict[str, Any]]:
    if isinstance(payload, list):
        for item in payload:
            yield from _flatten_jsonld(item)
        return
    if not isinstance(payload, dict):
        return
    graph = payload.get("@graph")
    if graph is not None:
        yield from _flatten_jsonld(graph)
    yield payload


def _jsonld_type(entry: dict[str, Any]) -> Optional[str]:
    raw = entry.get("@type")
    if isinstance(raw, list):
        podcast = next(
            (item for item in raw if isinstance(item, str) and is_podcast_like_jsonld_type(item)),
            None,
        )
        raw = podcast or next((item for item in raw if isinstance(item, str)), None)
    return raw if isinstance(raw, str) and raw.strip() else None


def _nested_name(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        return normalize_candidate(value.get("name"))
    return normalize_candidate(value)


def _load_jsonld_blocks(soup: BeautifulSoup) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = (script.string or script.get_text() or "").strip()
        if not raw:
            continue
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug(event="jsonld_invalid", operation="metadata.jsonld")
            continue
        entries.extend(_flatten_jsonld(payload))
    return entries


def extract_jsonld_content(html: str) -> Optional[LinkMetadata]:
    """Best JSON-LD entry as ``LinkMetadata``; podcast-like entries win."""
    if not html:
        return None
    entries = [
        entry
        for entry in _load_jsonld_blocks(_soup(html))
        if entry.get("headline") or entry.get("name") or entry.get("description")
    ]
    if not entries:
        return None

    def _rank(entry: dict[str, Any]) -> int:
        type_name = (_jsonld_type(entry) or "").lower()
        if is_podcast_like_jsonld_type(type_name):
            return 0
        if type_name in _ARTICLE_LIKE_TYPES:
            return 1
        return 2

    best = min(entries, key=_rank)
    return LinkMetadata(
        title=pick_first_text([best.get("headline"), best.get("name")]),
        description=normalize_candidate(best.get("description")),
        site_name=_nested_name(best.get("publisher"))
        or _nested_name(best.get("partOfSeries"))
        or _nested_name(best.get("isPartOf")),
        type=_jsonld_type(best),
    )


def _first_value(metadata: dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = metadata.get(key)
        if isinstance(value, list):
            value = next((item for item in value if isinstance(item, str)), None)
        normalized = normalize_candidate(value)
        if normalized:
            return normalized
    return None


def extract_metadata_from_firecrawl(metadata: Optional[dict[str, Any]]) -> LinkMetadata:
    if not metadata:
        return LinkMetadata()
    return LinkMetadata(
        title=_first_value(metadata, "title", "ogTitle", "og:title"),
        description=_first_value(
            metadata, "description", "ogDescription", "og:description"
        ),
        site_name=_first_value(metadata, "ogSiteName", "siteName", "og:site_name"),
        type=_first_value(metadata, "ogType", "og:type"),
    )


def merge_metadata(
    *sources: Optional[LinkMetadata], url: Optional[str] = None
) -> LinkMetadata:
    """Merge field by field; earlier sources win over later ones.

    Callers pass JSON-LD first, then scraper metadata, then HTML meta tags.
    """
    present = [source for source in sources if source is not None]
    site_name = pick_first_text(source.site_name for source in present)
    if not site_name and url:
        site_name = safe_hostname(url)
    return LinkMetadata(
        title=pick_first_text(source.title for source in present),
        description=pick_first_text(source.description for source in present),
        site_name=site_name,
        type=pick_first_text(source.type for source in present),
    )
