"""YouTube URL helpers and page scraping for the short description."""

from __future__ import annotations

import json
import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

import structlog

logger = structlog.get_logger(__name__)

_VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")
_PATH_VIDEO_PREFIXES = ("shorts", "embed", "live", "v")
_PLAYER_RESPONSE_MARKERS = (
    "ytInitialPlayerResponse =",
    "ytInitialPlayerResponse=",
)


def _host(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def is_youtube_url(url: str) -> bool:
    host = _host(url)
    return "youtube.com" in host or "youtu.be" in host


def is_youtube_video_url(url: str) -> bool:
    """True for URLs that point at a single video rather than a channel or feed."""
    if not is_youtube_url(url):
        return False
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if host.endswith("youtu.be"):
        return bool(parsed.path.strip("/"))
    segments = [segment for segment in parsed.path.split("/") if segment]
    if not segments:
        return False
    if segments[0] == "watch":
        return True
    return segments[0] in _PATH_VIDEO_PREFIXES


def extract_youtube_video_id(url: str) -> Optional[str]:
    if not is_youtube_url(url):
        return None
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    candidate: Optional[str] = None
    if host.endswith("youtu.be"):
        candidate = parsed.path.strip("/").split("/")[0] or None
    else:
        segments = [segment for segment in parsed.path.split("/") if segment]
        if segments and segments[0] == "watch":
            candidate = (parse_qs(parsed.query).get("v") or [None])[0]
        elif len(segments) >= 2 and segments[0] in _PATH_VIDEO_PREFIXES:
            candidate = segments[1]
    if candidate and _VIDEO_ID_PATTERN.match(candidate):
        return candidate
    return None


def _balanced_json_object(source: str, start: int) -> Optional[str]:
    """Return the JSON object starting at ``start``, respecting strings and escapes."""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(source)):
        char = source[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return source[start : index + 1]
    return None


def extract_youtube_short_description(html: str) -> Optional[str]:
    """Pull ``videoDetails.shortDescription`` out of the inline player response."""
    if not html:
        return None
    for marker in _PLAYER_RESPONSE_MARKERS:
        position = html.find(marker)
        if position < 0:
            continue
        brace = html.find("{", position + len(marker))
        if brace < 0:
            continue
        raw = _balanced_json_object(html, brace)
        if not raw:
            continue
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug(
                event="youtube_player_response_invalid",
                operation="youtube.short_description",
            )
            continue
        details = payload.get("videoDetails") if isinstance(payload, dict) else None
        description = details.get("shortDescription") if isinstance(details, dict) else None
        if isinstance(description, str) and description.strip():
            return description.strip()
    return None
