"""Resolve a URL to one ``LinkRoute`` before any fetching happens."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlparse, urlunparse

from linkpreview.models.content import LinkRoute
from linkpreview.services.youtube import is_youtube_url

TWITTER_HOSTS = frozenset({"x.com", "twitter.com", "mobile.twitter.com"})

PODCAST_HOST_SUFFIXES: tuple[str, ...] = (
    "spotify.com",
    "podcasts.apple.com",
    "podchaser.com",
    "podbean.com",
    "buzzsprout.com",
    "spreaker.com",
    "simplecast.com",
    "rss.com",
    "libsyn.com",
    "omny.fm",
    "acast.com",
    "transistor.fm",
    "captivate.fm",
    "soundcloud.com",
    "ivoox.com",
    "iheart.com",
    "megaphone.fm",
    "pca.st",
    "player.fm",
    "castbox.fm",
)

_SPOTIFY_ID_PATTERN = re.compile(r"^[A-Za-z0-9]+$")
_APPLE_SHOW_PATTERN = re.compile(r"/id(\d+)(?:/|$)")
_TWITTER_STATUS_PATTERN = re.compile(r"/status/\d+")


@dataclass(frozen=True)
class RouteMatch:
    route: LinkRoute
    url: str
    episode_id: Optional[str] = None
    show_id: Optional[str] = None

    @property
    def is_podcast(self) -> bool:
        return self.route in (LinkRoute.SPOTIFY_EPISODE, LinkRoute.APPLE_PODCAST)

    @property
    def platform(self) -> str:
        if self.route is LinkRoute.SPOTIFY_EPISODE:
            return "Spotify"
        if self.route is LinkRoute.APPLE_PODCAST:
            return "Apple Podcasts"
        if self.route is LinkRoute.TWITTER_STATUS:
            return "X"
        if self.route is LinkRoute.YOUTUBE:
            return "YouTube"
        return "web"


def _normalised_host(url: str) -> Optional[str]:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def safe_hostname(url: str) -> Optional[str]:
    """Hostname without a leading ``www.``, or ``None`` for unparseable URLs."""
    return _normalised_host(url)


def extract_spotify_episode_id(url: str) -> Optional[str]:
    host = _normalised_host(url)
    if not host or not host.endswith("spotify.com"):
        return None
    parts = [part for part in urlparse(url).path.split("/") if part]
    if "episode" not in parts:
        return None
    index = parts.index("episode")
    candidate = parts[index + 1] if index + 1 < len(parts) else None
    if candidate and _SPOTIFY_ID_PATTERN.match(candidate):
        return candidate
    return None


def extract_apple_podcast_ids(url: str) -> Optional[tuple[str, Optional[str]]]:
    """Return ``(show_id, episode_id)`` for Apple Podcasts URLs."""
    if _normalised_host(url) != "podcasts.apple.com":
        return None
    parsed = urlparse(url)
    match = _APPLE_SHOW_PATTERN.search(parsed.path)
    if not match:
        return None
    episode_raw = (parse_qs(parsed.query).get("i") or [None])[0]
    episode_id = episode_raw if episode_raw and episode_raw.isdigit() else None
    return match.group(1), episode_id


def is_twitter_status_url(url: str) -> bool:
    host = _normalised_host(url)
    if host not in TWITTER_HOSTS:
        return False
    return bool(_TWITTER_STATUS_PATTERN.search(urlparse(url).path))


def to_nitter_url(url: str, nitter_host: str = "nitter.net") -> Optional[str]:
    """Swap an X/Twitter URL onto the mirror host, forcing https."""
    host = _normalised_host(url)
    if host not in TWITTER_HOSTS:
        return None
    parsed = urlparse(url)
    return urlunparse(parsed._replace(scheme="https", netloc=nitter_host))


def is_podcast_host(url: str) -> bool:
    host = _normalised_host(url)
    if not host:
        return False
    if host.startswith("music.amazon.") and "/podcasts/" in urlparse(url).path:
        return True
    return any(
        host == suffix or host.endswith(f".{suffix}") for suffix in PODCAST_HOST_SUFFIXES
    )


def classify_link(url: str) -> RouteMatch:
    """Classify ``url`` once; the pipeline dispatches on the returned route."""
    spotify_id = extract_spotify_episode_id(url)
    if spotify_id:
        return RouteMatch(LinkRoute.SPOTIFY_EPISODE, url, episode_id=spotify_id)

    apple_ids = extract_apple_podcast_ids(url)
    if apple_ids:
        show_id, episode_id = apple_ids
        return RouteMatch(
            LinkRoute.APPLE_PODCAST, url, episode_id=episode_id, show_id=show_id
        )

    if is_youtube_url(url):
        return RouteMatch(LinkRoute.YOUTUBE, url)

    if is_twitter_status_url(url):
        return RouteMatch(LinkRoute.TWITTER_STATUS, url)

    return RouteMatch(LinkRoute.GENERIC, url)
