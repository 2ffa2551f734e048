"""X/Twitter helpers: block detection, mirror challenges and the Bird CLI reader."""

from __future__ import annotations

import json
import re
import shutil
import subprocess
from typing import Any, Callable, Optional

import structlog

from linkpreview.config import TWITTER_BLOCKED_TEXT_PATTERN, LinkPreviewSettings
from linkpreview.models.content import BirdTweet
from linkpreview.services.exceptions import TweetReaderError

logger = structlog.get_logger(__name__)

# Nitter instances increasingly sit behind the Anubis proof-of-work wall.
_ANUBIS_PATTERN = re.compile(
    r"anubis_challenge|anubis_version|within\.website/x/cmd/anubis|"
    r"making sure you(?:'|&#39;|\u2019)re not a bot",
    re.IGNORECASE,
)


def is_blocked_twitter_content(content: Optional[str]) -> bool:
    if not content:
        return False
    return bool(TWITTER_BLOCKED_TEXT_PATTERN.search(content))


def is_anubis_html(html: Optional[str]) -> bool:
    if not html:
        return False
    return bool(_ANUBIS_PATTERN.search(html))


def _string(value: Any) -> Optional[str]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_bird_payload(raw: str) -> BirdTweet:
    """Parse ``bird read --json-full`` output; a list payload yields its first post."""
    if not raw or not raw.strip():
        raise TweetReaderError("bird read returned empty output")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise TweetReaderError("bird read returned invalid JSON") from exc
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if not isinstance(payload, dict):
        raise TweetReaderError("bird read returned an invalid payload")

    text = _string(payload.get("text")) or _string(payload.get("fullText"))
    if text is None:
        raise TweetReaderError("bird read returned an invalid payload")
    author = payload.get("author") if isinstance(payload.get("author"), dict) else {}
    return BirdTweet(
        text=text,
        author_username=_string(author.get("username")),
        author_name=_string(author.get("name")),
        id=_string(payload.get("id")),
        created_at=_string(payload.get("createdAt")),
    )


class BirdCliReader:
    """Runs the ``bird`` CLI to read a single post without rendering the page."""

    def __init__(
        self,
        binary: str = "bird",
        *,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.binary = binary
        self._runner = runner

    @classmethod
    def from_settings(cls, settings: LinkPreviewSettings) -> Optional[BirdCliReader]:
        binary = settings.BIRD_PATH or shutil.which("bird")
        if not binary:
            return None
        return cls(binary)

    def __call__(self, *, url: str, timeout_ms: int) -> BirdTweet:
        command = [self.binary, "read", url, "--json-full"]
        try:
            completed = self._runner(
                command,
                capture_output=True,
                text=True,
                timeout=timeout_ms / 1000,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise TweetReaderError(
                f"bird read timed out after {timeout_ms}ms", url=url
            ) from exc
        except OSError as exc:
            raise TweetReaderError(f"bird read failed: {exc}", url=url) from exc

        if completed.returncode != 0:
            detail = (completed.stderr or "").strip() or f"exit code {completed.returncode}"
            raise TweetReaderError(f"bird read failed: {detail}", url=url)

        tweet = parse_bird_payload(completed.stdout or "")
        logger.debug(
            event="bird_read",
            operation="twitter.bird_read",
            status="success",
            chars=len(tweet.text),
        )
        return tweet
