from __future__ import annotations

import os
import re
from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_TIMEOUT_MS = 120_000
DEFAULT_CACHE_MODE = "default"
DEFAULT_NITTER_HOST = "nitter.net"

BLOCKED_HTML_HINT_PATTERN = re.compile(
    r"access denied|attention required|captcha|cloudflare|enable javascript|"
    r"forbidden|please turn javascript on|verify you are human",
    re.IGNORECASE,
)
TWITTER_BLOCKED_TEXT_PATTERN = re.compile(
    r"something went wrong|try again|privacy related extensions|"
    r"please disable them and try again",
    re.IGNORECASE,
)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class ContentThresholds:
    """Tunable limits used by the fallback and content selection heuristics.

    All lengths are measured on normalised text, except ``min_document_characters``
    which gates on the raw HTML size.
    """

    min_html_content_characters: int = 200
    min_readability_content_characters: int = 200
    min_metadata_description_characters: int = 120
    relative_threshold: float = 0.6
    min_document_characters_for_fallback: int = 5000
    min_stage_seconds: float = 0.25

    @classmethod
    def from_env(cls) -> ContentThresholds:
        """Create thresholds from environment variables with the stock defaults."""
        return cls(
            min_html_content_characters=_env_int("MIN_HTML_CONTENT_CHARACTERS", 200),
            min_readability_content_characters=_env_int(
                "MIN_READABILITY_CONTENT_CHARACTERS", 200
            ),
            min_metadata_description_characters=_env_int(
                "MIN_METADATA_DESCRIPTION_CHARACTERS", 120
            ),
            relative_threshold=_env_float("READABILITY_RELATIVE_THRESHOLD", 0.6),
            min_document_characters_for_fallback=_env_int(
                "MIN_HTML_DOCUMENT_CHARACTERS_FOR_FALLBACK", 5000
            ),
            min_stage_seconds=_env_float("MIN_STAGE_SECONDS", 0.25),
        )

    def is_comparable(self, candidate_length: int, reference_length: int) -> bool:
        """True when a candidate is at least comparably substantial to a reference."""
        return candidate_length >= reference_length * self.relative_threshold


THRESHOLDS = ContentThresholds.from_env()


class LinkPreviewSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    OPENAI_API_KEY: str | None = None
    FAL_KEY: str | None = None
    GEMINI_API_KEY: str | None = None
    FIRECRAWL_API_KEY: str | None = None
    FIRECRAWL_BASE_URL: str = "https://api.firecrawl.dev"
    MARKDOWN_PROVIDER: str = "openai"
    MARKDOWN_MODEL: str | None = None
    MARKDOWN_MAX_INPUT_CHARS: int = 200_000
    BIRD_PATH: str | None = None
    NITTER_HOST: str = DEFAULT_NITTER_HOST
    LINK_PREVIEW_USER_AGENT: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    )
    DEFAULT_TIMEOUT_MS: int = DEFAULT_TIMEOUT_MS
