from __future__ import annotations

from typing import Any, Optional

import structlog

from linkpreview.config import LinkPreviewSettings
from linkpreview.models.content import ExtractedLinkContent, FetchOptions
from linkpreview.services.deps import LinkPreviewDeps
from linkpreview.services.pipeline import fetch_link_content, fetch_link_content_sync
from linkpreview.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


class LinkPreviewClient:
    """Holds one set of capabilities and exposes the extraction entry points.

    A client is safe to share; every call keeps its own attempts and memo.
    """

    def __init__(self, deps: LinkPreviewDeps) -> None:
        self.deps = deps

    async def fetch_link_content(
        self, url: str, options: Optional[FetchOptions] = None
    ) -> ExtractedLinkContent:
        return await fetch_link_content(url, options, self.deps)

    def fetch_link_content_sync(
        self, url: str, options: Optional[FetchOptions] = None
    ) -> ExtractedLinkContent:
        return fetch_link_content_sync(url, options, self.deps)


def create_link_preview_client(
    settings: Optional[LinkPreviewSettings] = None,
    *,
    configure_logging: bool = True,
    **overrides: Any,
) -> LinkPreviewClient:
    """Build a client from environment settings.

    Keyword overrides replace individual capabilities, e.g. ``fetch=`` or
    ``on_progress=``.
    """
    if configure_logging:
        setup_logging()
    deps = LinkPreviewDeps.from_settings(settings, **overrides)
    logger.info(
        event="link_preview_client_created",
        operation="client.create",
        firecrawl=deps.has_firecrawl,
        markdown_converter=deps.has_markdown_converter,
        tweet_reader=deps.has_tweet_reader,
        transcription=deps.has_transcription_capability,
    )
    return LinkPreviewClient(deps)
