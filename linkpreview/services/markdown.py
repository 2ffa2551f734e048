from __future__ import annotations

import textwrap
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from linkpreview.config import LinkPreviewSettings
from linkpreview.models.content import AttemptRecord, MarkdownDiagnostics, MarkdownMode
from linkpreview.services.deps import MarkdownConverter, call_capability, describe_error
from linkpreview.services.diagnostics import STAGE_MARKDOWN
from linkpreview.services.exceptions import MarkdownConversionError
from linkpreview.services.parser import sanitize_html_for_markdown_conversion
from linkpreview.services.youtube import is_youtube_url
from linkpreview.utils.text_cleaner import normalize_for_prompt

logger = structlog.get_logger(__name__)

_DEFAULT_MODELS = {"openai": "gpt-4o-mini", "gemini": "gemini-1.5-flash"}

_INSTRUCTIONS = textwrap.dedent(
    """
    Convert the HTML document you are given into clean GitHub-flavoured Markdown.
    Keep the article's headings, paragraphs, lists, links, quotes, code and tables.
    Drop navigation, cookie banners, share buttons, ads and footers.
    Do not summarise, translate or add commentary. Return only the Markdown.
    """
).strip()


def _clip_html(html: str, limit: int) -> str:
    if len(html) <= limit:
        return html
    return html[:limit]


def _build_prompt(url: str, html: str, title: Optional[str], site_name: Optional[str]) -> str:
    header = [f"URL: {url}"]
    if title:
        header.append(f"Title: {title}")
    if site_name:
        header.append(f"Site: {site_name}")
    return "\n".join(header) + "\n\nHTML:\n" + html


class LlmMarkdownConverter:
    """HTML to Markdown via an LLM provider (OpenAI Responses API or Gemini)."""

    def __init__(
        self,
        *,
        provider: str,
        api_key: str,
        model: Optional[str] = None,
        max_input_chars: int = 200_000,
        client: Any = None,
    ) -> None:
        self.provider = provider
        self.model = model or _DEFAULT_MODELS.get(provider, "gpt-4o-mini")
        self._api_key = api_key
        self._max_input_chars = max_input_chars
        self._client = client

    @classmethod
    def from_settings(cls, settings: LinkPreviewSettings) -> Optional[LlmMarkdownConverter]:
        provider = (settings.MARKDOWN_PROVIDER or "").strip().lower()
        if provider == "openai" and settings.OPENAI_API_KEY:
            api_key = settings.OPENAI_API_KEY
        elif provider == "gemini" and settings.GEMINI_API_KEY:
            api_key = settings.GEMINI_API_KEY
        else:
            logger.debug(
                event="markdown_provider_skipped",
                operation="markdown.provider_skipped",
                provider=provider or None,
                reason="missing_api_key",
            )
            return None
        return cls(
            provider=provider,
            api_key=api_key,
            model=settings.MARKDOWN_MODEL,
            max_input_chars=settings.MARKDOWN_MAX_INPUT_CHARS,
        )

    def __call__(
        self,
        *,
        url: str,
        html: str,
        title: Optional[str],
        site_name: Optional[str],
        timeout_ms: int,
    ) -> str:
        prompt = _build_prompt(url, _clip_html(html, self._max_input_chars), title, site_name)
        try:
            if self.provider == "gemini":
                return self._query_gemini(prompt, timeout_ms)
            return self._query_openai(prompt, timeout_ms)
        except MarkdownConversionError:
            raise
        except Exception as exc:  # pragma: no cover - external dependency
            logger.error(
                event="markdown_provider_error",
                operation="markdown.provider_error",
                provider=self.provider,
                error=str(exc),
            )
            raise MarkdownConversionError(
                f"{self.provider} conversion failed: {exc}", url=url
            ) from exc

    def _openai_client(self, timeout_ms: int):
        if self._client is not None:
            return self._client
        try:
            from openai import OpenAI  # type: ignore[import-untyped]
        except ImportError as exc:
            raise MarkdownConversionError("openai package is not installed") from exc
        return OpenAI(api_key=self._api_key, timeout=timeout_ms / 1000)

    def _query_openai(self, prompt: str, timeout_ms: int) -> str:
        client = self._openai_client(timeout_ms)
        response = client.responses.create(
            model=self.model,
            instructions=_INSTRUCTIONS,
            input=prompt,
            temperature=0,
        )
        return getattr(response, "output_text", None) or ""

    def _query_gemini(self, prompt: str, timeout_ms: int) -> str:
        if self._client is not None:
            model = self._client
        else:
            try:
                import google.generativeai as genai  # type: ignore[import-untyped]
            except ImportError as exc:
                raise MarkdownConversionError(
                    "google-generativeai package is not installed"
                ) from exc
            genai.configure(api_key=self._api_key)
            model = genai.GenerativeModel(self.model, system_instruction=_INSTRUCTIONS)
        result = model.generate_content(
            prompt, request_options={"timeout": timeout_ms / 1000}
        )
        return getattr(result, "text", None) or ""


@dataclass
class MarkdownOutcome:
    content: str
    diagnostics: MarkdownDiagnostics


async def convert_markdown_for_html(
    *,
    url: str,
    html: str,
    readability_html: Optional[str],
    base_content: str,
    requested: bool,
    mode: MarkdownMode,
    title: Optional[str],
    site_name: Optional[str],
    converter: Optional[MarkdownConverter],
    timeout_ms: int,
    stage_timeout: float,
    attempts: list[AttemptRecord],
) -> MarkdownOutcome:
    """Optionally replace ``base_content`` with converter Markdown.

    Any failure leaves the base content untouched and is recorded as a note.
    """
    if not requested:
        return MarkdownOutcome(base_content, MarkdownDiagnostics())

    if is_youtube_url(url):
        return MarkdownOutcome(
            base_content,
            MarkdownDiagnostics(
                requested=True, notes="Skipping Markdown conversion for YouTube URLs"
            ),
        )

    if converter is None:
        return MarkdownOutcome(
            base_content,
            MarkdownDiagnostics(
                requested=True, notes="No HTML\u2192Markdown converter configured"
            ),
        )

    use_readability = mode is MarkdownMode.READABILITY and bool(readability_html)
    source_html = readability_html if use_readability else html
    try:
        markdown = await call_capability(
            converter,
            stage_timeout=stage_timeout,
            url=url,
            html=sanitize_html_for_markdown_conversion(source_html),
            title=title,
            site_name=site_name,
            timeout_ms=timeout_ms,
        )
    except Exception as exc:
        message = describe_error(exc)
        attempts.append(AttemptRecord(STAGE_MARKDOWN, False, error=message))
        return MarkdownOutcome(
            base_content,
            MarkdownDiagnostics(
                requested=True, notes=f"HTML\u2192Markdown conversion failed: {message}"
            ),
        )

    normalized = normalize_for_prompt(markdown if isinstance(markdown, str) else "")
    if not normalized:
        attempts.append(AttemptRecord(STAGE_MARKDOWN, False, detail="empty"))
        return MarkdownOutcome(
            base_content,
            MarkdownDiagnostics(
                requested=True, notes="HTML\u2192Markdown conversion returned empty content"
            ),
        )

    attempts.append(AttemptRecord(STAGE_MARKDOWN, True))
    return MarkdownOutcome(
        normalized,
        MarkdownDiagnostics(
            requested=True,
            used=True,
            provider="llm",
            notes="Readability HTML used for markdown input" if use_readability else None,
        ),
    )
