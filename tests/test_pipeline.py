import asyncio
import json

import pytest

from linkpreview.models.content import (
    AttemptRecord,
    BirdTweet,
    ExtractionStrategy,
    FetchOptions,
    FetchedDocument,
    FirecrawlScrapeResult,
    TranscriptResolution,
    TranscriptSegment,
)
from linkpreview.services import pipeline
from linkpreview.services.exceptions import (
    BlockedContentError,
    CapabilityMissingError,
    ExtractionTimeout,
    NetworkError,
    ParseError,
    TranscriptionError,
)

SMALL_PAGE = (
    "<html><head><title>Tiny</title></head>"
    "<body><p>Short note.</p></body></html>"
)
CAPTCHA_PAGE = (
    "<html><head><title>Just a moment</title></head>"
    "<body><p>Please verify you are human to continue (captcha).</p></body></html>"
)
SPOTIFY_URL = "https://open.spotify.com/episode/4rOoJ6Egrf8K2IrywzwOMk"
TWEET_URL = "https://x.com/someone/status/1234567890"
NITTER_URL = "https://nitter.net/someone/status/1234567890"
EPISODE_DESCRIPTION = (
    "In this episode the hosts walk the rebuilt sea wall with the harbour master "
    "and talk about storm surges, quarry stone and what the fishing fleet needs next."
)


def podcast_jsonld():
    payload = {
        "@context": "https://schema.org",
        "@type": "PodcastEpisode",
        "name": "Episode 12: The Sea Wall",
        "description": EPISODE_DESCRIPTION,
    }
    return f'<script type="application/ld+json">{json.dumps(payload)}</script>'


def run(url, deps, options=None):
    return asyncio.run(pipeline.fetch_link_content(url, options, deps))


def test_small_page_never_invokes_firecrawl(make_deps, make_fetcher, make_scraper, firecrawl_payload):
    url = "https://example.com/tiny"
    scraper = make_scraper(result=firecrawl_payload)
    deps = make_deps(make_fetcher({url: SMALL_PAGE}), scrape_with_firecrawl=scraper)

    result = run(url, deps)

    assert scraper.calls == []
    assert result.strategy is ExtractionStrategy.HTML
    assert result.content == "Short note."
    assert result.title == "Tiny"
    assert result.site_name == "example.com"
    assert result.diagnostics.firecrawl.attempted is False
    assert result.diagnostics.attempts == (AttemptRecord("html", True),)


def test_captcha_page_falls_back_to_firecrawl(
    make_deps, make_fetcher, make_scraper, firecrawl_payload, progress
):
    url = "https://example.com/protected"
    scraper = make_scraper(result=firecrawl_payload)
    deps = make_deps(
        make_fetcher({url: CAPTCHA_PAGE}),
        scrape_with_firecrawl=scraper,
        on_progress=progress,
    )

    result = run(url, deps)

    assert len(scraper.calls) == 1
    assert result.strategy is ExtractionStrategy.FIRECRAWL
    assert result.title == "Scraped Title"
    assert result.site_name == "Scraped Site"
    assert result.content.startswith("# Scraped")
    assert result.diagnostics.firecrawl.attempted is True
    assert result.diagnostics.firecrawl.used is True
    assert pipeline.REASON_THIN_CONTENT in result.diagnostics.firecrawl.notes
    assert result.diagnostics.markdown.provider == "firecrawl"
    assert "firecrawl-start" in progress.kinds
    assert "firecrawl-done" in progress.kinds


def test_firecrawl_off_keeps_blocked_page(make_deps, make_fetcher, make_scraper, firecrawl_payload):
    url = "https://example.com/protected"
    scraper = make_scraper(result=firecrawl_payload)
    deps = make_deps(make_fetcher({url: CAPTCHA_PAGE}), scrape_with_firecrawl=scraper)

    result = run(url, deps, FetchOptions(firecrawl_mode="off"))

    assert scraper.calls == []
    assert result.strategy is ExtractionStrategy.HTML
    assert "verify you are human" in result.content


def test_always_mode_scrapes_before_fetching(make_deps, make_fetcher, make_scraper, firecrawl_payload):
    url = "https://example.com/article"
    fetcher = make_fetcher({url: SMALL_PAGE})
    scraper = make_scraper(result=firecrawl_payload)
    deps = make_deps(fetcher, scrape_with_firecrawl=scraper)

    result = run(url, deps, FetchOptions(firecrawl_mode="always"))

    assert fetcher.calls == []
    assert result.strategy is ExtractionStrategy.FIRECRAWL
    assert result.diagnostics.firecrawl.notes.endswith(pipeline.REASON_FORCED)


def test_firecrawl_is_scraped_at_most_once_per_call(make_deps, make_fetcher, make_scraper):
    url = "https://example.com/empty"
    scraper = make_scraper(result=FirecrawlScrapeResult(markdown="   \n  "))
    deps = make_deps(make_fetcher(), scrape_with_firecrawl=scraper)

    with pytest.raises(NetworkError) as excinfo:
        run(url, deps, FetchOptions(firecrawl_mode="always"))

    assert len(scraper.calls) == 1
    message = str(excinfo.value)
    assert message.startswith("Failed to fetch HTML document; Firecrawl notes:")
    assert pipeline.REASON_FORCED in message
    assert pipeline.REASON_FETCH_FAILED in message
    assert "HTML error: Failed to fetch URL: HTTP 404" in message


def test_fetch_failure_without_firecrawl_reraises(make_deps, make_fetcher):
    deps = make_deps(make_fetcher())

    with pytest.raises(NetworkError) as excinfo:
        run("https://example.com/missing", deps)

    assert excinfo.value.status_code == 404


def test_fetch_failure_recovers_through_firecrawl(
    make_deps, make_fetcher, make_scraper, firecrawl_payload
):
    scraper = make_scraper(result=firecrawl_payload)
    deps = make_deps(make_fetcher(), scrape_with_firecrawl=scraper)

    result = run("https://example.com/missing", deps)

    assert result.strategy is ExtractionStrategy.FIRECRAWL
    assert result.diagnostics.attempts[0].stage == "html"
    assert result.diagnostics.attempts[0].ok is False
    assert pipeline.REASON_FETCH_FAILED in result.diagnostics.firecrawl.notes


def test_unexpected_fetch_exception_is_wrapped(make_deps, make_fetcher):
    url = "https://example.com/boom"
    deps = make_deps(make_fetcher({url: RuntimeError("socket closed")}))

    with pytest.raises(NetworkError, match="socket closed"):
        run(url, deps)


def test_repeated_calls_with_deterministic_capabilities_are_identical(
    make_deps, make_fetcher, page
):
    url = "https://example.com/harbour"
    deps = make_deps(make_fetcher({url: page()}))

    assert run(url, deps) == run(url, deps)


def test_truncation_keeps_totals_of_full_text(make_deps, make_fetcher, page):
    url = "https://example.com/harbour"
    deps = make_deps(make_fetcher({url: page()}))

    full = run(url, deps)
    clipped = run(url, deps, FetchOptions(max_characters=100))

    assert full.truncated is False
    assert clipped.truncated is True
    assert len(clipped.content) == 100
    assert clipped.content == full.content[:100]
    assert clipped.total_characters == full.total_characters
    assert clipped.word_count == full.word_count


def test_leading_title_is_removed_from_article_text(make_deps, make_fetcher):
    url = "https://example.com/lorem"
    html = (
        "<html><head><title>Example</title></head>"
        "<body><p>Example. Lorem ipsum dolor sit amet.</p></body></html>"
    )
    deps = make_deps(make_fetcher({url: html}))

    result = run(url, deps)

    assert result.title == "Example"
    assert result.content == "Lorem ipsum dolor sit amet."


def test_spotify_without_transcription_key_fails_fast(make_deps, make_fetcher):
    fetcher = make_fetcher(default=SMALL_PAGE)
    deps = make_deps(fetcher)

    with pytest.raises(CapabilityMissingError) as excinfo:
        run(SPOTIFY_URL, deps)

    assert "OPENAI_API_KEY" in str(excinfo.value)
    assert "FAL_KEY" in str(excinfo.value)
    assert fetcher.calls == []


def test_spotify_short_circuit_uses_transcript(make_deps, make_fetcher, progress):
    seen = []

    def resolver(url, html, deps, options):
        seen.append(html)
        return TranscriptResolution(text="Welcome to the show.", source="whisper")

    fetcher = make_fetcher(default=SMALL_PAGE)
    deps = make_deps(
        fetcher, resolve_transcript=resolver, openai_api_key="sk-test", on_progress=progress
    )

    result = run(SPOTIFY_URL, deps)

    assert seen == [None]
    assert fetcher.calls == []
    assert result.site_name == "Spotify"
    assert result.title is None
    assert result.content == "Transcript:\nWelcome to the show."
    assert result.transcript_source == "whisper"
    assert "Spotify short-circuit skipped HTML/Firecrawl" in result.diagnostics.firecrawl.notes
    assert "skipped HTML fetch" in result.diagnostics.transcript.notes
    assert progress.kinds == ["transcript-start", "transcript-done"]


def test_apple_podcast_without_transcript_text_raises(make_deps, make_fetcher):
    deps = make_deps(make_fetcher(), fal_api_key="fal-test")

    with pytest.raises(TranscriptionError, match="Failed to transcribe Apple Podcasts episode"):
        run("https://podcasts.apple.com/us/podcast/some-show/id123456?i=1000650000", deps)


def test_transcript_replaces_page_body(make_deps, make_fetcher, page):
    url = "https://example.com/talk"

    def resolver(url, html, deps, options):
        return TranscriptResolution(
            text="ignored when segments exist",
            source="captions",
            segments=[TranscriptSegment(0, "Hello"), TranscriptSegment(65_000, "again")],
            metadata={"transcriptionProvider": "captions", "durationSeconds": 90},
        )

    deps = make_deps(make_fetcher({url: page()}), resolve_transcript=resolver)

    result = run(url, deps)

    assert result.content == "Transcript:\n[0:00] Hello\n[1:05] again"
    assert result.transcription_provider == "captions"
    assert result.media_duration_seconds == 90
    assert result.transcript_timed_text == "[0:00] Hello\n[1:05] again"


def test_failing_transcript_resolver_is_not_fatal(make_deps, make_fetcher):
    url = "https://example.com/tiny"

    def resolver(url, html, deps, options):
        raise RuntimeError("captions offline")

    deps = make_deps(make_fetcher({url: SMALL_PAGE}), resolve_transcript=resolver)

    result = run(url, deps)

    assert result.content == "Short note."
    assert "captions offline" in result.diagnostics.transcript.notes
    assert AttemptRecord("transcript", False, error="captions offline") in (
        result.diagnostics.attempts
    )


def test_progress_sink_errors_are_swallowed(make_deps, make_fetcher):
    url = "https://example.com/tiny"

    def broken_sink(event):
        raise ValueError("sink exploded")

    deps = make_deps(make_fetcher({url: SMALL_PAGE}), on_progress=broken_sink)

    assert run(url, deps).content == "Short note."


def test_fetch_progress_events(make_deps, make_fetcher, progress):
    url = "https://example.com/tiny"
    deps = make_deps(make_fetcher({url: SMALL_PAGE}), on_progress=progress)

    run(url, deps)

    assert progress.kinds[:2] == ["fetch-html-start", "fetch-html-done"]
    done = progress.events[1]
    assert done.details["downloaded_bytes"] == len(SMALL_PAGE.encode("utf-8"))


def test_bird_success_skips_other_strategies(make_deps, make_fetcher, progress):
    fetcher = make_fetcher()

    def reader(*, url, timeout_ms):
        return BirdTweet(text="Shipping the new release today.", author_username="someone")

    deps = make_deps(fetcher, read_tweet_with_bird=reader, on_progress=progress)

    result = run(TWEET_URL, deps)

    assert fetcher.calls == []
    assert result.strategy is ExtractionStrategy.BIRD
    assert result.title == "@someone"
    assert result.site_name == "X"
    assert result.content == "Shipping the new release today."
    assert result.diagnostics.markdown.notes == "Bird tweet fetch provides plain text"
    assert progress.kinds == ["bird-start", "bird-done"]
    assert progress.events[-1].details["ok"] is True


def test_nitter_mirror_is_used_when_bird_is_missing(make_deps, make_fetcher, page):
    fetcher = make_fetcher({NITTER_URL: page(title="someone on X")})
    deps = make_deps(fetcher)

    result = run(TWEET_URL, deps)

    assert [call.url for call in fetcher.calls] == [NITTER_URL]
    assert result.strategy is ExtractionStrategy.NITTER
    assert result.url == TWEET_URL
    assert result.diagnostics.attempts[0] == AttemptRecord("bird", False, detail="unavailable")


def test_blocked_tweet_reports_every_attempt(make_deps, make_fetcher):
    blocked = (
        "<html><body><p>Something went wrong. Try again.</p></body></html>"
    )
    deps = make_deps(make_fetcher({TWEET_URL: blocked}))

    with pytest.raises(BlockedContentError) as excinfo:
        run(TWEET_URL, deps)

    assert str(excinfo.value) == (
        "Unable to fetch tweet content from X. Bird not available. "
        "Nitter failed: Failed to fetch URL: HTTP 404."
    )


def test_anubis_challenge_counts_as_nitter_failure(make_deps, make_fetcher, page):
    challenge = "<html><body><script src='/.within.website/x/cmd/anubis/static'></script></body></html>"
    deps = make_deps(make_fetcher({NITTER_URL: challenge, TWEET_URL: page()}))

    result = run(TWEET_URL, deps)

    assert result.strategy is ExtractionStrategy.HTML
    nitter = [attempt for attempt in result.diagnostics.attempts if attempt.stage == "nitter"]
    assert nitter == [
        AttemptRecord("nitter", False, error="Nitter returned an Anubis challenge page")
    ]


def test_invalid_youtube_id_is_a_parse_error(make_deps, make_fetcher):
    url = "https://www.youtube.com/watch?v=short"
    deps = make_deps(make_fetcher({url: SMALL_PAGE}))

    with pytest.raises(ParseError, match="Invalid YouTube video id"):
        run(url, deps)


def test_markdown_conversion_replaces_content(make_deps, make_fetcher, page):
    url = "https://example.com/harbour"
    calls = []

    def converter(*, url, html, title, site_name, timeout_ms):
        calls.append(title)
        return "# Harbour News\n\nThe sea wall was rebuilt."

    deps = make_deps(make_fetcher({url: page()}), convert_html_to_markdown=converter)

    result = run(url, deps, FetchOptions(format="markdown"))

    assert calls == ["Harbour News"]
    assert result.content == "# Harbour News\n\nThe sea wall was rebuilt."
    assert result.diagnostics.markdown.used is True
    assert result.diagnostics.markdown.provider == "llm"


def test_markdown_conversion_failure_keeps_text(make_deps, make_fetcher):
    url = "https://example.com/tiny"

    def converter(**kwargs):
        raise RuntimeError("model unavailable")

    deps = make_deps(make_fetcher({url: SMALL_PAGE}), convert_html_to_markdown=converter)

    result = run(url, deps, FetchOptions(format="markdown"))

    assert result.content == "Short note."
    assert result.diagnostics.markdown.used is False
    assert "model unavailable" in result.diagnostics.markdown.notes


def test_exhausted_deadline_raises_timeout(make_deps, make_fetcher):
    url = "https://example.com/tiny"
    fetcher = make_fetcher({url: SMALL_PAGE})
    deps = make_deps(fetcher)

    with pytest.raises(ExtractionTimeout, match="before html"):
        run(url, deps, FetchOptions(deadline_ms=100))

    assert fetcher.calls == []


def test_async_capabilities_are_awaited(make_deps):
    url = "https://example.com/tiny"

    async def fetch(url, *, timeout):
        await asyncio.sleep(0)
        return SMALL_PAGE

    result = run(url, make_deps(fetch))

    assert result.content == "Short note."


def test_sync_wrapper_returns_same_record(make_deps, make_fetcher):
    url = "https://example.com/tiny"
    deps = make_deps(make_fetcher({url: SMALL_PAGE}))

    assert pipeline.fetch_link_content_sync(url, None, deps) == run(url, deps)


def test_redirected_fetch_reports_final_url(make_deps, page):
    requested = "https://short.example/abc"
    final = "https://example.com/final"
    seen = []

    def fetcher(url, *, timeout):
        return FetchedDocument(html=page(), final_url=final)

    def resolver(url, html, deps, options):
        seen.append(url)
        return TranscriptResolution()

    deps = make_deps(fetcher, resolve_transcript=resolver)

    result = run(requested, deps)

    assert result.url == final
    assert result.site_name == "example.com"
    assert seen == [final]


def test_youtube_short_description_replaces_page_body(make_deps, make_fetcher, page):
    url = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
    player = {"videoDetails": {"shortDescription": "Official video.\n\nLyrics below."}}
    html = page(
        title="Never Gonna Give You Up",
        extra_head=f"<script>var ytInitialPlayerResponse = {json.dumps(player)};</script>",
    )
    deps = make_deps(make_fetcher({url: html}))

    result = run(url, deps)

    assert result.content == "Official video.\n\nLyrics below."
    assert result.strategy is ExtractionStrategy.HTML


def test_podcast_description_wins_over_page_chrome(make_deps, make_fetcher, page):
    url = "https://example.com/episodes/12"
    deps = make_deps(make_fetcher({url: page(extra_head=podcast_jsonld())}))

    result = run(url, deps)

    assert result.content == EPISODE_DESCRIPTION
    assert result.title == "Episode 12: The Sea Wall"
    assert result.description == EPISODE_DESCRIPTION


def test_podcast_description_wins_over_scraped_markdown(make_deps, make_fetcher, make_scraper):
    url = "https://example.com/episodes/12"
    scraper = make_scraper(
        result=FirecrawlScrapeResult(
            markdown="[Home](/) | [Episodes](/episodes) | [About](/about)\n\n" * 10,
            html=f"<html><head>{podcast_jsonld()}</head><body></body></html>",
            metadata={"title": "Scraped Title"},
        )
    )
    deps = make_deps(make_fetcher(), scrape_with_firecrawl=scraper)

    result = run(url, deps, FetchOptions(firecrawl_mode="always"))

    assert result.strategy is ExtractionStrategy.FIRECRAWL
    assert result.content == EPISODE_DESCRIPTION
    assert result.title == "Episode 12: The Sea Wall"


def test_configured_default_timeout_applies_when_options_omit_it(make_deps, make_fetcher):
    url = "https://example.com/tiny"
    fetcher = make_fetcher({url: SMALL_PAGE})
    deps = make_deps(fetcher, default_timeout_ms=3000)

    run(url, deps)
    run(url, deps, FetchOptions(timeout_ms=1500))

    assert [call.timeout for call in fetcher.calls] == [3.0, 1.5]
