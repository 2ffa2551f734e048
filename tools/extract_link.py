import argparse
import json
import logging
import sys

from linkpreview import ExtractionError, FetchOptions, create_link_preview_client
from linkpreview.utils.logging_config import setup_logging


def _print_progress(event):
    logging.info(f"progress: {event.kind} {json.dumps(event.details, default=str)}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Extract LLM-ready content from a URL and print it as JSON."
    )
    parser.add_argument("url")
    parser.add_argument("--format", choices=["text", "markdown"], default="text")
    parser.add_argument(
        "--firecrawl", choices=["off", "auto", "always"], default="auto"
    )
    parser.add_argument(
        "--markdown-mode", choices=["auto", "llm", "readability"], default="auto"
    )
    parser.add_argument("--max-characters", type=int, default=None)
    parser.add_argument("--timeout-ms", type=int, default=None)
    parser.add_argument("--deadline-ms", type=int, default=None)
    parser.add_argument(
        "--progress", action="store_true", help="Log progress events to stderr."
    )
    args = parser.parse_args(argv)

    # Logs go to stderr; stdout carries only the JSON record.
    setup_logging()
    client = create_link_preview_client(
        configure_logging=False,
        on_progress=_print_progress if args.progress else None,
    )
    options = FetchOptions(
        format=args.format,
        firecrawl_mode=args.firecrawl,
        markdown_mode=args.markdown_mode,
        max_characters=args.max_characters,
        timeout_ms=args.timeout_ms,
        deadline_ms=args.deadline_ms,
    )

    try:
        result = client.fetch_link_content_sync(args.url, options)
    except ExtractionError as exc:
        print(f"Extraction failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
