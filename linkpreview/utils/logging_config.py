import logging
import os
import sys
import structlog
from typing import Any, Dict


_LOGGING_INITIALISED = False


REQUIRED_EVENT_FIELDS = (
    "event",
    "correlation_id",
    "url",
    "strategy",
    "status",
    "elapsed_ms",
)


def _inject_event_defaults(
    _: logging.Logger, __: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Ensure core structured logging fields are present on every event."""
    context = structlog.contextvars.get_contextvars()

    for key in ("correlation_id", "url", "strategy", "status", "elapsed_ms"):
        if key not in event_dict and key in context:
            event_dict[key] = context[key]

    if "event" not in event_dict:
        message = event_dict.get("message")
        event_dict["event"] = message or event_dict.get("logger", "log.event")

    for field in REQUIRED_EVENT_FIELDS:
        event_dict.setdefault(field, None)

    return event_dict


def _build_pre_chain(log_format: str):
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        _inject_event_defaults,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "plain":
        processors.append(structlog.processors.UnicodeDecoder())

    return processors


def _build_renderer(log_format: str):
    if log_format == "plain":
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging(force: bool = False):
    global _LOGGING_INITIALISED
    if _LOGGING_INITIALISED and not force:
        return

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = os.getenv("LOG_FORMAT", "json").strip().lower()
    if log_format not in {"json", "plain"}:
        log_format = "json"

    pre_chain = _build_pre_chain(log_format)
    renderer = _build_renderer(log_format)

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer, foreign_pre_chain=pre_chain, fmt="%(message)s"
    )

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    # stderr keeps stdout free for tools that print JSON records.
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("trafilatura").setLevel(logging.WARNING)
    logging.getLogger("readability").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _LOGGING_INITIALISED = True
