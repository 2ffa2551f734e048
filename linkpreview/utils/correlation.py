from __future__ import annotations

import structlog
from contextlib import contextmanager
from typing import Any, Iterator, Optional
from uuid import uuid4


def current_correlation_id() -> Optional[str]:
    """Return the active correlation id if bound."""
    context = structlog.contextvars.get_contextvars()
    return context.get("correlation_id")


def update_context(**extra: Any) -> None:
    """Merge additional fields into the structured logging context."""
    if extra:
        structlog.contextvars.bind_contextvars(**extra)


@contextmanager
def extraction_context(
    url: str, correlation_id: Optional[str] = None, **extra: Any
) -> Iterator[str]:
    """Bind correlation id and URL for the duration of one extraction.

    The previous context is restored on exit so concurrent extractions running
    as separate tasks never see each other's fields.
    """
    cid = correlation_id or current_correlation_id() or uuid4().hex
    with structlog.contextvars.bound_contextvars(correlation_id=cid, url=url, **extra):
        yield cid
