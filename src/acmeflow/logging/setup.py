"""Structured logging configuration for acmeflow.

Provides JSON and text formatters, a resolution-context filter that
injects the order and domain being worked on into every log record,
and a one-call ``configure_logging`` function driven by config settings.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from acmeflow.config.settings import LoggingSettings

_order_url: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "acmeflow_order_url",
    default=None,
)
_domain: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "acmeflow_domain",
    default=None,
)

# Attributes that are part of the standard LogRecord -- everything
# else is considered "extra" and gets included in structured output.
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
        # Our own context attributes (handled explicitly):
        "order_url",
        "domain",
    }
)


@contextlib.contextmanager
def resolution_context(
    *,
    order_url: str | None = None,
    domain: str | None = None,
) -> Iterator[None]:
    """Tag log records emitted inside the block with an order and/or domain.

    Values not given are inherited from an enclosing context.  Worker
    threads start with an empty context, so callers handing work to a
    pool must enter the context inside the task.
    """
    tokens = []
    if order_url is not None:
        tokens.append((_order_url, _order_url.set(order_url)))
    if domain is not None:
        tokens.append((_domain, _domain.set(domain)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for production logging.

    Every record becomes a single JSON object on one line containing
    the standard fields plus any *extra* attributes passed by the
    caller or injected by filters.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        order_url = getattr(record, "order_url", None)
        if order_url is not None:
            data["order_url"] = order_url

        domain = getattr(record, "domain", None)
        if domain is not None:
            data["domain"] = domain

        # Caller-supplied extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(domain)s] %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class ResolutionContextFilter(logging.Filter):
    """Inject the current order URL and domain into every log record.

    Falls back to ``"-"`` for the domain so the text format always
    renders, and ``None`` for the order URL.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "order_url"):
            record.order_url = _order_url.get()  # type: ignore[attr-defined]
        if not hasattr(record, "domain"):
            record.domain = _domain.get() or "-"  # type: ignore[attr-defined]
        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``acmeflow`` logger hierarchy from settings.

    Replaces any previously installed handlers.  Returns the root
    ``acmeflow`` logger.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger("acmeflow")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ResolutionContextFilter())
    root.addHandler(console)

    # -- Quieten noisy third-party loggers --
    for lib in ("dns", "dns.resolver"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return root
