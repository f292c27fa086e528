"""Structured logging configuration for ACMEPIPE.

Provides JSON and text formatters, a pipeline-context filter that
injects the current domain and stage into every log record, the
append-only activity log, and a one-call ``configure_logging``
function driven by config settings.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from acmepipe.config.settings import LoggingSettings

ACTIVITY_LOGGER = "acmepipe.activity"

# LogRecord attributes never copied into JSON output; anything else
# on the record came from ``extra=`` or a filter.
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
        # emitted explicitly, and only when set
        "domain",
        "stage",
    }
)


# ---------------------------------------------------------------------------
# Pipeline context
# ---------------------------------------------------------------------------

_context = threading.local()


@contextmanager
def pipeline_context(domain: str, stage: str | None = None) -> Iterator[None]:
    """Tag log records emitted by this thread with *domain* and *stage*."""
    previous = (getattr(_context, "domain", None), getattr(_context, "stage", None))
    _context.domain = domain
    _context.stage = stage
    try:
        yield
    finally:
        _context.domain, _context.stage = previous


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for machine consumption.

    One object per line: timestamp, level, logger, message, the
    pipeline domain/stage when known, then every ``extra`` field.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        domain = getattr(record, "domain", None)
        if domain not in (None, "-"):
            data["domain"] = domain

        stage = getattr(record, "stage", None)
        if stage not in (None, "-"):
            data["stage"] = stage

        # extra= fields
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

    _FMT = "%(asctime)s %(levelname)-8s [%(domain)s/%(stage)s] %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


class ActivityFormatter(logging.Formatter):
    """``[timestamp] [level] message`` lines for the activity log."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=UTC).strftime(
            "%Y-%m-%d %H:%M:%S",
        )
        line = f"[{timestamp}] [{record.levelname}] {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class PipelineContextFilter(logging.Filter):
    """Inject the current pipeline context into every log record.

    Adds ``domain`` and ``stage`` from :func:`pipeline_context` when
    one is active on the emitting thread, otherwise falls back to
    ``"-"``.  Values passed explicitly via ``extra`` win.
    """

    CONTEXT_ATTRS = frozenset({"domain", "stage"})

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "domain"):
            record.domain = getattr(_context, "domain", None) or "-"  # type: ignore[attr-defined]
        if not hasattr(record, "stage"):
            record.stage = getattr(_context, "stage", None) or "-"  # type: ignore[attr-defined]
        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``acmepipe`` logger hierarchy from settings.

    Replaces any bootstrap handlers with properly formatted output and
    attaches the activity log file handler when
    ``settings.activity_log`` is set.

    Returns the root ``acmepipe`` logger.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger("acmepipe")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    ctx_filter = PipelineContextFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ctx_filter)
    root.addHandler(console)

    # Activity records also reach the console through the root logger.
    activity = logging.getLogger(ACTIVITY_LOGGER)
    activity.setLevel(getattr(logging, settings.activity_level.upper(), logging.INFO))
    activity.handlers.clear()

    if settings.activity_log:
        try:
            fh = logging.FileHandler(settings.activity_log, mode="a", encoding="utf-8")
            fh.setFormatter(ActivityFormatter())
            activity.addHandler(fh)
        except OSError as exc:
            root.warning(
                "Could not open activity log file %s: %s",
                settings.activity_log,
                exc,
            )

    logging.getLogger("dns").setLevel(logging.WARNING)

    return root
