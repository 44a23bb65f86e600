"""Logging setup and per-report log context."""

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional, TextIO

# (from_ref, to_ref) of the report being built in this context
_report_refs: ContextVar[Optional[tuple[str, str]]] = ContextVar("branchtime_report_refs", default=None)

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(report)s] %(name)s: %(message)s"
TEXT_DATEFMT = "%Y-%m-%dT%H:%M:%S"


@contextmanager
def report_context(from_ref: str, to_ref: str) -> Iterator[str]:
    """Tag every record logged inside the block with the refs being reported.

    Worker threads see the tags only when they run inside a copied context
    (``contextvars.copy_context().run``).

    Yields:
        The report label, ``from_ref..to_ref``.
    """
    token = _report_refs.set((from_ref, to_ref))
    try:
        yield f"{from_ref}..{to_ref}"
    finally:
        _report_refs.reset(token)


class ReportContextFilter(logging.Filter):
    """Copies the active report refs onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        refs = _report_refs.get()
        if refs is None:
            record.from_ref = record.to_ref = None
            record.report = "-"
        else:
            record.from_ref, record.to_ref = refs
            record.report = f"{refs[0]}..{refs[1]}"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for CI log collectors."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        from_ref = getattr(record, "from_ref", None)
        if from_ref is not None:
            entry["from_ref"] = from_ref
            entry["to_ref"] = record.to_ref
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    level: Optional[str] = None,
    log_format: str = "text",
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Configure the ``branchtime`` logger tree.

    Safe to call repeatedly; each call replaces the previous handler.

    Args:
        level: Level name, INFO when missing or unknown.
        log_format: ``text`` or ``json``.
        stream: Destination, stdout by default.

    Returns:
        The configured ``branchtime`` logger.
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT))
    handler.addFilter(ReportContextFilter())

    logger = logging.getLogger("branchtime")
    logger.setLevel(getattr(logging, (level or "INFO").upper(), logging.INFO))
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False
    return logger
