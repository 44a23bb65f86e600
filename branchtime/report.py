"""Report assembly - turn report rows into delimited text and write it out."""

import logging
from collections.abc import Iterable
from pathlib import Path

from branchtime.errors import ReportWriteError
from branchtime.models import ReportRow
from branchtime.utils import sanitize_ref_name

logger = logging.getLogger("branchtime.report")

COLUMNS = (
    "commit_sha",
    "commit_ts",
    "pull_request",
    "branch_time_seconds",
    "author",
    "message",
)
HEADER = ",".join(COLUMNS)
DELIMITER = ","
UNKNOWN = "unknown"


def format_row(row: ReportRow) -> str:
    """Format one report row as a delimited line.

    Commas inside the author or message are written as-is; messages are
    assumed delimiter-free.
    """
    correlation = row.correlation
    pr_number = UNKNOWN if correlation.pr_number is None else correlation.pr_number
    latency = UNKNOWN if correlation.latency_seconds is None else str(correlation.latency_seconds)

    return DELIMITER.join(
        [
            row.commit.id,
            str(row.commit.timestamp),
            pr_number,
            latency,
            row.commit.author_email,
            row.commit.message,
        ]
    )


def render_report(rows: Iterable[ReportRow]) -> str:
    """Render the header and every row, newline terminated."""
    lines = [HEADER]
    lines.extend(format_row(row) for row in rows)
    return "\n".join(lines) + "\n"


def report_path(output_dir: str | Path, from_ref: str, to_ref: str) -> Path:
    """Derive the report file path for a pair of refs.

    Args:
        output_dir: Directory holding reports.
        from_ref: Reference the range is measured against.
        to_ref: Reference whose commits are reported.

    Returns:
        ``<output_dir>/branch-times-<from>-<to>.csv`` with path separators
        in the refs replaced by dashes.
    """
    name = f"branch-times-{sanitize_ref_name(from_ref)}-{sanitize_ref_name(to_ref)}.csv"
    return Path(output_dir) / name


def write_report(path: Path, rows: list[ReportRow]) -> Path:
    """Write the report to ``path``.

    Raises:
        ReportWriteError: If the file cannot be written.
    """
    content = render_report(rows)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ReportWriteError(f"Couldn't write branch times to file {path}: {e}") from e
    logger.info(f"Wrote {len(rows)} rows to {path}")
    return path
