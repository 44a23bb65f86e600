"""Shared data models used across multiple layers."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional

CorrelationStatus = Literal["no_reference", "ok", "not_found", "failed"]


@dataclass(frozen=True)
class CommitRecord:
    """Metadata read from the VCS for a single commit."""

    id: str
    timestamp: int
    author_email: str
    message: str


@dataclass(frozen=True)
class Correlation:
    """Outcome of matching a commit to its pull request.

    Only ``ok`` carries a latency. ``no_reference`` and ``not_found`` are
    expected absences; ``failed`` means the code host could not be queried
    and ``error`` holds the reason.
    """

    status: CorrelationStatus
    # digits of the (#N) trailer as written in the commit subject
    pr_number: Optional[str] = None
    latency_seconds: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def no_reference(cls) -> "Correlation":
        return cls(status="no_reference")

    @classmethod
    def found(cls, pr_number: str, latency_seconds: int) -> "Correlation":
        return cls(status="ok", pr_number=pr_number, latency_seconds=latency_seconds)

    @classmethod
    def not_found(cls, pr_number: str) -> "Correlation":
        return cls(status="not_found", pr_number=pr_number)

    @classmethod
    def failed(cls, pr_number: str, error: str) -> "Correlation":
        return cls(status="failed", pr_number=pr_number, error=error)


@dataclass(frozen=True)
class ReportRow:
    """One line of the report: a commit and its correlation."""

    commit: CommitRecord
    correlation: Correlation


@dataclass
class RunSummary:
    """Aggregate outcome of a report run."""

    from_ref: str
    to_ref: str
    output_path: Optional[Path] = None
    duration_seconds: float = 0.0
    counts: dict[str, int] = field(default_factory=dict)
    failures: list[str] = field(default_factory=list)

    @classmethod
    def from_rows(cls, from_ref: str, to_ref: str, rows: list[ReportRow]) -> "RunSummary":
        """Tally correlation statuses over the report rows."""
        summary = cls(from_ref=from_ref, to_ref=to_ref)
        for row in rows:
            status = row.correlation.status
            summary.counts[status] = summary.counts.get(status, 0) + 1
            if status == "failed":
                summary.failures.append(f"{row.commit.id[:12]}: {row.correlation.error}")
        return summary

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def partial(self) -> bool:
        """True when at least one correlation failed."""
        return self.counts.get("failed", 0) > 0

    @property
    def duration_str(self) -> str:
        """Get human-readable duration string."""
        minutes, seconds = divmod(int(self.duration_seconds), 60)
        if minutes:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"
