"""Main entry point and orchestration for branchtime."""

import argparse
import contextvars
import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from collections.abc import Iterable
from typing import Optional

from github import Auth, Github

from branchtime import report_context, setup_logging
from branchtime.config import load_settings, Settings
from branchtime.errors import BranchTimeError, ConfigurationError, CorrelationError
from branchtime.git import GitHistory, GitHubRateLimiter, PRCorrelator, extract_pr, resolve_range
from branchtime.models import CommitRecord, Correlation, ReportRow, RunSummary
from branchtime.report import report_path, write_report
from branchtime.utils import short_sha

logger = logging.getLogger("branchtime.main")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 3


class BranchTime:
    """Builds a branch lead-time report for one pair of refs."""

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize branchtime.

        Args:
            settings: Optional settings override.
        """
        self.settings = settings or load_settings()

        # Single shared GitHub client
        self._github = Github(
            auth=Auth.Token(self.settings.github_token),
            base_url=self.settings.github_api_url,
            timeout=self.settings.request_timeout,
            lazy=True,
        )
        self._rate_limiter = GitHubRateLimiter(
            self._github, min_delay=self.settings.api_min_delay
        )
        self.correlator = PRCorrelator(
            github=self._github,
            repo_name=self.settings.github_repository,
            rate_limiter=self._rate_limiter,
            retry_attempts=self.settings.retry_attempts,
        )
        self.history: Optional[GitHistory] = None

    def run(self, repository_path: str, from_ref: str, to_ref: str) -> RunSummary:
        """Resolve the range, correlate every commit and write the report.

        Args:
            repository_path: Path to the local git repository.
            from_ref: Reference the range is measured against.
            to_ref: Reference whose new commits are reported.

        Returns:
            RunSummary for the written report.

        Raises:
            BranchTimeError: On any fatal condition. Under ``strict`` a failed
                pull request lookup is fatal too and no file is written.
        """
        started = time.monotonic()
        with report_context(from_ref, to_ref):
            logger.info(f"Building branch times for {from_ref}..{to_ref} in {repository_path}")

            self.history = GitHistory.open(repository_path)
            commits = resolve_range(self.history, from_ref, to_ref)
            self.correlator.verify_access()

            rows = self._build_rows(commits)
            summary = RunSummary.from_rows(from_ref, to_ref, rows)

            if summary.partial and self.settings.strict:
                raise CorrelationError(
                    f"{len(summary.failures)} pull request lookups failed: "
                    + "; ".join(summary.failures)
                )

            path = report_path(self.settings.output_dir, from_ref, to_ref)
            summary.output_path = write_report(path, rows)
            summary.duration_seconds = time.monotonic() - started
            self._log_summary(summary)
            return summary

    def _build_rows(self, commits: Iterable[str]) -> list[ReportRow]:
        """Read every commit in walk order and correlate them on a worker pool.

        Args:
            commits: Commit ids in traversal order.

        Returns:
            Report rows in the same order as ``commits``.
        """
        records: list[CommitRecord] = []
        correlations: dict[int, Correlation] = {}

        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as executor:
            futures = {}
            for index, sha in enumerate(commits):
                record = self.history.read_commit(sha)
                records.append(record)
                # Workers inherit the report refs through a copied context
                ctx = contextvars.copy_context()
                future = executor.submit(ctx.run, self.correlator.correlate, record)
                futures[future] = index

            logger.info(f"Correlating {len(records)} commits with {self.settings.max_workers} workers")

            for future in as_completed(futures):
                index = futures[future]
                try:
                    correlations[index] = future.result()
                except Exception as e:
                    record = records[index]
                    logger.error(f"Error correlating {short_sha(record.id)}: {e}")
                    pr_ref = extract_pr(record.message)
                    correlations[index] = (
                        Correlation.failed(pr_ref, str(e))
                        if pr_ref is not None
                        else Correlation.no_reference()
                    )

        return [
            ReportRow(commit=record, correlation=correlations[index])
            for index, record in enumerate(records)
        ]

    @staticmethod
    def _log_summary(summary: RunSummary) -> None:
        counts = summary.counts
        logger.info(
            f"Report complete: {summary.total} commits, "
            f"{counts.get('ok', 0)} with branch time, "
            f"{counts.get('no_reference', 0)} without PR reference, "
            f"{counts.get('not_found', 0)} PRs without data, "
            f"{counts.get('failed', 0)} failed lookups "
            f"({summary.duration_str})"
        )
        if summary.partial:
            logger.warning(
                f"Partial report: {len(summary.failures)} lookups failed and are reported as unknown"
            )
            for failure in summary.failures:
                logger.warning(f"  {failure}")

    def close(self) -> None:
        """Clean up all resources."""
        logger.debug("Closing branchtime resources")

        if self.history is not None:
            self.history.close()

        # Close the shared GitHub client
        if hasattr(self, "_github"):
            self._github.close()

    def __enter__(self) -> "BranchTime":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="branchtime",
        description="Report how long each change spent on its branch before landing on a release",
    )
    parser.add_argument("repository_path", help="Path to the local git repository")
    parser.add_argument("github_repository", help="GitHub repository (owner/repo)")
    parser.add_argument("from_ref", help="Reference the range is measured against, e.g. release/1.0")
    parser.add_argument("to_ref", help="Reference whose new commits are reported, e.g. release/2.0")
    parser.add_argument(
        "--output-dir",
        help="Directory to write the report into (default: /tmp or OUTPUT_DIR)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Number of concurrent pull request lookups (default: 4 or MAX_WORKERS)",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Abort without writing a report if any pull request lookup fails",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    # Early logging so configuration errors are reported consistently
    setup_logging("DEBUG" if args.debug else None)

    try:
        settings = load_settings(
            github_repository=args.github_repository,
            output_dir=args.output_dir,
            max_workers=args.workers,
            strict=True if args.strict else None,
        )
        log_level = "DEBUG" if args.debug else settings.log_level
        setup_logging(log_level, log_format=settings.log_format)

        # Credentials are checked before touching the repository or the network
        settings.require_credentials()

        with BranchTime(settings) as app:
            summary = app.run(args.repository_path, args.from_ref, args.to_ref)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(EXIT_FAILURE)
    except BranchTimeError as e:
        logger.error(str(e))
        sys.exit(EXIT_FAILURE)

    sys.exit(EXIT_PARTIAL if summary.partial else EXIT_OK)


if __name__ == "__main__":
    main()
