"""Pull request correlation - match commits to PRs and measure branch lead-time."""

import logging
import re
import threading
from datetime import datetime, timezone
from typing import Optional, Union

from github import BadCredentialsException, Github, GithubException, UnknownObjectException

from branchtime.errors import ConfigurationError, CorrelationError, PullRequestNotFound
from branchtime.git.rate_limiter import GitHubRateLimiter, RateLimitExhausted
from branchtime.models import CommitRecord, Correlation
from branchtime.utils import retry, short_sha

logger = logging.getLogger("branchtime.git.pr_correlator")

# Squash-merge trailer GitHub appends to the subject line, e.g. "Fix bug (#123)"
PR_REFERENCE_PATTERN = re.compile(r"\(#(\d+)\)")


def extract_pr(message: str) -> Optional[str]:
    """Extract the pull request reference from a commit subject.

    Args:
        message: First line of the commit message.

    Returns:
        The digits of the first ``(#<digits>)`` match, scanning left to right,
        exactly as written, or None if the message has no such trailer.
    """
    match = PR_REFERENCE_PATTERN.search(message)
    if match is None:
        return None
    return match.group(1)


def _to_epoch_seconds(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


class PRCorrelator:
    """Looks up pull request commit history on GitHub.

    Thread-safe: one instance is shared by every correlation worker.
    """

    def __init__(
        self,
        github: Github,
        repo_name: str,
        rate_limiter: GitHubRateLimiter,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
    ):
        """Initialize correlator.

        Args:
            github: Shared, authenticated Github client, created with
                ``lazy=True`` so repository and pull request handles cost
                no request of their own.
            repo_name: Repository on GitHub (owner/repo).
            rate_limiter: Shared rate limiter instance.
            retry_attempts: Attempts per lookup on network errors.
            retry_delay: Initial delay between attempts in seconds.
        """
        self.github = github
        self.repo_name = repo_name
        self._rate_limiter = rate_limiter
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay

        self._repo = None
        self._repo_lock = threading.Lock()

        # PR number -> author date (epoch seconds) of its first commit, None if it
        # has none, PullRequestNotFound if GitHub does not know the number
        self._first_commit_dates: dict[int, Union[int, None, PullRequestNotFound]] = {}
        self._pr_locks: dict[int, threading.Lock] = {}
        self._cache_lock = threading.Lock()

    def _get_repo(self):
        """Return the repository handle.

        On a lazy client the handle is built without a request; lookups then
        go straight to the pull request endpoints.
        """
        with self._repo_lock:
            if self._repo is None:
                self._repo = self.github.get_repo(self.repo_name)
            return self._repo

    def verify_access(self) -> None:
        """Check the token can read the configured repository.

        Raises:
            ConfigurationError: If the token is rejected or the repository is not visible.
            CorrelationError: If GitHub cannot be reached.
        """
        try:
            self._rate_limiter.throttle()
            self._get_repo().complete()
        except BadCredentialsException as e:
            raise ConfigurationError(f"GitHub token was rejected: {e}") from e
        except UnknownObjectException as e:
            raise ConfigurationError(
                f"Repository {self.repo_name} not found or not accessible with this token"
            ) from e
        except GithubException as e:
            raise CorrelationError(f"GitHub API error for {self.repo_name}: {e}") from e
        except OSError as e:
            raise CorrelationError(f"Cannot reach GitHub: {e}") from e
        logger.debug(f"Verified access to {self.repo_name}")

    def _fetch_first_commit_date(self, pr_number: int) -> Optional[int]:
        """Query GitHub for the author date of a PR's first commit.

        A single ``GET /repos/{repo}/pulls/{number}/commits`` request; the
        API's own commit ordering is trusted and nothing is re-sorted.
        """
        pull = self._get_repo().get_pull(pr_number)
        self._rate_limiter.throttle()
        first = next(iter(pull.get_commits()), None)
        if first is None:
            return None

        author = first.commit.author
        if author is None or author.date is None:
            raise CorrelationError(
                f"PR #{pr_number}: commit {short_sha(first.sha)} has no author date"
            )
        return _to_epoch_seconds(author.date)

    def _pr_lock(self, pr_number: int) -> threading.Lock:
        with self._cache_lock:
            return self._pr_locks.setdefault(pr_number, threading.Lock())

    def first_commit_date(self, pr_number: int) -> Optional[int]:
        """Return the author date of the first commit in a PR, cached per PR.

        Concurrent callers asking for the same PR wait for a single lookup.
        Unknown PRs are remembered too; failures are not, so a later commit
        referencing the same PR tries again.

        Args:
            pr_number: Pull request number.

        Returns:
            Epoch seconds, or None if the PR has no commits.

        Raises:
            PullRequestNotFound: If the PR does not exist.
            RateLimitExhausted: If the API quota is used up.
            CorrelationError: On network, authentication or response errors.
        """
        with self._pr_lock(pr_number):
            if pr_number in self._first_commit_dates:
                cached = self._first_commit_dates[pr_number]
                if isinstance(cached, PullRequestNotFound):
                    raise PullRequestNotFound(self.repo_name, pr_number)
                return cached

            fetch = retry(
                max_attempts=self._retry_attempts,
                delay=self._retry_delay,
                exceptions=(OSError,),
            )(self._fetch_first_commit_date)

            try:
                first_date = fetch(pr_number)
            except UnknownObjectException as e:
                not_found = PullRequestNotFound(self.repo_name, pr_number)
                self._first_commit_dates[pr_number] = not_found
                raise not_found from e
            except BadCredentialsException as e:
                raise CorrelationError(f"GitHub rejected the token while reading PR #{pr_number}") from e
            except GithubException as e:
                raise CorrelationError(f"GitHub API error for PR #{pr_number}: {e}") from e
            except OSError as e:
                # requests' connection and timeout errors are OSErrors
                raise CorrelationError(f"Network error for PR #{pr_number}: {e}") from e

            self._first_commit_dates[pr_number] = first_date
            return first_date

    def fetch_pr_latency(self, pr_number: int, commit_timestamp: int) -> Optional[int]:
        """Compute branch lead-time for a commit merged through a PR.

        Args:
            pr_number: Pull request number.
            commit_timestamp: The merged commit's VCS timestamp (epoch seconds).

        Returns:
            ``commit_timestamp`` minus the PR's first commit author date. Can be
            negative when clocks or rewritten dates disagree. None if the PR
            has no commits.

        Raises:
            PullRequestNotFound: If the PR does not exist.
            CorrelationError: If GitHub cannot be queried.
        """
        first_date = self.first_commit_date(pr_number)
        if first_date is None:
            return None
        return commit_timestamp - first_date

    def correlate(self, commit: CommitRecord) -> Correlation:
        """Correlate a commit with its pull request.

        Per-commit failures are logged and returned as a ``failed``
        correlation instead of raising, so one bad lookup does not void the
        rest of the report.

        Args:
            commit: Commit read from the repository.

        Returns:
            Correlation describing the outcome.
        """
        pr_ref = extract_pr(commit.message)
        if pr_ref is None:
            logger.debug(f"{short_sha(commit.id)}: no PR reference")
            return Correlation.no_reference()

        # (#007) and (#7) are the same pull request
        pr_number = int(pr_ref)
        try:
            latency = self.fetch_pr_latency(pr_number, commit.timestamp)
        except PullRequestNotFound:
            logger.info(f"{short_sha(commit.id)}: PR #{pr_number} not found in {self.repo_name}")
            return Correlation.not_found(pr_ref)
        except RateLimitExhausted as e:
            logger.warning(f"{short_sha(commit.id)}: skipping PR #{pr_number}, {e}")
            return Correlation.failed(pr_ref, str(e))
        except CorrelationError as e:
            logger.warning(f"{short_sha(commit.id)}: lookup of PR #{pr_number} failed: {e}")
            return Correlation.failed(pr_ref, str(e))

        if latency is None:
            logger.info(f"{short_sha(commit.id)}: PR #{pr_number} has no commits")
            return Correlation.not_found(pr_ref)

        logger.debug(f"{short_sha(commit.id)}: PR #{pr_number} branch time {latency}s")
        return Correlation.found(pr_ref, latency)
