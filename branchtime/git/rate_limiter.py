"""Shared GitHub API rate limiter."""

import logging
import threading
import time

from github import Github

from branchtime.errors import CorrelationError

logger = logging.getLogger("branchtime.git.rate_limiter")


class RateLimitExhausted(CorrelationError):
    """Raised when GitHub API rate limit is exhausted."""

    def __init__(self, wait_seconds: float):
        self.wait_seconds = wait_seconds
        super().__init__(f"GitHub rate limit exhausted, reset in {wait_seconds:.0f}s")


class GitHubRateLimiter:
    """Unified rate limiter for GitHub API calls.

    Enforces a minimum delay between calls and checks the quota GitHub
    reported on the most recent response. Raises RateLimitExhausted instead
    of sleeping when quota is empty, letting the caller decide how to
    handle it.
    """

    def __init__(self, github: Github, min_delay: float = 0.1):
        """Initialize rate limiter.

        Args:
            github: Shared Github client instance.
            min_delay: Minimum delay between API calls in seconds.
        """
        self.github = github
        self._min_delay = min_delay
        self._last_call = 0.0
        self._lock = threading.Lock()

    def throttle(self) -> None:
        """Enforce minimum delay between calls and check quota.

        Raises:
            RateLimitExhausted: If API quota is exhausted.
        """
        with self._lock:
            elapsed = time.time() - self._last_call
            if elapsed < self._min_delay:
                time.sleep(self._min_delay - elapsed)
            self._last_call = time.time()

        self._check_quota()

    def _check_quota(self) -> None:
        """Check the quota GitHub reported on the most recent response.

        Reads the client's cached response headers only; before the first
        response nothing is known and no extra request is made to find out.

        Raises:
            RateLimitExhausted: If quota is exhausted (remaining == 0).
        """
        requester = self.github.requester
        remaining, limit = requester.rate_limiting
        if limit < 0 or remaining >= 10:
            return
        reset_time = requester.rate_limiting_resettime

        until_reset = reset_time - time.time()
        wait_seconds = max(until_reset, 0) + 5
        if remaining == 0 and until_reset > 0:
            logger.warning(f"GitHub rate limit exhausted. Reset in {wait_seconds:.0f}s.")
            raise RateLimitExhausted(wait_seconds)
        logger.info(
            f"GitHub rate limit low ({remaining} remaining). "
            f"Reset in {wait_seconds:.0f}s."
        )
