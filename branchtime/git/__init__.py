"""Git history access and GitHub pull request correlation."""

from branchtime.git.history import GitHistory
from branchtime.git.pr_correlator import PRCorrelator, extract_pr
from branchtime.git.range_walker import resolve_range
from branchtime.git.rate_limiter import GitHubRateLimiter, RateLimitExhausted

__all__ = [
    "GitHistory",
    "PRCorrelator",
    "extract_pr",
    "resolve_range",
    "GitHubRateLimiter",
    "RateLimitExhausted",
]
