"""Error taxonomy for branchtime.

Every failure that should stop a run derives from ``BranchTimeError`` so the
CLI can turn it into a diagnostic and a non-zero exit status. Expected
absences (no PR trailer in a message, a PR without commits) are not errors
and never raise.
"""


class BranchTimeError(Exception):
    """Base exception for all branchtime errors."""


class ConfigurationError(BranchTimeError):
    """Raised when configuration is missing or invalid (credentials, paths, arguments)."""


class RepositoryError(BranchTimeError):
    """Raised when the git repository cannot be opened or its objects read."""


class GitReferenceError(BranchTimeError):
    """Base for failures resolving references into a commit range."""


class ReferenceNotFound(GitReferenceError):
    """Raised when a reference does not resolve to any object."""

    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(f"Reference not found: {ref}")


class AmbiguousReference(GitReferenceError):
    """Raised when a reference matches several objects or a non-commit object."""

    def __init__(self, ref: str, reason: str):
        self.ref = ref
        self.reason = reason
        super().__init__(f"Ambiguous reference {ref}: {reason}")


class NoCommonAncestor(GitReferenceError):
    """Raised when two references share no history."""

    def __init__(self, from_ref: str, to_ref: str):
        self.from_ref = from_ref
        self.to_ref = to_ref
        super().__init__(f"No common ancestor between {from_ref} and {to_ref}")


class CorrelationError(BranchTimeError):
    """Raised when the code host cannot be queried for a pull request."""


class PullRequestNotFound(CorrelationError):
    """Raised when the code host has no pull request with the given number."""

    def __init__(self, repo_name: str, pr_number: int):
        self.repo_name = repo_name
        self.pr_number = pr_number
        super().__init__(f"Pull request #{pr_number} not found in {repo_name}")


class ReportWriteError(BranchTimeError):
    """Raised when the report file cannot be written."""
