"""Tests for pull request correlation."""

import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from github import BadCredentialsException, GithubException, UnknownObjectException

from branchtime.errors import ConfigurationError, CorrelationError, PullRequestNotFound
from branchtime.git.pr_correlator import PRCorrelator, extract_pr
from branchtime.git.rate_limiter import RateLimitExhausted
from branchtime.models import CommitRecord

FIRST_COMMIT_DATE = datetime(2018, 3, 29, 14, 0, 0, tzinfo=timezone.utc)


def _pr_commit(date=FIRST_COMMIT_DATE, sha="a" * 40):
    commit = Mock()
    commit.sha = sha
    commit.commit.author.date = date
    return commit


def _make_github(commits=None):
    """Create a Github mock whose PR lists ``commits``."""
    commits = [_pr_commit()] if commits is None else commits
    github = Mock()
    github.get_repo.return_value.get_pull.return_value.get_commits.return_value = commits
    return github


def _get_commits(github):
    return github.get_repo.return_value.get_pull.return_value.get_commits


def _make_correlator(**overrides):
    """Create a PRCorrelator with mocked dependencies."""
    defaults = {
        "github": _make_github(),
        "repo_name": "owner/repo",
        "rate_limiter": Mock(),
        "retry_attempts": 3,
        "retry_delay": 0,
    }
    defaults.update(overrides)
    return PRCorrelator(**defaults)


def _record(message: str, timestamp: int = 1522335500) -> CommitRecord:
    return CommitRecord(id="c" * 40, timestamp=timestamp, author_email="dev@example.com", message=message)


class TestExtractPR:
    """Tests for PR trailer extraction."""

    def test_trailer(self):
        assert extract_pr("Fix bug (#123)") == "123"

    def test_first_match_wins(self):
        """Test left-to-right, first-match tie-break."""
        assert extract_pr("(#1) then (#2)") == "1"

    def test_no_trailer(self):
        assert extract_pr("Fix bug without reference") is None

    def test_bare_hash_is_not_a_trailer(self):
        assert extract_pr("Fix #123 and (#) and (# 4)") is None

    def test_trailer_mid_message(self):
        assert extract_pr("VGR-8087 - Adding tests (#4729) for service") == "4729"

    def test_digits_kept_as_written(self):
        """Test a zero-padded trailer keeps its leading zeros."""
        assert extract_pr("Backport fix (#007)") == "007"


class TestFetchPRLatency:
    """Tests for PRCorrelator.fetch_pr_latency."""

    def test_latency_from_first_commit(self):
        """Test latency is commit time minus the first PR commit's author date."""
        later = _pr_commit(datetime(2018, 3, 29, 15, 0, 0, tzinfo=timezone.utc), sha="b" * 40)
        github = _make_github([_pr_commit(), later])
        correlator = _make_correlator(github=github)

        latency = correlator.fetch_pr_latency(4729, int(FIRST_COMMIT_DATE.timestamp()) + 4132)

        assert latency == 4132
        github.get_repo.assert_called_once_with("owner/repo")
        github.get_repo.return_value.get_pull.assert_called_once_with(4729)

    def test_api_order_is_trusted(self):
        """Test index 0 is used even when a later entry is older."""
        older = _pr_commit(datetime(2018, 3, 1, tzinfo=timezone.utc), sha="b" * 40)
        github = _make_github([_pr_commit(), older])
        correlator = _make_correlator(github=github)

        base = int(FIRST_COMMIT_DATE.timestamp())
        assert correlator.fetch_pr_latency(1, base + 10) == 10

    def test_negative_latency_is_not_an_error(self):
        """Test a first commit dated after the merged commit gives a negative value."""
        correlator = _make_correlator()

        latency = correlator.fetch_pr_latency(1, int(FIRST_COMMIT_DATE.timestamp()) - 60)

        assert latency == -60

    def test_naive_date_treated_as_utc(self):
        """Test a timezone-less author date is read as UTC."""
        naive = _pr_commit(datetime(2018, 3, 29, 14, 0, 0))
        correlator = _make_correlator(github=_make_github([naive]))

        assert correlator.fetch_pr_latency(1, int(FIRST_COMMIT_DATE.timestamp())) == 0

    def test_empty_pr_returns_none(self):
        """Test a PR without commits yields no latency."""
        github = _make_github([])
        correlator = _make_correlator(github=github)

        assert correlator.fetch_pr_latency(1, 1522335500) is None

    def test_missing_pr_raises_not_found(self):
        """Test a 404 from GitHub raises PullRequestNotFound."""
        github = _make_github()
        _get_commits(github).side_effect = UnknownObjectException(
            404, {"message": "Not Found"}, None
        )
        correlator = _make_correlator(github=github)

        with pytest.raises(PullRequestNotFound):
            correlator.fetch_pr_latency(99, 1522335500)

    def test_api_error_raises_correlation_error(self):
        """Test other API errors raise CorrelationError."""
        github = _make_github()
        _get_commits(github).side_effect = GithubException(
            500, {"message": "Server Error"}, None
        )
        correlator = _make_correlator(github=github)

        with pytest.raises(CorrelationError, match="PR #7"):
            correlator.fetch_pr_latency(7, 1522335500)

    def test_network_error_retried(self):
        """Test connection errors are retried before giving up."""
        github = _make_github()
        _get_commits(github).side_effect = [ConnectionError("reset"), [_pr_commit()]]
        correlator = _make_correlator(github=github)

        latency = correlator.fetch_pr_latency(1, int(FIRST_COMMIT_DATE.timestamp()) + 5)

        assert latency == 5
        assert _get_commits(github).call_count == 2

    def test_network_error_exhausts_attempts(self):
        """Test persistent network errors become CorrelationError."""
        github = _make_github()
        _get_commits(github).side_effect = TimeoutError("timed out")
        correlator = _make_correlator(github=github, retry_attempts=2)

        with pytest.raises(CorrelationError, match="Network error"):
            correlator.fetch_pr_latency(1, 1522335500)
        assert _get_commits(github).call_count == 2

    def test_first_commit_date_cached_per_pr(self):
        """Test several commits referencing one PR cost one lookup."""
        github = _make_github()
        correlator = _make_correlator(github=github)

        correlator.fetch_pr_latency(5, 1522335500)
        correlator.fetch_pr_latency(5, 1522339999)

        github.get_repo.return_value.get_pull.assert_called_once_with(5)

    def test_single_request_per_lookup(self):
        """Test a lookup lists the PR's commits without fetching the PR itself."""
        rate_limiter = Mock()
        github = _make_github()
        correlator = _make_correlator(github=github, rate_limiter=rate_limiter)

        correlator.fetch_pr_latency(4729, 1522335500)

        _get_commits(github).assert_called_once_with()
        assert rate_limiter.throttle.call_count == 1

    def test_concurrent_lookups_of_one_pr_share_a_request(self):
        """Test workers asking for the same PR at once wait for one lookup."""
        github = _make_github()

        def slow_commits():
            time.sleep(0.05)
            return [_pr_commit()]

        _get_commits(github).side_effect = slow_commits
        correlator = _make_correlator(github=github)
        base = int(FIRST_COMMIT_DATE.timestamp())

        with ThreadPoolExecutor(max_workers=4) as executor:
            results = list(executor.map(lambda offset: correlator.fetch_pr_latency(9, base + offset), range(4)))

        assert results == [0, 1, 2, 3]
        assert _get_commits(github).call_count == 1

    def test_missing_pr_cached(self):
        """Test a PR GitHub does not know is asked for only once."""
        github = _make_github()
        _get_commits(github).side_effect = UnknownObjectException(404, {"message": "Not Found"}, None)
        correlator = _make_correlator(github=github)

        for _ in range(3):
            with pytest.raises(PullRequestNotFound):
                correlator.fetch_pr_latency(99, 1522335500)

        assert _get_commits(github).call_count == 1

    def test_failures_not_cached(self):
        """Test a failed lookup is retried by the next commit referencing the PR."""
        github = _make_github()
        _get_commits(github).side_effect = [
            GithubException(502, {"message": "Bad Gateway"}, None),
            [_pr_commit()],
        ]
        correlator = _make_correlator(github=github)

        with pytest.raises(CorrelationError):
            correlator.fetch_pr_latency(4, 1522335500)
        assert correlator.fetch_pr_latency(4, int(FIRST_COMMIT_DATE.timestamp())) == 0

    def test_missing_author_date_is_malformed(self):
        """Test a commit without an author date raises CorrelationError."""
        correlator = _make_correlator(github=_make_github([_pr_commit(date=None)]))

        with pytest.raises(CorrelationError, match="no author date"):
            correlator.fetch_pr_latency(1, 1522335500)


class TestCorrelate:
    """Tests for PRCorrelator.correlate."""

    def test_no_reference_skips_api(self):
        """Test a message without trailer never touches GitHub."""
        github = _make_github()
        correlator = _make_correlator(github=github)

        result = correlator.correlate(_record("Bump version"))

        assert result.status == "no_reference"
        assert result.pr_number is None
        assert result.latency_seconds is None
        github.get_repo.assert_not_called()

    def test_found(self):
        """Test a PR with commits yields ok with latency."""
        correlator = _make_correlator()
        timestamp = int(FIRST_COMMIT_DATE.timestamp()) + 4132

        result = correlator.correlate(_record("Adding tests (#4729)", timestamp))

        assert result.status == "ok"
        assert result.pr_number == "4729"
        assert result.latency_seconds == 4132

    def test_zero_padded_reference(self):
        """Test (#007) is reported as written and looked up as PR 7."""
        github = _make_github()
        correlator = _make_correlator(github=github)

        padded = correlator.correlate(_record("Backport fix (#007)"))
        plain = correlator.correlate(_record("Original fix (#7)"))

        assert padded.pr_number == "007"
        assert plain.pr_number == "7"
        assert padded.latency_seconds == plain.latency_seconds
        github.get_repo.return_value.get_pull.assert_called_once_with(7)

    def test_empty_pr_is_not_found(self):
        """Test a PR without commits maps to not_found, not a failure."""
        correlator = _make_correlator(github=_make_github([]))

        result = correlator.correlate(_record("Closed PR (#12)"))

        assert result.status == "not_found"
        assert result.pr_number == "12"
        assert result.latency_seconds is None

    def test_unknown_pr_is_not_found(self):
        """Test a reference to an issue rather than a PR maps to not_found."""
        github = _make_github()
        _get_commits(github).side_effect = UnknownObjectException(
            404, {"message": "Not Found"}, None
        )
        correlator = _make_correlator(github=github)

        result = correlator.correlate(_record("Fixes issue (#3)"))

        assert result.status == "not_found"

    def test_api_failure_is_reported_not_raised(self):
        """Test a failing lookup is carried as a failed correlation."""
        github = _make_github()
        _get_commits(github).side_effect = GithubException(
            502, {"message": "Bad Gateway"}, None
        )
        correlator = _make_correlator(github=github)

        result = correlator.correlate(_record("Change (#8)"))

        assert result.status == "failed"
        assert result.pr_number == "8"
        assert "PR #8" in result.error

    def test_rate_limit_is_reported_not_raised(self):
        """Test an exhausted quota fails the row without aborting."""
        rate_limiter = Mock()
        rate_limiter.throttle.side_effect = RateLimitExhausted(300)
        correlator = _make_correlator(rate_limiter=rate_limiter)

        result = correlator.correlate(_record("Change (#8)"))

        assert result.status == "failed"
        assert "rate limit" in result.error


class TestVerifyAccess:
    """Tests for PRCorrelator.verify_access."""

    def test_bad_token(self):
        """Test a rejected token is a configuration error."""
        github = Mock()
        github.get_repo.return_value.complete.side_effect = BadCredentialsException(
            401, {"message": "Bad credentials"}, None
        )
        correlator = _make_correlator(github=github)

        with pytest.raises(ConfigurationError, match="rejected"):
            correlator.verify_access()

    def test_invisible_repository(self):
        """Test an unknown repository is a configuration error."""
        github = Mock()
        github.get_repo.return_value.complete.side_effect = UnknownObjectException(
            404, {"message": "Not Found"}, None
        )
        correlator = _make_correlator(github=github)

        with pytest.raises(ConfigurationError, match="owner/repo"):
            correlator.verify_access()

    def test_network_failure(self):
        """Test an unreachable GitHub is a correlation error."""
        github = Mock()
        github.get_repo.return_value.complete.side_effect = ConnectionError("refused")
        correlator = _make_correlator(github=github)

        with pytest.raises(CorrelationError, match="Cannot reach GitHub"):
            correlator.verify_access()

    def test_repository_handle_reused(self):
        """Test the repository is fetched once and reused for lookups."""
        github = _make_github()
        correlator = _make_correlator(github=github)

        correlator.verify_access()
        correlator.fetch_pr_latency(1, 1522335500)

        github.get_repo.assert_called_once()
