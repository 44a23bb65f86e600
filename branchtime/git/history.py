"""Read-only access to a local git repository's history."""

import logging
import re
from collections.abc import Iterator
from pathlib import Path
from typing import Optional

from git import Repo, GitCommandError
from git.exc import AmbiguousObjectName, BadName, BadObject, InvalidGitRepositoryError, NoSuchPathError
from git.objects import Commit

from branchtime.errors import (
    AmbiguousReference,
    NoCommonAncestor,
    ReferenceNotFound,
    RepositoryError,
)
from branchtime.models import CommitRecord
from branchtime.utils import short_sha

logger = logging.getLogger("branchtime.git.history")

# git only disambiguates abbreviated ids of at least four hex digits
ABBREVIATED_SHA_PATTERN = re.compile(r"^[0-9a-fA-F]{4,39}$")


class GitHistory:
    """Resolves references, walks ranges and reads commit metadata through GitPython."""

    def __init__(self, repo: Repo):
        """Initialize history reader.

        Args:
            repo: Open GitPython Repo object.
        """
        self.repo = repo
        self._commits: dict[str, Commit] = {}

    @classmethod
    def open(cls, path: str | Path) -> "GitHistory":
        """Open the repository at ``path``.

        Raises:
            RepositoryError: If the path is missing or not a git repository.
        """
        try:
            repo = Repo(path)
        except NoSuchPathError as e:
            raise RepositoryError(f"Repository path does not exist: {path}") from e
        except InvalidGitRepositoryError as e:
            raise RepositoryError(f"Not a git repository: {path}") from e
        logger.debug(f"Opened repository at {path}")
        return cls(repo)

    def resolve(self, ref: str) -> str:
        """Resolve a human-readable reference to a commit id.

        Annotated tags are peeled to the commit they point at. Which object
        wins when a name matches both a branch and a tag is left to git's
        own disambiguation rules.

        Args:
            ref: Branch, tag, sha or any rev-parse expression.

        Returns:
            Full 40-character commit id.

        Raises:
            ReferenceNotFound: If nothing matches.
            AmbiguousReference: If several objects match or the match is not a commit.
        """
        if not ref or not ref.strip():
            raise ReferenceNotFound(ref)

        try:
            obj = self.repo.rev_parse(ref)
        except AmbiguousObjectName as e:
            raise AmbiguousReference(ref, "matches multiple objects") from e
        except (BadName, BadObject, ValueError, IndexError) as e:
            # GitPython reports an ambiguous prefix as a missing object
            candidates = self._abbreviation_candidates(ref)
            if len(candidates) > 1:
                raise AmbiguousReference(
                    ref, f"matches {len(candidates)} objects ({', '.join(short_sha(c) for c in candidates)})"
                ) from e
            raise ReferenceNotFound(ref) from e

        while obj.type == "tag":
            obj = obj.object
        if obj.type != "commit":
            raise AmbiguousReference(ref, f"points at a {obj.type}, not a commit")

        logger.debug(f"Resolved {ref} to {short_sha(obj.hexsha)}")
        return obj.hexsha

    def _abbreviation_candidates(self, ref: str) -> list[str]:
        """List every object id starting with ``ref`` when it looks like an abbreviated sha."""
        if not ABBREVIATED_SHA_PATTERN.match(ref):
            return []
        try:
            output = self.repo.git.rev_parse(f"--disambiguate={ref}")
        except GitCommandError:
            return []
        return output.split()

    def merge_base(self, a: str, b: str, a_ref: Optional[str] = None, b_ref: Optional[str] = None) -> str:
        """Compute the best common ancestor of two commits.

        Args:
            a: First commit id.
            b: Second commit id.
            a_ref: Human-readable name of ``a`` for error messages.
            b_ref: Human-readable name of ``b`` for error messages.

        Returns:
            Commit id of the merge base.

        Raises:
            NoCommonAncestor: If the histories are disjoint.
            RepositoryError: If git fails to compute the base.
        """
        try:
            bases = self.repo.merge_base(a, b)
        except GitCommandError as e:
            raise RepositoryError(f"merge-base failed for {a_ref or a} and {b_ref or b}: {e}") from e

        if not bases:
            raise NoCommonAncestor(a_ref or a, b_ref or b)
        # Criss-cross histories have several bases; git reports the best one first
        return bases[0].hexsha

    def walk_range(self, from_sha: str, to_sha: str) -> Iterator[str]:
        """Stream the commits reachable from ``to_sha`` but not from ``from_sha``.

        Equivalent to ``git rev-list --date-order TO ^FROM``: children come
        before their parents, otherwise newest committer date first.

        Args:
            from_sha: Commit whose ancestry is excluded.
            to_sha: Commit the walk starts from.

        Yields:
            Commit ids.

        Raises:
            RepositoryError: If git fails while listing commits.
        """
        try:
            for commit in self.repo.iter_commits(f"{from_sha}..{to_sha}", date_order=True):
                self._commits[commit.hexsha] = commit
                yield commit.hexsha
        except GitCommandError as e:
            raise RepositoryError(
                f"rev-list failed for {short_sha(from_sha)}..{short_sha(to_sha)}: {e}"
            ) from e

    def _commit(self, sha: str) -> Commit:
        commit = self._commits.get(sha)
        if commit is None:
            try:
                commit = self.repo.commit(sha)
            except (BadName, BadObject, ValueError) as e:
                raise RepositoryError(f"Cannot read commit {sha}: {e}") from e
            self._commits[sha] = commit
        return commit

    def read_commit(self, sha: str) -> CommitRecord:
        """Read the metadata the report needs for a commit.

        Args:
            sha: Commit id.

        Returns:
            CommitRecord with committer time, author email and first message line.

        Raises:
            RepositoryError: If the commit cannot be read.
        """
        commit = self._commit(sha)
        summary = commit.summary
        if isinstance(summary, bytes):
            summary = summary.decode("utf-8", errors="replace")
        return CommitRecord(
            id=commit.hexsha,
            timestamp=commit.committed_date,
            author_email=commit.author.email or "",
            message=summary,
        )

    def close(self) -> None:
        """Release the underlying git processes."""
        self._commits.clear()
        try:
            self.repo.close()
        except Exception as e:
            logger.debug(f"Error closing repository: {e}")

    def __enter__(self) -> "GitHistory":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
