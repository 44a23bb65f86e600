"""Shared fixtures: an in-memory commit graph and throwaway git repositories."""

import itertools
from io import BytesIO
from pathlib import Path

import pytest
from git import Actor, Repo
from gitdb.base import IStream

from branchtime.errors import NoCommonAncestor, ReferenceNotFound
from branchtime.models import CommitRecord


class FakeHistory:
    """In-memory stand-in for GitHistory keyed by short commit names."""

    def __init__(self):
        self.commits: dict[str, tuple[int, list[str], str]] = {}
        self.refs: dict[str, str] = {}
        self.reads: list[str] = []
        self.walks: list[tuple[str, str]] = []

    def add(self, sha: str, timestamp: int, parents=(), message: str | None = None) -> str:
        self.commits[sha] = (timestamp, list(parents), message or f"Commit {sha}")
        return sha

    def resolve(self, ref: str) -> str:
        if ref in self.refs:
            return self.refs[ref]
        if ref in self.commits:
            return ref
        raise ReferenceNotFound(ref)

    def ancestors(self, sha: str) -> set[str]:
        seen = set()
        stack = [sha]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.commits[current][1])
        return seen

    def merge_base(self, a, b, a_ref=None, b_ref=None) -> str:
        common = self.ancestors(a) & self.ancestors(b)
        if not common:
            raise NoCommonAncestor(a_ref or a, b_ref or b)
        best = [
            c for c in common
            if not any(c != other and c in self.ancestors(other) for other in common)
        ]
        return max(best, key=self.commit_time)

    def walk_range(self, from_sha: str, to_sha: str):
        """Newest first; fixtures keep committer dates increasing along parent links."""
        members = self.ancestors(to_sha) - self.ancestors(from_sha)
        self.walks.append((from_sha, to_sha))
        yield from sorted(members, key=self.commit_time, reverse=True)

    def commit_time(self, sha: str) -> int:
        return self.commits[sha][0]

    def read_commit(self, sha: str) -> CommitRecord:
        self.reads.append(sha)
        timestamp, _, message = self.commits[sha]
        return CommitRecord(id=sha, timestamp=timestamp, author_email="dev@example.com", message=message)

    def close(self) -> None:
        pass


class RepoBuilder:
    """Builds commits with fixed timestamps in a real git repository."""

    def __init__(self, path: Path):
        self.path = path
        self.repo = Repo.init(path)
        with self.repo.config_writer() as config:
            config.set_value("user", "name", "Test User")
            config.set_value("user", "email", "test@example.com")

    def commit(self, message: str, parents=(), timestamp: int = 1_700_000_000,
               email: str = "dev@example.com"):
        actor = Actor("Dev", email)
        date = f"{timestamp} +0000"
        return self.repo.index.commit(
            message,
            parent_commits=list(parents),
            head=False,
            author=actor,
            committer=actor,
            author_date=date,
            commit_date=date,
        )

    def branch(self, name: str, commit) -> None:
        self.repo.create_head(name, commit)

    def colliding_blobs(self, prefix_len: int = 4) -> tuple[str, str]:
        """Store blobs until two ids share their first ``prefix_len`` hex digits."""
        seen: dict[str, str] = {}
        for index in itertools.count():
            data = f"blob {index}\n".encode()
            stored = self.repo.odb.store(IStream("blob", len(data), BytesIO(data)))
            sha = stored.binsha.hex()
            prefix = sha[:prefix_len]
            if prefix in seen:
                return seen[prefix], sha
            seen[prefix] = sha


@pytest.fixture
def fake_history():
    return FakeHistory()


@pytest.fixture
def repo_builder(tmp_path):
    builder = RepoBuilder(tmp_path / "repo")
    yield builder
    builder.repo.close()
