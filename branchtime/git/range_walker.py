"""Commit range resolution: which commits are new on ``to`` relative to ``from``.

The range is ``git rev-list --date-order TO ^FROM`` closed by the merge base
of the two refs. The merge base is always an ancestor of ``from`` and so never
part of the walk itself; it is yielded once, after every walked commit.
"""

import logging
from collections.abc import Iterator
from typing import Protocol

from branchtime.utils import short_sha

logger = logging.getLogger("branchtime.git.range_walker")


class RangeBackend(Protocol):
    """What range resolution needs from a history backend."""

    def resolve(self, ref: str) -> str: ...

    def merge_base(self, a: str, b: str, a_ref: str | None = None, b_ref: str | None = None) -> str: ...

    def walk_range(self, from_sha: str, to_sha: str) -> Iterator[str]: ...


def _close_with_base(walk: Iterator[str], base: str) -> Iterator[str]:
    seen_base = False
    count = 0
    for sha in walk:
        if sha == base:
            seen_base = True
        count += 1
        yield sha
    if not seen_base:
        count += 1
        yield base
    logger.debug(f"Range walk produced {count} commits")


def resolve_range(backend: RangeBackend, from_ref: str, to_ref: str) -> Iterator[str]:
    """Resolve the commits unique to ``to_ref`` since it diverged from ``from_ref``.

    Resolution and the merge-base lookup run immediately so bad refs and
    disjoint histories fail here; the commits themselves are produced lazily.
    Call again for a fresh traversal.

    Args:
        backend: History to walk (``GitHistory`` in production).
        from_ref: Reference the range is measured against.
        to_ref: Reference whose new commits are listed.

    Returns:
        Iterator of commit ids, most recent first, ending with the merge base.

    Raises:
        ReferenceNotFound: If a ref does not resolve.
        AmbiguousReference: If a ref is ambiguous or not a commit.
        NoCommonAncestor: If the refs share no history.
    """
    from_sha = backend.resolve(from_ref)
    to_sha = backend.resolve(to_ref)
    base = backend.merge_base(from_sha, to_sha, from_ref, to_ref)
    logger.info(
        f"Range {from_ref}..{to_ref}: from={short_sha(from_sha)} "
        f"to={short_sha(to_sha)} merge-base={short_sha(base)}"
    )
    return _close_with_base(backend.walk_range(from_sha, to_sha), base)
