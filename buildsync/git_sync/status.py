"""Merge status between a local reference and a fetched commit."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional


class MergeState(Enum):
    """Relationship between a reference commit and a fetched commit."""
    UP_TO_DATE = "up_to_date"         # both are the same history
    SIMPLE_UPDATE = "simple_update"   # reference can fast-forward to fetch
    ADVANCED = "advanced"             # reference is ahead of fetch
    NEEDS_MERGE = "needs_merge"       # histories diverged


def classify_merge(common_commit: str, fetch_commit: str, head_commit: str) -> MergeState:
    """
    Classify the relationship from the merge-base of the two commits.

    Args:
        common_commit: Full id of the merge-base
        fetch_commit: Full id of the fetched (remote) commit
        head_commit: Full id of the reference (local) commit
    """
    if common_commit != fetch_commit:
        if common_commit == head_commit:
            return MergeState.SIMPLE_UPDATE
        return MergeState.NEEDS_MERGE
    if common_commit == head_commit:
        return MergeState.UP_TO_DATE
    return MergeState.ADVANCED


# log_loader(from_commit, to_commit) -> one line per commit in from..to
LogLoader = Callable[[str, str], List[str]]


@dataclass
class MergeStatus:
    """
    Result of comparing a reference commit with a fetched commit.

    The lists of commits unique to each side are only computed when asked
    for, since they cost an extra git invocation each.
    """
    state: MergeState
    fetch_commit: str
    head_commit: str
    common_commit: str
    uncommitted_code: bool = False
    log_loader: Optional[LogLoader] = field(default=None, repr=False, compare=False)
    _remote_commits: Optional[List[str]] = field(default=None, init=False, repr=False, compare=False)
    _local_commits: Optional[List[str]] = field(default=None, init=False, repr=False, compare=False)

    @property
    def needs_update(self) -> bool:
        return self.state in (MergeState.NEEDS_MERGE, MergeState.SIMPLE_UPDATE)

    def _log(self, to_commit: str) -> List[str]:
        if to_commit == self.common_commit or self.log_loader is None:
            return []
        return self.log_loader(self.common_commit, to_commit)

    @property
    def remote_commits(self) -> List[str]:
        """Commits on the fetched side that the reference does not have."""
        if self._remote_commits is None:
            self._remote_commits = self._log(self.fetch_commit)
        return self._remote_commits

    @property
    def local_commits(self) -> List[str]:
        """Commits on the reference side that the fetched commit does not have."""
        if self._local_commits is None:
            self._local_commits = self._log(self.head_commit)
        return self._local_commits
