"""Repository reference: what a git importer tracks and where it comes from."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class TrackingKind(Enum):
    """What the working copy follows on the remote."""
    BRANCH = "branch"
    TAG = "tag"
    COMMIT = "commit"


@dataclass(frozen=True)
class Tracking:
    """A single tracking target, e.g. Tracking(TrackingKind.TAG, "v1.0")."""
    kind: TrackingKind
    name: str

    @classmethod
    def branch(cls, name: str) -> "Tracking":
        return cls(TrackingKind.BRANCH, name)

    @classmethod
    def tag(cls, name: str) -> "Tracking":
        return cls(TrackingKind.TAG, name)

    @classmethod
    def commit(cls, sha: str) -> "Tracking":
        return cls(TrackingKind.COMMIT, sha)

    @property
    def is_pinned(self) -> bool:
        """Tags and commits pin the working copy to a fixed revision."""
        return self.kind != TrackingKind.BRANCH


DEFAULT_BRANCH = "master"


@dataclass
class RepositoryReference:
    """
    Remote repository and tracking configuration of a git import.

    Exactly one of branch, tag or commit is tracked at a time; assigning one
    clears the others. The local branch defaults to the tracked branch, or to
    ``default_branch`` when a tag or commit is pinned.
    """
    url: str
    remote_name: str = "autobuild"
    push_url: Optional[str] = None
    tracking: Tracking = field(default_factory=lambda: Tracking.branch(DEFAULT_BRANCH))
    local_branch_name: Optional[str] = None
    remote_branch_name: Optional[str] = None
    default_branch: str = DEFAULT_BRANCH
    with_submodules: bool = False
    merge: bool = False
    alternates: List[str] = field(default_factory=list)
    repository_id: Optional[str] = None
    source_id: Optional[str] = None

    def __post_init__(self):
        self.relocate(self.url, self.repository_id, self.source_id)

    @property
    def branch(self) -> Optional[str]:
        return self.tracking.name if self.tracking.kind == TrackingKind.BRANCH else None

    @branch.setter
    def branch(self, name: str):
        self.tracking = Tracking.branch(name)

    @property
    def tag(self) -> Optional[str]:
        return self.tracking.name if self.tracking.kind == TrackingKind.TAG else None

    @tag.setter
    def tag(self, name: str):
        self.tracking = Tracking.tag(name)

    @property
    def commit(self) -> Optional[str]:
        return self.tracking.name if self.tracking.kind == TrackingKind.COMMIT else None

    @commit.setter
    def commit(self, sha: str):
        self.tracking = Tracking.commit(sha)

    @property
    def local_branch(self) -> str:
        """Branch used in the local clone."""
        return self.local_branch_name or self.branch or self.default_branch

    @property
    def remote_branch(self) -> Optional[str]:
        """Branch on the remote we push to and track."""
        return self.remote_branch_name or self.branch

    @property
    def effective_push_url(self) -> str:
        return self.push_url or self.url

    def relocate(self, url: str, repository_id: Optional[str] = None,
                 source_id: Optional[str] = None) -> None:
        """Change the repository this reference points to."""
        self.url = str(url)
        self.repository_id = repository_id or f"git:{self.url}"
        self.source_id = source_id or (
            f"{self.repository_id} branch={self.branch} tag={self.tag} commit={self.commit}"
        )
