"""Git importer: clone, fetch, track and pin a package's working copy."""

import logging
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from git import Repo
from git.exc import InvalidGitRepositoryError, NoSuchPathError

from ..config import Config
from ..errors import (
    BuildSyncError, ConfigException, PackageException, PolicyRefusal, SubcommandFailed
)
from ..importer import Importer
from ..patching import PatchApplicator
from . import alternates as git_alternates
from .branch_utils import get_current_branch, has_branch, is_detached_head, is_on_branch
from .commands import GitCommand
from .remote_utils import read_fetch_head, remote_configuration
from .repository_info import RepositoryReference, Tracking, TrackingKind
from .status import MergeState, MergeStatus, classify_merge
from .validation import GitDirKind, resolve_git_dir, validate_git_dir

if TYPE_CHECKING:
    from ..package import Package


class GitImporter(Importer):
    """
    Imports a package from a git repository.

    The working copy tracks one branch, tag or commit of ``repository``
    through a remote named after ``config.remote_name`` (``autobuild`` by
    default). Updates are fast-forward only unless ``merge`` is enabled;
    diverged histories and non-linear pinning are refused, never resolved
    silently.
    """

    def __init__(self, repository: str, branch: Optional[str] = None, *,
                 config: Config,
                 tag: Optional[str] = None,
                 commit: Optional[str] = None,
                 push_to: Optional[str] = None,
                 local_branch: Optional[str] = None,
                 remote_branch: Optional[str] = None,
                 with_submodules: bool = False,
                 merge: bool = False,
                 alternates: Optional[Sequence[str]] = None,
                 repository_id: Optional[str] = None,
                 source_id: Optional[str] = None,
                 patches: Optional[Sequence[str]] = None,
                 **importer_options):
        """
        Args:
            repository: URL (or path) fetched from
            branch: Branch to track; with tag/commit, the local branch to pin on
            config: buildsync configuration
            tag: Tag to pin the working copy to
            commit: Commit id to pin the working copy to
            push_to: Push URL, defaults to repository
            local_branch: Branch name in the local clone, defaults to branch
            remote_branch: Branch pushed to, defaults to branch
            with_submodules: Clone with --recurse-submodules
            merge: Allow merging diverged remote updates
            alternates: Reference repositories, defaults to config.default_alternates()
            patches: Patches applied after each import
        """
        super().__init__(
            patches=patches,
            patch_applicator=importer_options.pop(
                "patch_applicator", PatchApplicator(config.patch_executable)
            ),
            **importer_options
        )

        if tag and commit:
            raise ConfigException(
                repository, "import",
                f"both tag {tag} and commit {commit} were given, a git import can track only one of them"
            )

        if tag:
            tracking = Tracking.tag(tag)
        elif commit:
            tracking = Tracking.commit(commit)
        else:
            tracking = Tracking.branch(branch or "master")

        if tracking.is_pinned and branch and not local_branch:
            local_branch = branch

        self.config = config
        self.git_executable = config.git_executable
        self.reference = RepositoryReference(
            url=repository,
            remote_name=config.remote_name,
            push_url=push_to,
            tracking=tracking,
            local_branch_name=local_branch,
            remote_branch_name=remote_branch,
            with_submodules=with_submodules,
            merge=merge,
            alternates=list(alternates) if alternates is not None else config.default_alternates(),
            repository_id=repository_id,
            source_id=source_id,
        )
        self.logger = logging.getLogger('buildsync.git')
        self._git_dir_cache: Optional[Tuple[Path, Optional[Tuple[Path, GitDirKind]]]] = None

    # Delegated configuration

    @property
    def repository(self) -> str:
        return self.reference.url

    @property
    def remote_name(self) -> str:
        return self.reference.remote_name

    @property
    def branch(self) -> Optional[str]:
        return self.reference.branch

    @branch.setter
    def branch(self, name: str):
        self.reference.branch = name

    @property
    def tag(self) -> Optional[str]:
        return self.reference.tag

    @tag.setter
    def tag(self, name: str):
        self.reference.tag = name

    @property
    def commit(self) -> Optional[str]:
        return self.reference.commit

    @commit.setter
    def commit(self, sha: str):
        self.reference.commit = sha

    @property
    def local_branch(self) -> str:
        return self.reference.local_branch

    @property
    def remote_branch(self) -> Optional[str]:
        return self.reference.remote_branch

    @property
    def merge(self) -> bool:
        return self.reference.merge

    @merge.setter
    def merge(self, flag: bool):
        self.reference.merge = flag

    @property
    def alternates(self) -> List[str]:
        return self.reference.alternates

    @alternates.setter
    def alternates(self, paths: Sequence[str]):
        self.reference.alternates = list(paths)

    def relocate(self, repository: str, repository_id: Optional[str] = None,
                 source_id: Optional[str] = None) -> None:
        """Change the repository this importer points to."""
        self.reference.relocate(repository, repository_id, source_id)

    # Git directory

    def git_dir(self, package: "Package", require_working_copy: bool) -> Path:
        """
        Git directory of the package's import directory.

        Raises:
            ConfigException: not a repository, or bare when a working copy is required
        """
        importdir = package.importdir
        if self._git_dir_cache is not None and self._git_dir_cache[0] == importdir:
            resolved = self._git_dir_cache[1]
        else:
            resolved = resolve_git_dir(importdir, self.git_executable)
            self._git_dir_cache = (importdir, resolved)
        return validate_git_dir(package, require_working_copy, resolved)

    def validate_importdir(self, package: "Package") -> Path:
        return self.git_dir(package, True)

    def _git(self, package: "Package", require_working_copy: bool = False) -> GitCommand:
        return GitCommand(package, self.git_executable, self.git_dir(package, require_working_copy))

    # Queries

    def has_branch(self, package: "Package", branch_name: str) -> bool:
        return has_branch(self._git(package), branch_name)

    def has_local_branch(self, package: "Package") -> bool:
        return self.has_branch(package, self.local_branch)

    def detached_head(self, package: "Package") -> bool:
        return is_detached_head(self._git(package))

    def current_branch(self, package: "Package") -> Optional[str]:
        return get_current_branch(self._git(package))

    def on_target_branch(self, package: "Package") -> bool:
        """Check if the current branch is the local branch of the import."""
        return is_on_branch(self._git(package), self.local_branch)

    def rev_parse(self, package: "Package", name: str) -> str:
        """
        Full commit id of a revision; tags are peeled to the commit they point to.

        Raises:
            PackageException: the revision does not exist
        """
        try:
            return self._git(package).run_bare("rev-parse", "--verify", f"{name}^{{commit}}")[0].strip()
        except (SubcommandFailed, IndexError) as e:
            raise PackageException(
                package, "import",
                f"failed to resolve {name}. Are you sure this commit, branch or tag exists ?"
            ) from e

    def show(self, package: "Package", commit: str, path: str) -> str:
        """Content of path at commit."""
        try:
            return "\n".join(self._git(package).run_bare("show", f"{commit}:{path}"))
        except SubcommandFailed as e:
            raise PackageException(
                package, "import", f"failed to either resolve commit {commit} or file {path}"
            ) from e

    def log(self, package: "Package", from_commit: str, to_commit: str) -> List[str]:
        """One line per commit in from_commit..to_commit."""
        lines = self._git(package).run_bare(
            "log", "--encoding=UTF-8", "--pretty=format:%h %cr %cn %s", f"{from_commit}..{to_commit}"
        )
        return [line.strip() for line in lines]

    def has_uncommitted_changes(self, package: "Package", with_untracked_files: bool = False) -> bool:
        self.validate_importdir(package)
        try:
            repo = Repo(package.importdir)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise ConfigException(package, "import", f"cannot open {package.importdir}: {e}") from e
        try:
            return repo.is_dirty(index=True, working_tree=True, untracked_files=with_untracked_files)
        finally:
            repo.close()

    def tags(self, package: "Package") -> Dict[str, str]:
        """Tags of the repository, mapped to the id they point to."""
        git = self._git(package)
        git.run_bare("fetch", "--tags", self.repository, retry=True)
        result = git.probe_bare("show-ref", "--tags")

        tags = {}
        for entry in result.output:
            commit_id, _, ref = entry.strip().partition(" ")
            if ref.startswith("refs/tags/"):
                tags[ref[len("refs/tags/"):]] = commit_id
        return tags

    def delta_between_tags(self, package: "Package", from_tag: str, to_tag: str) -> MergeStatus:
        """
        Merge status of updating from_tag to to_tag.

        Raises:
            ValueError: one of the tags is unknown
        """
        package_tags = self.tags(package)
        for tag in (from_tag, to_tag):
            if tag not in package_tags:
                raise ValueError(
                    f"tag '{tag}' is unknown to {package.name} -- known tags are: {sorted(package_tags)}"
                )
        return self.merge_status(package, package_tags[to_tag], package_tags[from_tag])

    # Remote

    def update_remotes_configuration(self, package: "Package") -> None:
        """Rewrite the remote and branch configuration of the working copy."""
        git = self._git(package)
        for key, value in remote_configuration(self.reference):
            git.run_bare("config", "--replace-all", key, value)

    def _fetch_refspec(self) -> List[str]:
        if self.reference.tracking.kind == TrackingKind.COMMIT:
            # The commit may be on any branch
            return [f"+refs/heads/*:refs/remotes/{self.remote_name}/*"]
        return [self.branch or self.tag]

    def fetch_remote(self, package: "Package") -> Optional[str]:
        """
        Fetch the tracked branch or tag from the remote.

        The remote configuration is only rewritten once the fetch succeeded,
        so that a working configuration is kept when the new one is broken.

        Returns:
            The fetched commit id, or None when FETCH_HEAD has no usable entry
        """
        self.validate_importdir(package)
        git = self._git(package)

        git.run_bare("fetch", "--tags", self.repository, *self._fetch_refspec(), retry=True)
        self.update_remotes_configuration(package)

        commit_id = read_fetch_head(git.git_dir)

        # An explicit fetch from a URL does not update the tracking ref
        if self.branch and commit_id:
            git.run_bare("update-ref", "-m", "updated by buildsync",
                         f"refs/remotes/{self.remote_name}/{self.remote_branch}", commit_id)
        return commit_id

    def current_remote_commit(self, package: "Package", only_local: bool = False) -> Optional[str]:
        """
        Commit id we should consider to be the remote state.

        Args:
            only_local: Use the last known state of the remote instead of fetching

        Raises:
            PackageException: the cached remote state cannot be resolved
        """
        if only_local:
            tracking = self.reference.tracking
            if tracking.kind == TrackingKind.COMMIT:
                return self.rev_parse(package, tracking.name)
            elif tracking.kind == TrackingKind.TAG:
                ref = f"refs/tags/{tracking.name}"
            else:
                ref = f"refs/remotes/{self.remote_name}/{self.remote_branch}"

            result = self._git(package).probe_bare("show-ref", "-s", "--verify", ref)
            if not result.found or not result.output:
                raise PackageException(package, "import", f"cannot resolve remote HEAD {ref}")
            return result.output[0].strip()

        try:
            return self.fetch_remote(package)
        except BuildSyncError as e:
            return self.fallback(e, package, "status", package, only_local)

    # Status

    def merge_status(self, package: "Package", fetch_commit: str,
                     reference_commit: str = "HEAD") -> MergeStatus:
        """
        Status of updating reference_commit with fetch_commit.

        This is what would happen with::

            git checkout reference_commit
            git merge fetch_commit

        Raises:
            PackageException: no merge-base, or one of the revisions is unknown
        """
        git = self._git(package)
        try:
            common_commit = git.run_bare("merge-base", reference_commit, fetch_commit)[0].strip()
        except (SubcommandFailed, IndexError) as e:
            raise PackageException(
                package, "import",
                f"failed to find the merge-base between {reference_commit} and {fetch_commit}. "
                "Are you sure these commits exist ?"
            ) from e

        remote_commit = self.rev_parse(package, fetch_commit)
        head_commit = self.rev_parse(package, reference_commit)

        return MergeStatus(
            state=classify_merge(common_commit, remote_commit, head_commit),
            fetch_commit=remote_commit,
            head_commit=head_commit,
            common_commit=common_commit,
            log_loader=partial(self.log, package),
        )

    def status(self, package: "Package", only_local: bool = False) -> MergeStatus:
        """Status of the working copy's HEAD with respect to the remote."""
        self.validate_importdir(package)
        remote_commit = self.current_remote_commit(package, only_local)
        if remote_commit is None:
            raise PackageException(package, "import", f"could not determine the remote commit of {self.repository}")
        status = self.merge_status(package, remote_commit)
        status.uncommitted_code = self.has_uncommitted_changes(package)
        return status

    # Alternates

    def each_alternate_path(self, package: "Package"):
        return git_alternates.each_alternate_path(self.alternates, package.name)

    def update_alternates(self, package: "Package") -> None:
        """Make the alternates file of the checked-out package match ``alternates``."""
        git_dir = self.git_dir(package, False)
        current = git_alternates.read_alternates(git_dir)
        desired = git_alternates.desired_alternates(self.alternates, package.name)

        if sorted(current) != sorted(desired):
            package.warn("%s: the list of git alternates listed in the repository differs "
                         "from the one set up in buildsync")
            package.warn("%s: updating it, but editing alternates by hand is fragile")
        git_alternates.write_alternates(git_dir, desired)

    # Checkout and update

    def commit_pinning(self, package: "Package", target_commit: str) -> None:
        """
        Check out a fixed tag or commit.

        Only linear relationships between HEAD and the target are handled;
        anything else must be resolved by hand.

        Raises:
            PolicyRefusal: HEAD and the target have diverged
        """
        status_to_head = self.merge_status(package, target_commit, "HEAD")
        git = self._git(package, True)

        if status_to_head.state == MergeState.NEEDS_MERGE:
            raise PolicyRefusal(
                package, "import",
                f"checking out the specified commit {target_commit} would be a non-simple operation "
                "(i.e. the current state of the repository is not a linear relationship with the "
                "specified commit), do it manually"
            )
        elif not self.has_local_branch(package):
            git.run("checkout", "-b", self.local_branch, target_commit)
        else:
            status_to_branch = self.merge_status(package, target_commit, self.local_branch)
            if status_to_branch.state == MergeState.UP_TO_DATE:
                git.run("checkout", self.local_branch)
            else:
                package.message(
                    f"  checking out specific commit {target_commit} for %s. This will create a detached HEAD."
                )
                git.run("checkout", target_commit)

    def update(self, package: "Package", only_local: bool = False) -> None:
        """
        Bring an existing working copy in line with the tracked target.

        Raises:
            PolicyRefusal: local and remote branches diverged and merge is disabled
        """
        self.validate_importdir(package)
        if package.importdir == package.srcdir:
            self.update_alternates(package)

        fetch_commit = self.current_remote_commit(package, only_local)
        git = self._git(package, True)

        tracking = self.reference.tracking
        if tracking.is_pinned:
            self.commit_pinning(package, tracking.name)
            return

        if fetch_commit is None:
            raise PackageException(
                package, "import", f"could not determine the commit of {self.remote_name}/{self.remote_branch}"
            )

        if not self.has_local_branch(package):
            package.message(f"%s: checking out branch {self.local_branch}")
            git.run("checkout", "-b", self.local_branch, fetch_commit)
            return

        if not self.on_target_branch(package):
            package.message(f"%s: switching to branch {self.local_branch}")
            git.run("checkout", self.local_branch)

        status = self.merge_status(package, fetch_commit)
        if not status.needs_update:
            return

        if status.state == MergeState.NEEDS_MERGE:
            if not self.merge:
                raise PolicyRefusal(
                    package, "import",
                    f"the local branch '{self.local_branch}' and the remote branch {self.branch} of "
                    f"{package.name} have diverged, and I therefore refuse to update automatically. "
                    f"Go into {package.importdir} and either reset the local branch or merge the remote changes"
                )
            git.run("merge", fetch_commit)
        else:
            git.run("merge", "--ff-only", fetch_commit)

    def checkout(self, package: "Package") -> None:
        """Clone the repository into the package's (not yet existing) import directory."""
        importdir = package.importdir
        importdir.parent.mkdir(parents=True, exist_ok=True)

        clone_options = []
        if self.reference.with_submodules:
            clone_options.append("--recurse-submodules")
        for path in self.each_alternate_path(package):
            clone_options.extend(["--reference", path])

        package.run("import", self.git_executable, "clone", "-o", self.remote_name,
                    *clone_options, self.repository, importdir,
                    working_directory=importdir.parent, retry=True)
        self._git_dir_cache = None

        self.update_remotes_configuration(package)
        if self.branch and self.on_target_branch(package):
            self._git(package, True).run("reset", "--hard", f"{self.remote_name}/{self.branch}")
        else:
            self.update(package, only_local=True)
