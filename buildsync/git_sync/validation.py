"""Resolution and validation of the git directory behind an import directory."""

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from git import Repo
from git.cmd import Git
from git.exc import GitCommandNotFound, InvalidGitRepositoryError, NoSuchPathError

from ..errors import ConfigException
from ..platform import get_git_executable


class GitDirKind(Enum):
    """Layout of a git repository."""
    BARE = "bare"
    NORMAL = "normal"


def resolve_git_dir(path: Union[str, Path],
                    git_executable: Optional[str] = None) -> Optional[Tuple[Path, GitDirKind]]:
    """
    Resolve the git directory associated with path.

    ``path/.git`` is tried first, then ``path`` itself (bare repository).

    Returns:
        (git directory, kind), or None if path is not a git repository
    """
    logger = logging.getLogger('buildsync.git.validation')
    path = Path(path)
    git_executable = git_executable or get_git_executable()

    candidate = path / ".git"
    if not candidate.exists():
        candidate = path

    try:
        status, stdout, stderr = Git().execute(
            [git_executable, f"--git-dir={candidate}", "rev-parse", "--is-bare-repository"],
            with_extended_output=True,
            with_exceptions=False,
        )
    except GitCommandNotFound as e:
        logger.error(f"Cannot run {git_executable}: {e}")
        raise

    if status != 0:
        logger.debug(f"{path} is not a git repository: {stderr.strip()}")
        return None

    kind = GitDirKind.BARE if stdout.strip() == "true" else GitDirKind.NORMAL
    return candidate, kind


def validate_git_dir(package: Any, require_working_copy: bool,
                     resolved: Optional[Tuple[Path, GitDirKind]]) -> Path:
    """
    Check that the resolved git directory is usable for package.

    Returns:
        The git directory

    Raises:
        ConfigException: not a git repository, or bare while a working copy is required
    """
    if resolved is None:
        raise ConfigException(
            package, "import",
            f"while importing {package.name}, {package.importdir} does not point to a git repository"
        )

    git_dir, kind = resolved
    if require_working_copy and kind == GitDirKind.BARE:
        raise ConfigException(
            package, "import",
            f"while importing {package.name}, {package.importdir} points to a bare git repository "
            "but a working copy was required"
        )
    return git_dir


def can_handle(path: Union[str, Path], git_executable: Optional[str] = None) -> bool:
    """Whether path is a (non-bare) git working copy."""
    resolved = resolve_git_dir(path, git_executable)
    return resolved is not None and resolved[1] == GitDirKind.NORMAL


def vcs_definition_for(path: Union[str, Path], remote_name: str = "autobuild",
                       git_executable: Optional[str] = None) -> Dict[str, str]:
    """
    Describe the import of an existing working copy from its git configuration.

    The URL is taken from ``remote.<remote_name>.url``, falling back to
    ``remote.origin.url``.

    Raises:
        ValueError: path is not a git working copy
    """
    if not can_handle(path, git_executable):
        raise ValueError(f"{path} is either not a git repository, or a bare git repository")

    try:
        repo = Repo(path)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise ValueError(f"{path} is not a git repository: {e}")

    try:
        with repo.config_reader() as config_reader:
            url = (config_reader.get_value(f'remote "{remote_name}"', "url", default="")
                   or config_reader.get_value('remote "origin"', "url", default=""))
    finally:
        repo.close()

    definition = {"type": "git"}
    if url:
        definition["url"] = str(url)
    return definition
