"""Branch queries on a working copy.

These use probing commands: exit status 1 is the expected "no" answer and
any other failure is raised.
"""

from typing import Optional

from .commands import GitCommand


def has_branch(git: GitCommand, branch_name: str) -> bool:
    """Check if a local branch exists."""
    return git.probe_bare("show-ref", "-q", "--verify", f"refs/heads/{branch_name}").found


def is_detached_head(git: GitCommand) -> bool:
    """Check if HEAD points directly to a commit instead of a branch."""
    return not git.probe_bare("symbolic-ref", "HEAD", "-q").found


def get_current_branch(git: GitCommand) -> Optional[str]:
    """Full ref name of the current branch (refs/heads/...), None on a detached HEAD."""
    result = git.probe_bare("symbolic-ref", "HEAD", "-q")
    if not result.found or not result.output:
        return None
    return result.output[0].strip()


def is_on_branch(git: GitCommand, branch_name: str) -> bool:
    """Check if the current branch is branch_name."""
    return get_current_branch(git) == f"refs/heads/{branch_name}"
