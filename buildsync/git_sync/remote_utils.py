"""Remote configuration and FETCH_HEAD parsing."""

from pathlib import Path
from typing import List, Optional, Tuple

from .repository_info import RepositoryReference


def remote_configuration(reference: RepositoryReference) -> List[Tuple[str, str]]:
    """
    Git configuration keys and values describing the tracked remote.

    The values are written with ``git config --replace-all`` so that
    rewriting them is idempotent, even in hand-edited repositories.
    """
    remote = reference.remote_name
    local_branch = reference.local_branch
    remote_branch = reference.remote_branch

    entries = [
        (f"remote.{remote}.url", reference.url),
        (f"remote.{remote}.pushurl", reference.effective_push_url),
        (f"remote.{remote}.fetch", f"+refs/heads/*:refs/remotes/{remote}/*"),
    ]

    if remote_branch and local_branch:
        entries.append((f"remote.{remote}.push", f"refs/heads/{local_branch}:refs/heads/{remote_branch}"))
    else:
        entries.append((f"remote.{remote}.push", "refs/heads/*:refs/heads/*"))

    if local_branch:
        entries.append((f"branch.{local_branch}.remote", remote))
        entries.append((f"branch.{local_branch}.merge", f"refs/heads/{remote_branch or local_branch}"))

    return entries


def parse_fetch_head(content: str) -> Optional[str]:
    """
    Commit id of the first FETCH_HEAD entry that is a merge candidate.

    Lines marked ``not-for-merge`` (e.g. tags fetched by --tags) are skipped.
    """
    for line in content.splitlines():
        if not line.strip() or "not-for-merge" in line:
            continue
        return line.split()[0]
    return None


def read_fetch_head(git_dir: Path) -> Optional[str]:
    path = Path(git_dir) / "FETCH_HEAD"
    try:
        content = path.read_text()
    except OSError:
        return None
    return parse_fetch_head(content)
