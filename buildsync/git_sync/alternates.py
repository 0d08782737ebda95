"""Git alternates: sharing objects with local reference repositories.

Alternates have one major caveat: if objects disappear from a reference
repository, the repositories borrowing from it are broken.
"""

import os
from pathlib import Path
from typing import Iterable, Iterator, List


PACKAGE_NAME_PLACEHOLDER = "%s"


def each_alternate_path(alternates: Iterable[str], package_name: str) -> Iterator[str]:
    """
    Yield the reference repositories that exist for a package.

    Each entry may contain ``%s``, replaced by the package name. Entries must
    point to a git directory (a bare repository or a ``.git`` folder).
    """
    for template in alternates:
        path = template.replace(PACKAGE_NAME_PLACEHOLDER, package_name)
        if os.path.isdir(path):
            yield path


def alternates_file(git_dir: Path) -> Path:
    return Path(git_dir) / "objects" / "info" / "alternates"


def read_alternates(git_dir: Path) -> List[str]:
    """Object directories currently listed in the repository's alternates file."""
    path = alternates_file(git_dir)
    if not path.is_file():
        return []
    return [line.strip() for line in path.read_text().splitlines() if line.strip()]


def desired_alternates(alternates: Iterable[str], package_name: str) -> List[str]:
    """Object directories the alternates file should list."""
    return [os.path.join(path, "objects") for path in each_alternate_path(alternates, package_name)]


def write_alternates(git_dir: Path, object_dirs: List[str]) -> None:
    """Write the alternates file, or remove it when there is nothing to list."""
    path = alternates_file(git_dir)
    if not object_dirs:
        if path.exists():
            path.unlink()
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(object_dirs))
