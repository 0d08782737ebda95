"""Running git for a package."""

from pathlib import Path
from typing import Any, List, TYPE_CHECKING

from ..subcommand import CommandResult

if TYPE_CHECKING:
    from ..package import Package


class GitCommand:
    """
    Runs git on behalf of a package against a resolved git directory.

    ``run`` executes in the working tree, ``run_bare`` passes ``--git-dir``
    explicitly and therefore also works on bare repositories.
    """

    PHASE = "import"

    def __init__(self, package: "Package", git_executable: str, git_dir: Path):
        self.package = package
        self.git_executable = git_executable
        self.git_dir = Path(git_dir)

    @property
    def working_directory(self) -> Path:
        return self.package.importdir

    def run(self, *args: Any, retry: bool = False) -> List[str]:
        return self.package.run(self.PHASE, self.git_executable, *args,
                                working_directory=self.working_directory, retry=retry)

    def run_bare(self, *args: Any, retry: bool = False) -> List[str]:
        return self.package.run(self.PHASE, self.git_executable, "--git-dir", self.git_dir, *args,
                                working_directory=self.working_directory, retry=retry)

    def probe_bare(self, *args: Any) -> CommandResult:
        """Query whose exit status 1 means "no" (e.g. show-ref --verify)."""
        return self.package.probe(self.PHASE, self.git_executable, "--git-dir", self.git_dir, *args,
                                  working_directory=self.working_directory)
