"""Packages: a named source directory imported by an importer."""

import logging
from pathlib import Path
from typing import Any, IO, List, Optional, Union, TYPE_CHECKING

from .file_lock import working_copy_lock
from .subcommand import CommandResult, SubcommandRunner

if TYPE_CHECKING:
    from .importer import Importer


class Package:
    """
    A package whose sources live in ``srcdir``.

    ``importdir`` is the directory the importer manages; it defaults to
    ``srcdir`` and differs only when the sources are a subdirectory of the
    imported repository.
    """

    def __init__(self, name: str, srcdir: Union[str, Path], runner: SubcommandRunner,
                 importer: Optional["Importer"] = None,
                 importdir: Optional[Union[str, Path]] = None):
        self.name = name
        self.srcdir = Path(srcdir)
        self.runner = runner
        self.importer = importer
        self._importdir = Path(importdir) if importdir is not None else None
        self.logger = logging.getLogger('buildsync.package')

    @property
    def importdir(self) -> Path:
        return self._importdir or self.srcdir

    @importdir.setter
    def importdir(self, value: Union[str, Path, None]):
        self._importdir = Path(value) if value is not None else None

    def run(self, phase: str, *command: Any, working_directory: Optional[Path] = None,
            retry: bool = False, input_file: Optional[IO] = None) -> List[str]:
        """Run a command for this package, see SubcommandRunner.run."""
        return self.runner.run(self, phase, *command, working_directory=working_directory,
                               retry=retry, input_file=input_file)

    def probe(self, phase: str, *command: Any, working_directory: Optional[Path] = None) -> CommandResult:
        """Run a query command for this package, see SubcommandRunner.probe."""
        return self.runner.probe(self, phase, *command, working_directory=working_directory)

    def _format(self, text: str) -> str:
        return text.replace("%s", self.name, 1) if "%s" in text else f"{self.name}: {text}"

    def message(self, text: str) -> None:
        """Report progress. A ``%s`` in text is replaced by the package name."""
        self.logger.info(self._format(text), extra={'package': self.name})

    def warn(self, text: str) -> None:
        """Report a non-fatal problem. A ``%s`` in text is replaced by the package name."""
        self.logger.warning(self._format(text), extra={'package': self.name})

    def lock(self, timeout: Optional[float] = None):
        """Lock serializing operations on this package's working copy."""
        if timeout is None:
            timeout = self.runner.config.lock_timeout
        return working_copy_lock(self.importdir, timeout)

    def __repr__(self) -> str:
        return f"Package({self.name!r}, srcdir={str(self.srcdir)!r})"
