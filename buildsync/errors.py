"""Error hierarchy for buildsync."""

from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Sequence


class ErrorCategory(Enum):
    """Categories of errors for structured error handling."""
    CONFIGURATION = "configuration"
    SUBCOMMAND = "subcommand"
    POLICY = "policy"
    PACKAGE = "package"
    IMPORT = "import"


class BuildSyncError(Exception):
    """
    Base class for all buildsync errors.

    Carries the target (usually a Package, or a plain name) and the phase in
    which the error happened, so that the rendered message tells the user
    where to look.
    """

    category = ErrorCategory.PACKAGE

    def __init__(self, target: Any = None, phase: Optional[str] = None,
                 message: str = "", retry: bool = True):
        super().__init__(message)
        self.target = target
        self.phase = phase
        self.message = message
        self.retry = retry

    def can_retry(self) -> bool:
        """Whether retrying the operation may succeed."""
        return self.retry

    @property
    def target_name(self) -> Optional[str]:
        if self.target is None:
            return None
        return getattr(self.target, "name", None) or str(self.target)

    def __str__(self) -> str:
        srcdir = getattr(self.target, "srcdir", None)
        location = f"({srcdir})" if srcdir is not None else ""

        if self.target is not None and self.phase:
            return f"{self.target_name}{location}: failed in {self.phase} phase\n    {self.message}"
        elif self.target is not None:
            return f"{self.target_name}{location}: {self.message}"
        return self.message


class ConfigException(BuildSyncError):
    """The working copy or the import configuration is structurally wrong."""

    category = ErrorCategory.CONFIGURATION

    def __init__(self, target: Any = None, phase: Optional[str] = None,
                 message: str = "", retry: bool = False):
        super().__init__(target, phase, message, retry=retry)

    def __str__(self) -> str:
        return super().__str__() + "\nIf the VCS type changed, please delete your working copy first."


class PackageException(BuildSyncError):
    """An error occurred while processing a package."""

    def __init__(self, target: Any = None, phase: Optional[str] = None,
                 message: str = "", retry: bool = False):
        super().__init__(target, phase, message, retry=retry)


class PolicyRefusal(PackageException):
    """The operation would rewrite or merge history; it must be done by hand."""

    category = ErrorCategory.POLICY


class ImportException(BuildSyncError):
    """The import failed after the working copy was obtained (e.g. patching)."""

    category = ErrorCategory.IMPORT

    def __init__(self, target: Any = None, phase: Optional[str] = None,
                 message: str = "", retry: bool = True, cause: Optional[BaseException] = None):
        super().__init__(target, phase, message, retry=retry)
        self.cause = cause


class CommandNotFound(BuildSyncError):
    """The executable of a subcommand could not be started."""

    category = ErrorCategory.SUBCOMMAND


class SubcommandFailed(BuildSyncError):
    """A subcommand exited with a non-zero status."""

    category = ErrorCategory.SUBCOMMAND

    def __init__(self, target: Any, phase: Optional[str], command: Sequence[str],
                 logfile: Optional[Path], status: Optional[int],
                 output: Optional[List[str]] = None,
                 displayed_line_count: Optional[int] = 10,
                 retry: bool = True):
        message = f"'{' '.join(str(c) for c in command)}' returned status {status}"
        super().__init__(target, phase, message, retry=retry)
        self.command = list(command)
        self.logfile = logfile
        self.status = status
        self.output = list(output or [])
        self.displayed_line_count = displayed_line_count

    def output_tail(self) -> List[str]:
        """Last lines of the captured output, bounded by the configured count."""
        if self.displayed_line_count is None:
            return list(self.output)
        return self.output[-self.displayed_line_count:] if self.output else []

    def __str__(self) -> str:
        msg = super().__str__()
        msg += f"\n    see {self.logfile} for details"

        # Without a status the command never ran; the message already says why
        if self.status is not None:
            if self.logfile is not None and Path(self.logfile).is_file():
                lines = Path(self.logfile).read_text(encoding="utf-8", errors="replace").splitlines()
                if self.displayed_line_count is not None:
                    lines = lines[-self.displayed_line_count:]
            else:
                lines = self.output_tail()
                if self.logfile is not None:
                    msg += "\n    the log file does not seem to be present on disk anymore"
            if lines:
                msg += f"\n    last {len(lines)} lines are:\n\n"
                msg += "\n".join(f"    {line}" for line in lines)
        return msg
