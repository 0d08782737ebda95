"""Subprocess execution with logging and retry for buildsync.

Children get exactly the environment the attached ``Environment`` resolves:
the ambient variables it leaves alone, minus the ones it unsets, plus the
ones it sets.
"""

import logging
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, IO, List, Optional, Tuple, TYPE_CHECKING

from .config import Config
from .errors import CommandNotFound, SubcommandFailed

if TYPE_CHECKING:
    from .environment import Environment


class CommandStatus(Enum):
    """Outcome of a probing command."""
    SUCCESS = "success"
    NOT_FOUND = "not_found"


@dataclass
class CommandResult:
    """Result of a command whose exit status 1 is an expected answer."""
    status: CommandStatus
    exit_code: int
    output: List[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.status == CommandStatus.SUCCESS


def target_name(target: Any) -> str:
    """Name used in log file names and messages for a target."""
    return getattr(target, "name", None) or str(target)


class SubcommandRunner:
    """
    Runs external commands on behalf of packages.

    Each invocation is appended to ``<log_dir>/<target>-<phase>.log``. When an
    Environment is attached, its resolved variables are layered over its
    ambient mapping to build the child's environment, and the variables it
    actively unsets are removed from it. Without an Environment the child
    inherits this process's environment.
    """

    def __init__(self, config: Config, environment: Optional["Environment"] = None):
        """
        Initialize the runner.

        Args:
            config: buildsync configuration (log directory, retry policy)
            environment: Environment whose resolved values are given to children
        """
        self.config = config
        self.environment = environment
        self.logger = logging.getLogger('buildsync.subcommand')

    def log_path(self, target: Any, phase: str) -> Path:
        """Log file receiving the output of the commands run for target/phase."""
        safe_name = target_name(target).replace("/", "_")
        return self.config.log_dir / f"{safe_name}-{phase}.log"

    def child_environment(self) -> Optional[Dict[str, str]]:
        """Complete environment of children, None to inherit this process's."""
        if self.environment is None:
            return None

        resolved = self.environment.resolved_env()
        env = {
            name: value for name, value in self.environment.ambient.items()
            if name not in resolved
        }
        env.update({name: value for name, value in resolved.items() if value is not None})
        return env

    def _execute(self, target: Any, phase: str, command: List[str],
                 working_directory: Optional[Path],
                 input_file: Optional[IO] = None) -> Tuple[int, List[str], List[str]]:
        """Execute once, log the outcome, return (status, stdout lines, stderr lines)."""
        logfile = self.log_path(target, phase)
        logfile.parent.mkdir(parents=True, exist_ok=True)

        self.logger.debug(
            f"Running {' '.join(command)} in {working_directory or '.'}",
            extra={'operation': phase, 'package': target_name(target)}
        )

        try:
            result = subprocess.run(
                command,
                cwd=working_directory,
                stdin=input_file if input_file is not None else subprocess.DEVNULL,
                capture_output=True,
                env=self.child_environment(),
            )
        except OSError as e:
            raise CommandNotFound(target, phase, f"cannot run '{command[0]}': {e}") from e

        status = result.returncode
        stdout_lines = result.stdout.decode("utf-8", errors="replace").splitlines()
        stderr_lines = result.stderr.decode("utf-8", errors="replace").splitlines()

        with open(logfile, "a", encoding="utf-8") as io:
            io.write(f"$ {' '.join(command)}\n")
            if working_directory is not None:
                io.write(f"# in {working_directory}\n")
            for line in stdout_lines + stderr_lines:
                io.write(f"{line}\n")
            io.write(f"# exit status {status}\n")

        return status, stdout_lines, stderr_lines

    def _failure(self, target: Any, phase: str, command: List[str], status: int,
                 output: List[str]) -> SubcommandFailed:
        return SubcommandFailed(
            target, phase, command,
            logfile=self.log_path(target, phase),
            status=status,
            output=output,
            displayed_line_count=self.config.displayed_error_line_count,
        )

    def run(self, target: Any, phase: str, *command: Any,
            working_directory: Optional[Path] = None,
            retry: bool = False,
            input_file: Optional[IO] = None) -> List[str]:
        """
        Run a command and return its standard output as a list of lines.

        Args:
            target: Package (or name) the command is run for
            phase: Build phase, used for logging and error reporting
            command: Executable and its arguments
            working_directory: Directory the command is run in
            retry: Re-attempt failed runs according to the retry policy
            input_file: Open file given as standard input

        Returns:
            Lines printed on standard output

        Raises:
            SubcommandFailed: the command exited with a non-zero status
            CommandNotFound: the executable could not be started
        """
        command = [str(c) for c in command]
        max_attempts = self.config.retry_attempts if retry else 1
        base_delay = self.config.retry_delay

        attempt = 1
        while True:
            if input_file is not None:
                input_file.seek(0)
            status, stdout_lines, stderr_lines = self._execute(
                target, phase, command, working_directory, input_file
            )
            if status == 0:
                if attempt > 1:
                    self.logger.debug(f"{command[0]} succeeded on attempt {attempt}")
                return stdout_lines

            error = self._failure(target, phase, command, status, stdout_lines + stderr_lines)
            if attempt >= max_attempts:
                self.logger.debug(f"{' '.join(command)} failed with status {status}")
                raise error

            delay = base_delay * (2 ** (attempt - 1))
            self.logger.warning(
                f"{' '.join(command)} failed (attempt {attempt}/{max_attempts}), retrying in {delay:.1f}s",
                extra={'operation': phase, 'package': target_name(target)}
            )
            time.sleep(delay)
            attempt += 1

    def probe(self, target: Any, phase: str, *command: Any,
              working_directory: Optional[Path] = None) -> CommandResult:
        """
        Run a query command whose exit status 1 means "not found".

        Returns:
            CommandResult with SUCCESS (exit 0) or NOT_FOUND (exit 1)

        Raises:
            SubcommandFailed: for any other exit status
        """
        command = [str(c) for c in command]
        status, stdout_lines, stderr_lines = self._execute(target, phase, command, working_directory)
        if status == 0:
            return CommandResult(CommandStatus.SUCCESS, status, stdout_lines)
        elif status == 1:
            return CommandResult(CommandStatus.NOT_FOUND, status, stdout_lines)
        raise self._failure(target, phase, command, status, stdout_lines + stderr_lines)
