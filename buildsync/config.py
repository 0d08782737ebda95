"""Configuration management for buildsync."""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List

from dotenv import load_dotenv

from .platform import (
    ShellFormat, get_git_executable, get_platform_specific_defaults, split_path_list
)


@dataclass
class Config:
    """Configuration class for buildsync with validation and defaults."""

    # External tools
    git_executable: str = field(default_factory=get_git_executable)
    patch_executable: str = "patch"
    pkg_config_executable: str = "pkg-config"

    # Git import
    remote_name: str = "autobuild"
    git_cache_dirs: List[str] = field(default_factory=list)
    cache_dirs: List[str] = field(default_factory=list)

    # Subprocess retry policy
    retry_attempts: int = 3
    retry_delay: float = 1.0

    # Logging
    log_dir: Path = field(default_factory=lambda: Path.home() / ".buildsync" / "logs")
    log_level: str = "INFO"
    # None means "show the whole log" when reporting a failed subcommand
    displayed_error_line_count: Optional[int] = 10

    # Environment export
    shell_format: ShellFormat = ShellFormat.POSIX

    # Per-package locking
    lock_timeout: float = 300.0

    def __post_init__(self):
        """Validate configuration after initialization."""
        if isinstance(self.log_dir, str):
            self.log_dir = Path(self.log_dir)
        self.log_dir = self.log_dir.expanduser()

        if isinstance(self.shell_format, str):
            try:
                self.shell_format = ShellFormat(self.shell_format)
            except ValueError:
                valid = [f.value for f in ShellFormat]
                raise ValueError(f"Invalid shell format: {self.shell_format}. Must be one of {valid}")

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(f"Invalid log level: {self.log_level}. Must be one of {valid_log_levels}")

        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")

        if self.retry_delay < 0:
            raise ValueError("retry_delay must be non-negative")

        if self.displayed_error_line_count is not None and self.displayed_error_line_count <= 0:
            raise ValueError("displayed_error_line_count must be positive (or None for all lines)")

        if not self.remote_name:
            raise ValueError("remote_name cannot be empty")

    def default_alternates(self) -> List[str]:
        """
        Default list of reference repositories for all git importers.

        AUTOBUILD_GIT_CACHE_DIR entries take priority. Otherwise each
        AUTOBUILD_CACHE_DIR root provides a ``<root>/git/%s`` template, where
        ``%s`` is replaced by the package name.
        """
        if self.git_cache_dirs:
            return [os.path.abspath(os.path.expanduser(path)) for path in self.git_cache_dirs]
        if self.cache_dirs:
            return [
                os.path.join(os.path.abspath(os.path.expanduser(path)), "git", "%s")
                for path in self.cache_dirs
            ]
        return []


def _parse_line_count(value: str) -> Optional[int]:
    if value.strip().lower() in ("all", "inf", "infinity"):
        return None
    return int(value)


def load_configuration(dotenv_path: Optional[Path] = None) -> Config:
    """Load configuration from environment variables with platform-specific defaults."""
    load_dotenv(dotenv_path)

    try:
        platform_defaults = get_platform_specific_defaults()

        config = Config(
            git_executable=os.getenv("BUILDSYNC_GIT", get_git_executable()),
            patch_executable=os.getenv("BUILDSYNC_PATCH", "patch"),
            pkg_config_executable=os.getenv("BUILDSYNC_PKG_CONFIG", "pkg-config"),
            remote_name=os.getenv("BUILDSYNC_REMOTE_NAME", "autobuild"),
            git_cache_dirs=split_path_list(os.getenv("AUTOBUILD_GIT_CACHE_DIR")),
            cache_dirs=split_path_list(os.getenv("AUTOBUILD_CACHE_DIR")),
            retry_attempts=int(os.getenv("BUILDSYNC_RETRY_ATTEMPTS", str(platform_defaults['retry_attempts']))),
            retry_delay=float(os.getenv("BUILDSYNC_RETRY_DELAY", str(platform_defaults['retry_delay']))),
            log_dir=Path(os.getenv("BUILDSYNC_LOG_DIR", str(platform_defaults['log_dir']))),
            log_level=os.getenv("BUILDSYNC_LOG_LEVEL", platform_defaults['log_level']).upper(),
            displayed_error_line_count=_parse_line_count(os.getenv("BUILDSYNC_ERROR_LINES", "10")),
            shell_format=os.getenv("BUILDSYNC_SHELL_FORMAT", platform_defaults['shell_format'].value),
            lock_timeout=float(os.getenv("BUILDSYNC_LOCK_TIMEOUT", "300")),
        )
    except (ValueError, TypeError) as e:
        raise ValueError(f"Configuration error: {e}")

    logging.getLogger('buildsync.config').debug(f"Loaded configuration: {config}")
    return config
