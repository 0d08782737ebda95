"""
buildsync - keep checked-out packages in sync with upstream and compose build environments.

This package imports source code from git repositories (clone, fetch, pinning,
patching) and assembles a consistent environment from installation prefixes.
"""

__version__ = "1.0.0"
__author__ = "buildsync Team"
__description__ = "Git import/synchronization and build environment composition"

from .config import Config, load_configuration
from .environment import Environment
from .errors import (
    BuildSyncError, ConfigException, PackageException, PolicyRefusal,
    ImportException, SubcommandFailed, CommandNotFound
)
from .git_sync import GitImporter, MergeStatus, MergeState
from .package import Package
from .subcommand import SubcommandRunner

__all__ = [
    "Config",
    "load_configuration",
    "Environment",
    "BuildSyncError",
    "ConfigException",
    "PackageException",
    "PolicyRefusal",
    "ImportException",
    "SubcommandFailed",
    "CommandNotFound",
    "GitImporter",
    "MergeStatus",
    "MergeState",
    "Package",
    "SubcommandRunner",
]
