"""
Git import and synchronization for buildsync packages.
"""

from .importer import GitImporter
from .repository_info import RepositoryReference, Tracking, TrackingKind
from .status import MergeState, MergeStatus, classify_merge
from .validation import GitDirKind, can_handle, resolve_git_dir, vcs_definition_for

__all__ = [
    "GitImporter",
    "RepositoryReference",
    "Tracking",
    "TrackingKind",
    "MergeState",
    "MergeStatus",
    "classify_merge",
    "GitDirKind",
    "can_handle",
    "resolve_git_dir",
    "vcs_definition_for",
]
