"""Cross-platform detection for buildsync.

Every OS-dependent choice (shell syntax of generated scripts, dynamic library
variable, shared library suffix, git executable) is derived here from a
single platform probe.
"""

import os
import platform
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, Union


class PlatformType(Enum):
    """Supported platform types."""
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"
    FREEBSD = "freebsd"
    UNKNOWN = "unknown"


class ShellFormat(Enum):
    """Syntax used when exporting an environment as a script."""
    POSIX = "posix"
    WINDOWS_CMD = "windows-cmd"


class PlatformInfo:
    """Platform information and utilities."""

    def __init__(self, system: Optional[str] = None, machine: Optional[str] = None):
        """
        Initialize platform detection.

        Args:
            system: Override for platform.system(), mostly useful in tests
            machine: Override for platform.machine()
        """
        self._system = (system or platform.system()).lower()
        self._machine = machine or platform.machine()
        self._platform_type = self._detect_platform()
        self._is_windows = self._platform_type == PlatformType.WINDOWS
        self._is_unix = self._platform_type in (
            PlatformType.LINUX, PlatformType.MACOS, PlatformType.FREEBSD
        )

    def _detect_platform(self) -> PlatformType:
        """Detect the current platform."""
        system = self._system

        if system == "windows" or system.startswith(("mingw", "msys", "cygwin")):
            return PlatformType.WINDOWS
        elif system == "darwin":
            return PlatformType.MACOS
        elif system == "linux":
            return PlatformType.LINUX
        elif system == "freebsd":
            return PlatformType.FREEBSD
        else:
            return PlatformType.UNKNOWN

    @property
    def platform_type(self) -> PlatformType:
        """Get the detected platform type."""
        return self._platform_type

    @property
    def is_windows(self) -> bool:
        """Check if running on Windows."""
        return self._is_windows

    @property
    def is_unix(self) -> bool:
        """Check if running on Unix-like system (Linux/macOS/BSD)."""
        return self._is_unix

    @property
    def is_macos(self) -> bool:
        """Check if running on macOS."""
        return self._platform_type == PlatformType.MACOS

    @property
    def is_linux(self) -> bool:
        """Check if running on Linux."""
        return self._platform_type == PlatformType.LINUX

    @property
    def is_bsd(self) -> bool:
        """Check if running on a BSD flavour (macOS included)."""
        return self._platform_type in (PlatformType.FREEBSD, PlatformType.MACOS)

    @property
    def machine(self) -> str:
        """Host CPU name as reported by the platform module."""
        return self._machine

    @property
    def path_separator(self) -> str:
        """Separator used to join path lists in environment variables."""
        return ";" if self._is_windows else ":"

    @property
    def library_path_variable(self) -> str:
        """Environment variable searched by the dynamic linker."""
        if self.is_macos:
            return "DYLD_LIBRARY_PATH"
        elif self._is_windows:
            return "PATH"
        return "LD_LIBRARY_PATH"

    @property
    def library_suffix(self) -> str:
        """File extension of shared libraries."""
        if self.is_macos:
            return "dylib"
        elif self._is_windows:
            return "dll"
        return "so"

    @property
    def default_shell_format(self) -> ShellFormat:
        """Shell syntax for generated environment scripts."""
        return ShellFormat.WINDOWS_CMD if self._is_windows else ShellFormat.POSIX

    def get_platform_name(self) -> str:
        """Get human-readable platform name."""
        return self._platform_type.value

    def get_system_info(self) -> Dict[str, Any]:
        """Get comprehensive system information."""
        return {
            'platform': self.get_platform_name(),
            'system': platform.system(),
            'release': platform.release(),
            'machine': self._machine,
            'python_version': platform.python_version(),
            'library_path_variable': self.library_path_variable,
            'shell_format': self.default_shell_format.value,
        }


# Global platform info instance
_platform_info: Optional[PlatformInfo] = None


def get_platform_info() -> PlatformInfo:
    """Get the global platform info instance."""
    global _platform_info
    if _platform_info is None:
        _platform_info = PlatformInfo()
    return _platform_info


def normalize_path(path: Union[str, Path]) -> Path:
    """
    Normalize a path for the current platform.

    Args:
        path: Path to normalize

    Returns:
        Normalized Path object
    """
    if isinstance(path, str):
        path = Path(path)

    # Expand user home directory (~) first, then resolve to absolute path
    return path.expanduser().resolve()


def get_platform_specific_defaults() -> Dict[str, Any]:
    """
    Get platform-specific configuration defaults.

    Returns:
        Dictionary of platform-specific defaults
    """
    platform_info = get_platform_info()

    defaults = {
        'log_dir': Path.home() / ".buildsync" / "logs",
        'log_level': "INFO",
        'retry_attempts': 3,
        'retry_delay': 1.0,
        'shell_format': platform_info.default_shell_format,
    }

    # Platform-specific adjustments
    if platform_info.is_windows:
        defaults.update({
            'retry_attempts': 5,  # Windows may need more retries for Git operations
            'retry_delay': 1.5,
        })
    elif platform_info.is_macos:
        defaults.update({
            'retry_delay': 0.8,
        })
    elif platform_info.is_linux:
        defaults.update({
            'retry_delay': 0.5,
        })

    return defaults


def get_git_executable() -> str:
    """
    Get the Git executable name for the current platform.

    Returns:
        Git executable name
    """
    if get_platform_info().is_windows:
        return "git.exe"
    return "git"


def split_path_list(value: Optional[str]) -> list:
    """Split a colon separated list of directories, dropping empty entries."""
    if not value:
        return []
    return [os.path.expanduser(entry) for entry in value.split(":") if entry]
