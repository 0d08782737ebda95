"""
Discovery of the search paths of an installation prefix.

Architecture names come from ``dpkg-architecture`` (Debian multiarch) and
the pkg-config search suffixes from ``pkg-config --debug``. Both probes are
run at most once and cached until ``target_arch`` is changed.
"""

import logging
import os
import re
import subprocess
import threading
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union

from ..platform import PlatformInfo, get_platform_info


DPKG_ARCHITECTURE = "/usr/bin/dpkg-architecture"

FOUND_PKGCONFIG_PATH_RX = re.compile(r"Scanning directory (?:#\d+ )?'(.*/)((?:lib|lib64|share)/.*)'$")
MISSING_PKGCONFIG_PATH_RX = re.compile(
    r"Cannot open directory (?:#\d+ )?'.*/((?:lib|lib64|share)/.*)' in package search path:.*"
)

LIBRARY_SEARCH_PATTERNS = ["lib", "lib/ARCH", "libARCHSIZE"]

PROBE_TIMEOUT = 30


class PrefixScanner:
    """Finds architecture-specific directories under installation prefixes."""

    def __init__(self, pkg_config_executable: str = "pkg-config",
                 platform_info: Optional[PlatformInfo] = None,
                 dpkg_architecture: str = DPKG_ARCHITECTURE,
                 target_arch: Optional[str] = None):
        self.pkg_config_executable = pkg_config_executable
        self.platform_info = platform_info or get_platform_info()
        self.dpkg_architecture = dpkg_architecture
        self.logger = logging.getLogger('buildsync.environment')

        self._lock = threading.Lock()
        self._target_arch = target_arch
        self._arch_size: Optional[int] = None
        self._arch_names: Optional[List[str]] = None
        self._pkgconfig_suffixes: Optional[List[str]] = None

    @property
    def target_arch(self) -> Optional[str]:
        return self._target_arch

    @target_arch.setter
    def target_arch(self, archname: Optional[str]):
        with self._lock:
            self._target_arch = archname
            self._arch_size = None
            self._arch_names = None

    def _dpkg_architecture(self) -> List[str]:
        """KEY=value words printed by dpkg-architecture, empty when unavailable."""
        if not os.path.isfile(self.dpkg_architecture):
            return []

        command = [self.dpkg_architecture]
        if self._target_arch:
            command.extend(["-T", self._target_arch])
        try:
            result = subprocess.run(command, capture_output=True, text=True, timeout=PROBE_TIMEOUT)
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.debug(f"cannot run {self.dpkg_architecture}: {e}")
            return []
        return result.stdout.split()

    @staticmethod
    def _dpkg_value(words: List[str], *keys: str) -> Optional[str]:
        for key in keys:
            for word in words:
                if word.startswith(f"{key}="):
                    return word.split("=", 1)[1]
        return None

    @property
    def arch_size(self) -> int:
        """Word size of the target architecture (32 or 64)."""
        with self._lock:
            if self._arch_size is None:
                bits = self._dpkg_value(self._dpkg_architecture(), "DEB_TARGET_ARCH_BITS", "DEB_BUILD_ARCH_BITS")
                if bits is not None:
                    self._arch_size = int(bits)
                else:
                    self._arch_size = 64 if "64" in self.platform_info.machine else 32
            return self._arch_size

    @property
    def arch_names(self) -> List[str]:
        """Multiarch names of the target architecture (e.g. x86_64-linux-gnu)."""
        with self._lock:
            if self._arch_names is None:
                name = self._dpkg_value(self._dpkg_architecture(), "DEB_TARGET_MULTIARCH", "DEB_BUILD_MULTIARCH")
                self._arch_names = [name] if name else []
            return list(self._arch_names)

    @property
    def default_pkgconfig_search_suffixes(self) -> List[str]:
        """Search path of pkg-config, relative to the system prefixes (e.g. lib/pkgconfig)."""
        with self._lock:
            if self._pkgconfig_suffixes is None:
                self._pkgconfig_suffixes = self._probe_pkgconfig()
            return list(self._pkgconfig_suffixes)

    def _probe_pkgconfig(self) -> List[str]:
        env = dict(os.environ, LANG="C", PKG_CONFIG_PATH="")
        try:
            result = subprocess.run(
                [self.pkg_config_executable, "--debug"],
                capture_output=True, text=True, env=env, timeout=PROBE_TIMEOUT
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.warning(f"cannot run {self.pkg_config_executable}, PKG_CONFIG_PATH will not be updated: {e}")
            return []
        return parse_pkgconfig_debug((result.stdout + result.stderr).splitlines())

    def each_env_search_path(self, prefix: Union[str, Path], patterns: Iterable[str]) -> Iterator[str]:
        """
        Yield the existing directories matching patterns under prefix, once each.

        ``ARCHSIZE`` in a pattern is replaced by the word size and ``ARCH``
        by each architecture name; patterns with ``ARCH`` and no known
        architecture name expand to nothing.
        """
        arch_size = self.arch_size
        arch_names = self.arch_names

        seen = set()
        for pattern in patterns:
            pattern = pattern.replace("ARCHSIZE", str(arch_size))
            if "ARCH" in pattern:
                candidates = [pattern.replace("ARCH", arch) for arch in arch_names]
            else:
                candidates = [pattern]

            for candidate in candidates:
                path = os.path.join(str(prefix), *candidate.split("/"))
                if path not in seen and os.path.isdir(path):
                    seen.add(path)
                    yield path

    def library_dirs(self, prefix: Union[str, Path]) -> Iterator[str]:
        """Library directories of prefix holding at least one shared library."""
        pattern = f"lib*.{self.platform_info.library_suffix}"
        for path in self.each_env_search_path(prefix, LIBRARY_SEARCH_PATTERNS):
            if next(Path(path).glob(pattern), None) is not None:
                yield path

    def library_sub_dirs(self) -> List[str]:
        """Library subdirectories, relative to a prefix, used for compiler flags."""
        return ["lib", f"lib{self.arch_size}"] + [f"lib/{arch}" for arch in self.arch_names]


def parse_pkgconfig_debug(lines: Iterable[str]) -> List[str]:
    """Extract the search suffixes from the output of ``pkg-config --debug``."""
    suffixes = []
    for line in lines:
        match = FOUND_PKGCONFIG_PATH_RX.search(line)
        suffix = match.group(2) if match else None
        if suffix is None:
            match = MISSING_PKGCONFIG_PATH_RX.search(line)
            suffix = match.group(1) if match else None
        if suffix is not None and suffix not in suffixes:
            suffixes.append(suffix)
    return suffixes
