"""
Layered environment model.

Each variable has its own values (set by buildsync) and an inherited value
captured from the ambient process environment the first time the variable is
touched. The own values come first when the variable is resolved.

A name absent from the own values is fully inherited (passed through
unchanged); a name whose own values are None is actively unset.
"""

import copy
import glob
import logging
import os
import shlex
import threading
from enum import Enum
from pathlib import Path
from typing import Dict, IO, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..platform import PlatformInfo, ShellFormat, get_platform_info
from .export import ExportedEnvironment, environment_from_export, variable_reference, write_shell_script
from .prefix import PrefixScanner


class InheritanceMode(Enum):
    """How inherited values appear in Environment.value."""
    EXPAND = "expand"   # the captured inherited value
    KEEP = "keep"       # a $NAME reference, for generated scripts
    IGNORE = "ignore"   # no inheritance


ISOLATED_PATH = ["/usr/local/bin", "/usr/bin", "/bin"]

PathLike = Union[str, Path]


class Environment:
    """
    Environment variables composed for subcommands and exported scripts.

    The Environment is an explicit value: create one at startup and hand it
    to the components that run subcommands. All methods are safe to call
    from several threads.
    """

    def __init__(self, ambient: Optional[Mapping[str, str]] = None,
                 platform_info: Optional[PlatformInfo] = None,
                 shell_format: Optional[Union[ShellFormat, str]] = None,
                 prefix_scanner: Optional[PrefixScanner] = None):
        """
        Args:
            ambient: Environment inherited values are read from (os.environ by default)
            platform_info: Platform deciding separators and the library variable
            shell_format: Syntax of generated scripts, defaults to the platform's
            prefix_scanner: Used by add_prefix, created on first use when missing
        """
        self.platform_info = platform_info or get_platform_info()
        self.ambient = ambient if ambient is not None else os.environ
        self.shell_format = ShellFormat(shell_format) if shell_format else self.platform_info.default_shell_format
        self._prefix_scanner = prefix_scanner
        self.logger = logging.getLogger('buildsync.environment')

        self._lock = threading.RLock()
        self.environment: Dict[str, Optional[List[str]]] = {}
        self.inherited_environment: Dict[str, Optional[List[str]]] = {}
        self.system_env: Dict[str, List[str]] = {}
        self.inherited_variables = set()
        self.path_variables = set()
        self.appended_variables = set()
        self._source_before: List[str] = []
        self._source_after: List[str] = []
        self._inherit = True

    @property
    def path_separator(self) -> str:
        return self.platform_info.path_separator

    @property
    def library_path_variable(self) -> str:
        return self.platform_info.library_path_variable

    @property
    def prefix_scanner(self) -> PrefixScanner:
        with self._lock:
            if self._prefix_scanner is None:
                self._prefix_scanner = PrefixScanner(platform_info=self.platform_info)
            return self._prefix_scanner

    @prefix_scanner.setter
    def prefix_scanner(self, scanner: PrefixScanner):
        self._prefix_scanner = scanner

    # Variable kinds

    def declare_path_variable(self, name: str) -> None:
        """Entries of path variables that do not exist on disk are filtered out when resolving."""
        with self._lock:
            self.path_variables.add(name)

    def is_path_variable(self, name: str) -> bool:
        return name in self.path_variables

    def declare_appended_variable(self, name: str) -> None:
        """Values of appended variables are joined with spaces."""
        with self._lock:
            self.appended_variables.add(name)

    def is_appended_variable(self, name: str) -> bool:
        return name in self.appended_variables

    def variable_separator(self, name: str) -> str:
        return " " if self.is_appended_variable(name) else self.path_separator

    # Inheritance

    @property
    def inherit_enabled(self) -> bool:
        """Global inheritance switch; when off no variable inherits."""
        return self._inherit

    @inherit_enabled.setter
    def inherit_enabled(self, flag: bool):
        with self._lock:
            self._inherit = flag
            for name in list(self.inherited_environment):
                self._init_from_env(name)

    def is_inherited(self, name: str) -> bool:
        return self._inherit and name in self.inherited_variables

    def inherit(self, *names: str, flag: bool = True) -> bool:
        """
        Declare that names keep the value they have in the ambient environment.

        Their values are then prepended to instead of replaced, both for
        subcommands and in generated scripts.

        Returns:
            Whether inheritance is globally enabled
        """
        with self._lock:
            for name in names:
                if flag:
                    self.inherited_variables.add(name)
                    self._init_from_env(name)
                elif name in self.inherited_variables:
                    self.inherited_variables.discard(name)
                    self._init_from_env(name)
            return self._inherit

    def _init_from_env(self, name: str) -> None:
        parent_value = self.ambient.get(name)
        if self.is_inherited(name) and parent_value:
            self.inherited_environment[name] = parent_value.split(self.path_separator)
        else:
            self.inherited_environment[name] = []

    # Mutation

    def expand(self, value: PathLike) -> str:
        """Hook applied to every added value."""
        return os.fspath(value)

    def set(self, name: str, *values: PathLike) -> None:
        """Replace the own values of name, keeping its inheritance."""
        with self._lock:
            self.environment.pop(name, None)
            self.add(name, *values)

    def add(self, name: str, *values: PathLike) -> None:
        """Prepend values to the own values of name."""
        with self._lock:
            new_values = [self.expand(v) for v in values]
            current = self.environment.get(name) or []
            if name not in self.inherited_environment:
                self._init_from_env(name)
            self.environment[name] = new_values + current

    def append(self, name: str, *values: PathLike) -> None:
        """Like add, for variables whose values are joined with spaces (e.g. CFLAGS)."""
        with self._lock:
            self.declare_appended_variable(name)
            self.add(name, *values)

    def push(self, name: str, *values: PathLike) -> None:
        """Put values in front of the current own values of name."""
        with self._lock:
            current = self.environment.get(name)
            if current:
                self.set(name, *values, *current)
            else:
                self.add(name, *values)

    def unset(self, name: str) -> None:
        """
        Actively unset name in subcommands and generated scripts.

        Unlike reset, which gives the variable its ambient value back.
        """
        with self._lock:
            self.environment[name] = None

    def clear(self, name: Optional[str] = None) -> None:
        """Unset name, including its inherited value; every variable when name is None."""
        with self._lock:
            names = [name] if name is not None else list(self.environment)
            for env_name in names:
                self.environment[env_name] = None
                self.inherited_environment[env_name] = None

    def reset(self, name: Optional[str] = None) -> None:
        """Drop what buildsync did to name (every variable when None) and re-read its ambient value."""
        with self._lock:
            names = [name] if name is not None else list(self.environment)
            for env_name in names:
                self.environment.pop(env_name, None)
                self.inherited_environment.pop(env_name, None)
                self._init_from_env(env_name)

    # Path variables

    def set_path(self, name: str, *paths: PathLike) -> None:
        """Replace the value of path variable name, dropping its inherited value."""
        with self._lock:
            self.declare_path_variable(name)
            self.clear(name)
            self.add_path(name, *paths)

    def add_path(self, name: str, *paths: PathLike) -> None:
        """Prepend paths to path variable name, skipping the ones it already contains."""
        with self._lock:
            self.declare_path_variable(name)
            if self.environment.get(name) is None:
                self.environment[name] = []
            if name not in self.inherited_environment:
                self._init_from_env(name)

            for path in reversed([self.expand(p) for p in paths]):
                if path not in self.environment[name]:
                    self.add(name, path)

    def push_path(self, name: str, *paths: PathLike) -> None:
        """Put paths in front of the current own values of path variable name."""
        with self._lock:
            self.declare_path_variable(name)
            new_paths = [self.expand(p) for p in paths]
            current = self.environment.pop(name, None) or []
            self.add_path(name, *new_paths, *[p for p in current if p not in new_paths])

    def remove_path(self, name: str, *paths: PathLike) -> None:
        with self._lock:
            self.declare_path_variable(name)
            current = self.environment.get(name)
            if current is None:
                return
            removed = {self.expand(p) for p in paths}
            self.environment[name] = [p for p in current if p not in removed]

    # Scripts sourced by the generated environment script

    def source_before(self, path: Optional[PathLike] = None) -> List[str]:
        """Register a script sourced at the top of the generated script; returns the list."""
        with self._lock:
            if path is not None and os.fspath(path) not in self._source_before:
                self._source_before.append(os.fspath(path))
            return list(self._source_before)

    def source_after(self, path: Optional[PathLike] = None) -> List[str]:
        """Register a script sourced at the end of the generated script; returns the list."""
        with self._lock:
            if path is not None and os.fspath(path) not in self._source_after:
                self._source_after.append(os.fspath(path))
            return list(self._source_after)

    # Resolution

    def __contains__(self, name: str) -> bool:
        return name in self.environment

    def value(self, name: str,
              inheritance_mode: Union[InheritanceMode, str] = InheritanceMode.EXPAND) -> Optional[List[str]]:
        """
        Values of name: own values, then inherited, then system defaults.

        Args:
            name: Variable name
            inheritance_mode: EXPAND inserts the inherited values, KEEP a
                ``$NAME`` reference (only for inherited variables), IGNORE
                nothing

        Returns:
            The values without duplicates, or None if name is not managed
            here or is unset
        """
        inheritance_mode = InheritanceMode(inheritance_mode)
        with self._lock:
            own = self.environment.get(name)
            if own is None:
                return None

            if inheritance_mode == InheritanceMode.EXPAND:
                inherited = self.inherited_environment.get(name) or []
            elif inheritance_mode == InheritanceMode.KEEP and self.is_inherited(name):
                inherited = [variable_reference(name)]
            else:
                inherited = []

            result = []
            for values in (own, inherited, self.system_env.get(name) or []):
                for value in values:
                    if value not in result:
                        result.append(value)
            return result

    def resolved_env(self) -> Dict[str, Optional[str]]:
        """
        Values given to subcommands, None for actively unset variables.

        Path variables are filtered against the filesystem now, so two calls
        can differ when directories appear or disappear in between.
        """
        with self._lock:
            resolved = {}
            for name in self.environment:
                values = self.value(name)
                if values is None:
                    resolved[name] = None
                    continue
                if self.is_path_variable(name):
                    values = [p for p in values if os.path.exists(p)]
                resolved[name] = self.variable_separator(name).join(values)
            return resolved

    def __getitem__(self, name: str) -> Optional[str]:
        """Resolved value of name (None when unset); KeyError when name is not managed here."""
        resolved = self.resolved_env()
        if name not in resolved:
            raise KeyError(name)
        return resolved[name]

    def find_executable_in_path(self, file: str, path_var: str = "PATH") -> Optional[str]:
        return find_executable_in_path(file, self.value(path_var) or [])

    def find_in_path(self, file: str, path_var: str = "PATH") -> Optional[str]:
        return find_in_path(file, self.value(path_var) or [])

    # Export

    def exported_environment(self) -> ExportedEnvironment:
        """Modifications a generated script has to perform to load this environment."""
        with self._lock:
            export = ExportedEnvironment(path_separator=self.path_separator)
            for name in self.environment:
                with_inheritance = self.value(name, InheritanceMode.KEEP)
                without_inheritance = self.value(name, InheritanceMode.IGNORE)

                if with_inheritance is None:
                    export.unset.append(name)
                    continue

                if self.is_path_variable(name):
                    with_inheritance = _existing_or_reference(with_inheritance)
                    without_inheritance = _existing_or_reference(without_inheritance)

                if self.is_appended_variable(name):
                    export.appended.add(name)
                if with_inheritance == without_inheritance:
                    export.set[name] = with_inheritance
                else:
                    export.update[name] = (with_inheritance, without_inheritance)
            return export

    environment_from_export = staticmethod(environment_from_export)

    def export_env_sh(self, stream: IO[str], shell_format: Optional[Union[ShellFormat, str]] = None) -> None:
        """Write a script that loads this environment in a shell."""
        with self._lock:
            write_shell_script(
                self.exported_environment(), stream,
                ShellFormat(shell_format) if shell_format else self.shell_format,
                source_before=self._source_before,
                source_after=self._source_after,
            )

    # Presets

    def isolate(self) -> None:
        """Stop inheriting, and give PATH the base system directories."""
        with self._lock:
            self.inherit_enabled = False
            self.push_path("PATH", *ISOLATED_PATH)

    def prepare(self) -> None:
        """Inherit the variables a build needs from the ambient environment."""
        self.inherit("PATH", "PKG_CONFIG_PATH", "PYTHONPATH",
                     self.library_path_variable, "CMAKE_PREFIX_PATH")

    def copy(self) -> "Environment":
        """Independent copy; later changes to one do not affect the other."""
        with self._lock:
            other = Environment(self.ambient, self.platform_info, self.shell_format, self._prefix_scanner)
            other.environment = copy.deepcopy(self.environment)
            other.inherited_environment = copy.deepcopy(self.inherited_environment)
            other.system_env = copy.deepcopy(self.system_env)
            other.inherited_variables = set(self.inherited_variables)
            other.path_variables = set(self.path_variables)
            other.appended_variables = set(self.appended_variables)
            other._source_before = list(self._source_before)
            other._source_after = list(self._source_after)
            other._inherit = self._inherit
            return other

    # Compiler flags

    def parse_flags(self, flags: str, sanitize: bool = True) -> Tuple[List[str], List[str]]:
        """
        Extract the -I and -L directories of a flag string.

        Returns:
            (include directories, library directories)
        """
        include_dirs = []
        lib_dirs = []

        words = shlex.split(flags)
        while words:
            word = words.pop(0)
            if word == "-I" and words:
                include_dirs.append(words.pop(0))
            elif word == "-L" and words:
                lib_dirs.append(words.pop(0))
            elif word.startswith("-I") and len(word) > 2:
                include_dirs.append(word[2:])
            elif word.startswith("-L") and len(word) > 2:
                lib_dirs.append(word[2:])

        if sanitize:
            include_dirs = _sanitize_paths(include_dirs)
            lib_dirs = _sanitize_paths(lib_dirs)
        return include_dirs, lib_dirs

    def compute_compilation_flags(self, new_prefix: PathLike, current_flags: Optional[str] = None,
                                  append_include: bool = True,
                                  lib_sub_dir: str = "lib",
                                  include_sub_dir: str = "include") -> List[str]:
        """-L (and -I) flags for new_prefix that current_flags does not have yet."""
        include_dirs, lib_dirs = self.parse_flags(current_flags or "")

        new_flags = []
        lib_dir = os.path.normpath(os.path.join(os.fspath(new_prefix), lib_sub_dir))
        if lib_dir not in lib_dirs:
            new_flags.append(f"-L{lib_dir}")
        include_dir = os.path.normpath(os.path.join(os.fspath(new_prefix), include_sub_dir))
        if append_include and include_dir not in include_dirs:
            new_flags.append(f"-I{include_dir}")
        return new_flags

    def append_compilation_flags(self, prefix: PathLike, flag: str,
                                 append_include: bool = True,
                                 lib_sub_dir: str = "lib") -> None:
        with self._lock:
            current_flags = " ".join(self.environment.get(flag) or [])
            new_flags = self.compute_compilation_flags(
                prefix, current_flags=current_flags,
                append_include=append_include, lib_sub_dir=lib_sub_dir
            )
            if new_flags:
                self.append(flag, *new_flags)

    # Prefixes

    def add_prefix(self, prefix: PathLike, includes: Optional[Iterable[str]] = None) -> None:
        """
        Update the environment for software installed in prefix.

        Args:
            prefix: Installation prefix
            includes: Variables to update (PATH, PKG_CONFIG_PATH, the library
                path variable, CFLAGS, CXXFLAGS, LDFLAGS, PYTHONPATH); all
                when None
        """
        prefix = os.fspath(prefix)
        includes = set(includes) if includes is not None else None

        def wanted(category: str) -> bool:
            return includes is None or category in includes

        scanner = self.prefix_scanner
        with self._lock:
            self.logger.debug(f"Adding prefix {prefix}")

            if wanted("PATH") and os.path.isdir(os.path.join(prefix, "bin")):
                self.add_path("PATH", os.path.join(prefix, "bin"))

            if wanted("PKG_CONFIG_PATH"):
                for path in scanner.each_env_search_path(prefix, scanner.default_pkgconfig_search_suffixes):
                    self.add_path("PKG_CONFIG_PATH", path)

            if wanted(self.library_path_variable):
                for path in scanner.library_dirs(prefix):
                    self.add_path(self.library_path_variable, path)

            for lib_sub_dir in scanner.library_sub_dirs():
                if wanted("CFLAGS"):
                    self.append_compilation_flags(prefix, "CFLAGS", lib_sub_dir=lib_sub_dir)
                if wanted("CXXFLAGS"):
                    self.append_compilation_flags(prefix, "CXXFLAGS", lib_sub_dir=lib_sub_dir)
                if wanted("LDFLAGS"):
                    self.append_compilation_flags(prefix, "LDFLAGS", lib_sub_dir=lib_sub_dir,
                                                  append_include=False)

            if wanted("PYTHONPATH"):
                for path in python_module_dirs(prefix, scanner.arch_size):
                    self.add_path("PYTHONPATH", path)


def _existing_or_reference(paths: List[str]) -> List[str]:
    return [p for p in paths if p.startswith("$") or os.path.exists(p)]


def _sanitize_paths(paths: Sequence[str]) -> List[str]:
    result = []
    for path in paths:
        path = os.path.normpath(path)
        if path not in result:
            result.append(path)
    return result


def python_module_dirs(prefix: PathLike, arch_size: int = 64) -> List[str]:
    """
    Python module directories installed in prefix.

    ``<prefix>/lib`` counts when it holds Python files directly installed
    there (no ``python*`` directory), and every ``site-packages`` or
    ``dist-packages`` directory of a ``lib*/pythonX.Y`` layout.
    """
    prefix = os.fspath(prefix)
    result = []

    libdir = os.path.join(prefix, "lib")
    if os.path.isdir(libdir) and not glob.glob(os.path.join(libdir, "python*")) \
            and glob.glob(os.path.join(libdir, "**", "*.py"), recursive=True):
        result.append(libdir)

    for lib_name in ("lib", f"lib{arch_size}"):
        for package_dir in ("site-packages", "dist-packages"):
            pattern = os.path.join(prefix, lib_name, "python*", package_dir)
            for path in sorted(glob.glob(pattern)):
                if os.path.isdir(path) and path not in result:
                    result.append(path)
    return result


def find_executable_in_path(file: str, entries: Iterable[str]) -> Optional[str]:
    """First executable regular file named file in entries."""
    for directory in entries:
        full = os.path.join(directory, file)
        if os.path.isfile(full) and os.access(full, os.X_OK):
            return full
    return None


def find_in_path(file: str, entries: Iterable[str]) -> Optional[str]:
    """First regular file named file in entries."""
    for directory in entries:
        full = os.path.join(directory, file)
        if os.path.isfile(full):
            return full
    return None
