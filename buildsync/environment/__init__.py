"""
Environment composition: layered variables, installation prefixes and
generated shell scripts.
"""

from .core import Environment, InheritanceMode, find_executable_in_path, find_in_path, python_module_dirs
from .export import ExportedEnvironment, environment_from_export, write_shell_script
from .prefix import PrefixScanner, parse_pkgconfig_debug

__all__ = [
    "Environment",
    "InheritanceMode",
    "ExportedEnvironment",
    "PrefixScanner",
    "environment_from_export",
    "write_shell_script",
    "parse_pkgconfig_debug",
    "find_executable_in_path",
    "find_in_path",
    "python_module_dirs",
]
