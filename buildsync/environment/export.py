"""
Exported environments and their rendering as shell scripts.

An ExportedEnvironment is the materialized form of an Environment: what a
script has to unset, set unconditionally, or set depending on whether the
variable already has a value when the script is loaded.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, IO, List, Mapping, Optional, Set, Tuple

from ..platform import ShellFormat


@dataclass
class ExportedEnvironment:
    """
    Environment modifications needed to load an Environment.

    ``update`` maps a name to ``(with_inheritance, without_inheritance)``;
    the first form contains a ``$NAME`` reference to the value the variable
    had before.
    """
    unset: List[str] = field(default_factory=list)
    appended: Set[str] = field(default_factory=set)
    set: Dict[str, List[str]] = field(default_factory=dict)
    update: Dict[str, Tuple[List[str], List[str]]] = field(default_factory=dict)
    path_separator: str = os.pathsep

    def separator_for(self, name: str) -> str:
        """Appended variables are joined with spaces, the others with the path separator."""
        return " " if name in self.appended else self.path_separator


@dataclass(frozen=True)
class ShellTemplates:
    """Text templates of one shell syntax."""
    set_command: str
    conditional_set_command: str
    unset_command: str
    export_command: Optional[str]
    source_command: str
    variable_reference: str


SHELL_TEMPLATES = {
    ShellFormat.POSIX: ShellTemplates(
        set_command='{name}="{value}"',
        conditional_set_command=(
            'if test -z "${name}"; then\n'
            '  {name}="{without_inheritance}"\n'
            'else\n'
            '  {name}="{with_inheritance}"\n'
            'fi'
        ),
        unset_command="unset {name}",
        export_command="export {name}",
        source_command='. "{path}"',
        variable_reference="${name}",
    ),
    # cmd.exe variables are inherited by children without an explicit export
    ShellFormat.WINDOWS_CMD: ShellTemplates(
        set_command='set "{name}={value}"',
        conditional_set_command=(
            'if defined {name} (set "{name}={with_inheritance}") '
            'else (set "{name}={without_inheritance}")'
        ),
        unset_command="set {name}=",
        export_command=None,
        source_command='call "{path}"',
        variable_reference="%{name}%",
    ),
}


def variable_reference(name: str) -> str:
    """Placeholder used in exported values for the inherited value of name."""
    return f"${name}"


def _render_values(templates: ShellTemplates, name: str, values: List[str], separator: str) -> str:
    reference = variable_reference(name)
    rendered = [
        templates.variable_reference.format(name=name) if value == reference else value
        for value in values
    ]
    return separator.join(rendered)


def write_shell_script(export: ExportedEnvironment, stream: IO[str], shell_format: ShellFormat,
                       source_before: Optional[List[str]] = None,
                       source_after: Optional[List[str]] = None) -> None:
    """
    Write the script loading export.

    Order: scripts sourced before, unsets, unconditional sets, conditional
    sets, scripts sourced after.
    """
    templates = SHELL_TEMPLATES[ShellFormat(shell_format)]

    def emit(line: Optional[str]) -> None:
        if line is not None:
            stream.write(line + "\n")

    def export_variable(name: str) -> None:
        if templates.export_command:
            emit(templates.export_command.format(name=name))

    for path in source_before or []:
        emit(templates.source_command.format(path=path))

    for name in export.unset:
        emit(templates.unset_command.format(name=name))

    for name, value in export.set.items():
        separator = export.separator_for(name)
        emit(templates.set_command.format(
            name=name, value=_render_values(templates, name, value, separator)
        ))
        export_variable(name)

    for name, (with_inheritance, without_inheritance) in export.update.items():
        separator = export.separator_for(name)
        emit(templates.conditional_set_command.format(
            name=name,
            with_inheritance=_render_values(templates, name, with_inheritance, separator),
            without_inheritance=_render_values(templates, name, without_inheritance, separator),
        ))
        export_variable(name)

    for path in source_after or []:
        emit(templates.source_command.format(path=path))


def environment_from_export(export: ExportedEnvironment,
                            base_env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Apply export to base_env, the way a shell loading the generated script would.

    Args:
        export: The exported environment
        base_env: Environment the script is loaded in (defaults to os.environ)

    Returns:
        The resulting environment
    """
    if base_env is None:
        base_env = os.environ

    result: Dict[str, str] = {}
    for name, value in export.set.items():
        result[name] = export.separator_for(name).join(value)

    for name, value in base_env.items():
        result.setdefault(name, value)

    for name in export.unset:
        result.pop(name, None)

    for name, (with_inheritance, without_inheritance) in export.update.items():
        separator = export.separator_for(name)
        if result.get(name):
            reference = variable_reference(name)
            values = [base_env[name] if value == reference else value for value in with_inheritance]
            result[name] = separator.join(values)
        else:
            result[name] = separator.join(without_inheritance)

    return result
