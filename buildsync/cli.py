"""
Command line interface of buildsync.

    buildsync import NAME URL DIR [--branch B | --tag T | --commit C] ...
    buildsync status NAME URL DIR [--local]
    buildsync env PREFIX... [--output FILE] [--shell posix|windows-cmd] [--isolate]
"""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import Config, load_configuration
from .environment import Environment, PrefixScanner
from .errors import BuildSyncError
from .git_sync import GitImporter, MergeState
from .package import Package
from .performance_logger import PerformanceLogger
from .platform import ShellFormat
from .subcommand import SubcommandRunner


def setup_logging(config: Config) -> None:
    """Configure the root logger with a formatter carrying the package/operation context."""
    class StructuredFormatter(logging.Formatter):
        """Formatter appending the op= and package= context of a record."""

        def format(self, record):
            formatted = super().format(record)

            context_parts = []
            operation = getattr(record, 'operation', None)
            if operation:
                context_parts.append(f"op={operation}")
            package = getattr(record, 'package', None)
            if package:
                context_parts.append(f"package={package}")

            if context_parts:
                formatted += f" [{' '.join(context_parts)}]"
            return formatted

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, config.log_level))
    console_handler.setFormatter(StructuredFormatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(console_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="buildsync",
        description="Keep package checkouts in sync with their git repositories and export build environments"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--env-file", help="dotenv file read before the configuration")
    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="check out or update a package")
    p_import.add_argument("name")
    p_import.add_argument("url")
    p_import.add_argument("directory")
    tracking = p_import.add_mutually_exclusive_group()
    tracking.add_argument("--branch")
    tracking.add_argument("--tag")
    tracking.add_argument("--commit")
    p_import.add_argument("--local-branch", help="branch name in the working copy")
    p_import.add_argument("--push-to", help="URL pushed to, defaults to URL")
    p_import.add_argument("--merge", action="store_true", help="merge diverged remote changes")
    p_import.add_argument("--submodules", action="store_true", help="clone submodules too")
    p_import.add_argument("--patch", action="append", default=[], dest="patches",
                          help="patch applied after the import (repeatable)")
    p_import.add_argument("--local", action="store_true", help="do not access the network")
    p_import.add_argument("--no-update", action="store_true", help="leave an existing working copy alone")

    p_status = sub.add_parser("status", help="compare a working copy with its remote")
    p_status.add_argument("name")
    p_status.add_argument("url")
    p_status.add_argument("directory")
    status_tracking = p_status.add_mutually_exclusive_group()
    status_tracking.add_argument("--branch")
    status_tracking.add_argument("--tag")
    status_tracking.add_argument("--commit")
    p_status.add_argument("--local", action="store_true", help="use the last fetched remote state")

    p_env = sub.add_parser("env", help="write the environment of installation prefixes")
    p_env.add_argument("prefixes", nargs="+")
    p_env.add_argument("--output", help="script written (standard output by default)")
    p_env.add_argument("--shell", choices=[f.value for f in ShellFormat])
    p_env.add_argument("--isolate", action="store_true", help="do not inherit the current environment")
    return parser


def _importer(args, config: Config, patches: Optional[List[str]] = None) -> GitImporter:
    return GitImporter(
        args.url, args.branch,
        config=config,
        tag=args.tag,
        commit=args.commit,
        push_to=getattr(args, "push_to", None),
        local_branch=getattr(args, "local_branch", None),
        with_submodules=getattr(args, "submodules", False),
        merge=getattr(args, "merge", False),
        patches=patches,
        performance_logger=PerformanceLogger(),
    )


def command_import(args, config: Config, environment: Environment) -> int:
    runner = SubcommandRunner(config, environment)
    importer = _importer(args, config, args.patches)
    package = Package(args.name, args.directory, runner, importer=importer)

    importer.import_package(package, update=not args.no_update, only_local=args.local)
    logging.getLogger('buildsync.performance').debug(
        f"Import summary: {importer.perf_logger.get_performance_summary()}"
    )
    package.message("%s: imported")
    return 0


def command_status(args, config: Config, environment: Environment) -> int:
    runner = SubcommandRunner(config, environment)
    importer = _importer(args, config)
    package = Package(args.name, args.directory, runner, importer=importer)

    status = importer.status(package, only_local=args.local)
    print(f"{package.name}: {status.state.value}")
    if status.uncommitted_code:
        print("  contains uncommitted modifications")
    if status.state in (MergeState.SIMPLE_UPDATE, MergeState.NEEDS_MERGE):
        for line in status.remote_commits:
            print(f"  remote: {line}")
    if status.state in (MergeState.ADVANCED, MergeState.NEEDS_MERGE):
        for line in status.local_commits:
            print(f"  local: {line}")
    return 0


def command_env(args, config: Config, environment: Environment) -> int:
    if args.isolate:
        environment.isolate()
    for prefix in args.prefixes:
        environment.add_prefix(prefix)

    shell_format = args.shell or config.shell_format
    if args.output:
        with open(args.output, "w", encoding="utf-8") as io:
            environment.export_env_sh(io, shell_format)
    else:
        environment.export_env_sh(sys.stdout, shell_format)
    return 0


COMMANDS = {
    "import": command_import,
    "status": command_status,
    "env": command_env,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point of the buildsync command."""
    args = build_parser().parse_args(argv)

    try:
        config = load_configuration(args.env_file)
    except ValueError as e:
        print(f"buildsync: {e}", file=sys.stderr)
        return 1
    setup_logging(config)

    environment = Environment(
        shell_format=config.shell_format,
        prefix_scanner=PrefixScanner(config.pkg_config_executable),
    )
    environment.prepare()

    try:
        return COMMANDS[args.command](args, config, environment)
    except BuildSyncError as e:
        print(str(e), file=sys.stderr)
        return 1
    except TimeoutError as e:
        print(f"buildsync: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
