#!/usr/bin/env python3
"""
Tests for the error hierarchy and the subprocess runner.
"""

import os
import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import sys
sys.path.insert(0, str(Path(__file__).parent))

from buildsync.config import Config
from buildsync.environment import Environment
from buildsync.errors import (
    BuildSyncError, CommandNotFound, ConfigException, ErrorCategory, ImportException,
    PackageException, PolicyRefusal, SubcommandFailed
)
from buildsync.package import Package
from buildsync.platform import PlatformInfo
from buildsync.subcommand import CommandStatus, SubcommandRunner


class TestErrors(unittest.TestCase):
    """Rendering and classification of errors."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.package = Package("pkg", self.temp_dir / "src", runner=MagicMock())

    def tearDown(self):
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)

    def test_rendering_with_package_and_phase(self):
        error = PackageException(self.package, "import", "something broke")
        self.assertEqual(str(error), f"pkg({self.temp_dir / 'src'}): failed in import phase\n    something broke")

    def test_rendering_with_plain_target(self):
        self.assertEqual(str(BuildSyncError("name", None, "oops")), "name: oops")
        self.assertEqual(str(BuildSyncError(message="bare")), "bare")

    def test_retry_and_categories(self):
        self.assertFalse(ConfigException(self.package, "import", "x").can_retry())
        self.assertFalse(PackageException(self.package, "import", "x").can_retry())
        self.assertTrue(ImportException(self.package, "patch", "x").can_retry())
        self.assertEqual(ConfigException().category, ErrorCategory.CONFIGURATION)
        self.assertEqual(PolicyRefusal().category, ErrorCategory.POLICY)
        self.assertIsInstance(PolicyRefusal(), PackageException)
        self.assertIn("delete your working copy", str(ConfigException(self.package, "import", "x")))

    def test_subcommand_failed_shows_log_tail(self):
        logfile = self.temp_dir / "pkg-import.log"
        logfile.write_text("\n".join(f"line {i}" for i in range(20)))

        error = SubcommandFailed(self.package, "import", ["git", "fetch"], logfile, 128,
                                 displayed_line_count=3)
        rendered = str(error)
        self.assertIn("'git fetch' returned status 128", rendered)
        self.assertIn(f"see {logfile} for details", rendered)
        self.assertIn("last 3 lines are:", rendered)
        self.assertIn("    line 19", rendered)
        self.assertNotIn("line 16", rendered)

    def test_subcommand_failed_without_log_file(self):
        error = SubcommandFailed(self.package, "import", ["git"], self.temp_dir / "gone.log", 1,
                                 output=["a", "b"], displayed_line_count=None)
        self.assertEqual(error.output_tail(), ["a", "b"])
        self.assertIn("does not seem to be present", str(error))


def completed(returncode, stdout=b"", stderr=b""):
    return subprocess.CompletedProcess([], returncode, stdout=stdout, stderr=stderr)


class TestSubcommandRunner(unittest.TestCase):
    """Execution, logging and retry policy."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.config = Config(log_dir=self.temp_dir / "logs", retry_attempts=3, retry_delay=0.5)
        self.runner = SubcommandRunner(self.config)

    def tearDown(self):
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)

    def test_log_path(self):
        self.assertEqual(self.runner.log_path("group/pkg", "import"), self.temp_dir / "logs" / "group_pkg-import.log")

    @patch("buildsync.subcommand.time.sleep")
    @patch("buildsync.subcommand.subprocess.run")
    def test_retry_with_exponential_backoff(self, run, sleep):
        run.side_effect = [
            completed(1, stderr=b"network down"),
            completed(1, stderr=b"network down"),
            completed(0, stdout=b"done\n"),
        ]
        output = self.runner.run("pkg", "import", "git", "fetch", retry=True)
        self.assertEqual(output, ["done"])
        self.assertEqual([c[0][0] for c in sleep.call_args_list], [0.5, 1.0])

    @patch("buildsync.subcommand.time.sleep")
    @patch("buildsync.subcommand.subprocess.run")
    def test_retry_gives_up_after_last_attempt(self, run, sleep):
        run.return_value = completed(1, stderr=b"network down")
        with self.assertRaises(SubcommandFailed):
            self.runner.run("pkg", "import", "git", "fetch", retry=True)
        self.assertEqual(run.call_count, 3)
        self.assertEqual(sleep.call_count, 2)

    @patch("buildsync.subcommand.time.sleep")
    @patch("buildsync.subcommand.subprocess.run")
    def test_failure_without_retry(self, run, sleep):
        run.return_value = completed(2, stdout=b"out\n", stderr=b"err\n")
        with self.assertRaises(SubcommandFailed) as context:
            self.runner.run("pkg", "build", "make")
        self.assertEqual(context.exception.status, 2)
        self.assertEqual(context.exception.output, ["out", "err"])
        self.assertEqual(run.call_count, 1)
        sleep.assert_not_called()

        log = (self.temp_dir / "logs" / "pkg-build.log").read_text()
        self.assertIn("$ make", log)
        self.assertIn("# exit status 2", log)

    @patch("buildsync.subcommand.subprocess.run")
    def test_probe_distinguishes_not_found(self, run):
        run.return_value = completed(0, stdout=b"abc123\n")
        result = self.runner.probe("pkg", "import", "git", "show-ref")
        self.assertEqual(result.status, CommandStatus.SUCCESS)
        self.assertEqual(result.output, ["abc123"])

        run.return_value = completed(1)
        self.assertFalse(self.runner.probe("pkg", "import", "git", "show-ref").found)

        run.return_value = completed(128, stderr=b"fatal")
        with self.assertRaises(SubcommandFailed):
            self.runner.probe("pkg", "import", "git", "show-ref")

    def test_command_not_found(self):
        with self.assertRaises(CommandNotFound) as context:
            self.runner.run("pkg", "import", str(self.temp_dir / "no-such-command"))
        self.assertIsInstance(context.exception.__cause__, OSError)

    @patch("buildsync.subcommand.subprocess.run")
    def test_child_environment_is_complete(self, run):
        run.return_value = completed(0)
        ambient = {"HOME": "/home/user", "LANG": "fr_FR.UTF-8", "FOO": "old"}
        env = Environment(ambient=ambient, platform_info=PlatformInfo(system="Linux"))
        env.set("FOO", "bar")
        env.unset("LANG")
        SubcommandRunner(self.config, env).run("pkg", "build", "make")

        self.assertEqual(run.call_args[1]["env"], {"HOME": "/home/user", "FOO": "bar"})

    def test_no_environment_inherits_the_process_environment(self):
        self.assertIsNone(self.runner.child_environment())

    @unittest.skipUnless(shutil.which("git"), "git not available")
    def test_real_command(self):
        output = self.runner.run("pkg", "import", "git", "--version")
        self.assertTrue(output[0].startswith("git version"))


@unittest.skipUnless(shutil.which("sh"), "sh not available")
class TestChildEnvironment(unittest.TestCase):
    """What a real child process sees of the Environment."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.config = Config(log_dir=self.temp_dir / "logs")
        self.env_patch = patch.dict(os.environ, {"BUILDSYNC_SECRET": "leaked", "LC_ALL": "C.UTF-8"})
        self.env_patch.start()
        self.env = Environment(platform_info=PlatformInfo(system="Linux"))
        self.runner = SubcommandRunner(self.config, self.env)

    def tearDown(self):
        self.env_patch.stop()
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)

    def echo(self, expression):
        return self.runner.run("pkg", "build", "sh", "-c", f"echo [{expression}]")

    def test_unset_variable_is_absent(self):
        self.env.unset("BUILDSYNC_SECRET")
        self.assertEqual(self.echo("${BUILDSYNC_SECRET-UNSET}"), ["[UNSET]"])

    def test_cleared_inherited_variable_is_absent(self):
        self.env.inherit("BUILDSYNC_SECRET")
        self.env.clear("BUILDSYNC_SECRET")
        self.assertEqual(self.echo("${BUILDSYNC_SECRET-UNSET}"), ["[UNSET]"])

    def test_untouched_variable_passes_through(self):
        self.assertEqual(self.echo("${BUILDSYNC_SECRET-UNSET}"), ["[leaked]"])

    def test_locale_of_non_git_children_is_kept(self):
        self.assertEqual(self.echo("${LC_ALL-UNSET}/${LANGUAGE-UNSET}"),
                         [f"[C.UTF-8/{os.environ.get('LANGUAGE', 'UNSET')}]"])

    def test_set_variable_is_given(self):
        self.env.set("BUILDSYNC_SECRET", "replaced")
        self.assertEqual(self.echo("${BUILDSYNC_SECRET-UNSET}"), ["[replaced]"])


if __name__ == "__main__":
    unittest.main()
