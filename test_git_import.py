#!/usr/bin/env python3
"""
Integration tests for the git importer, run against real repositories
created in a temporary directory.
"""

import os
import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import sys
sys.path.insert(0, str(Path(__file__).parent))

from buildsync.config import Config
from buildsync.errors import BuildSyncError, ConfigException, PackageException, PolicyRefusal
from buildsync.git_sync import GitImporter, MergeState, can_handle, resolve_git_dir, vcs_definition_for
from buildsync.git_sync.alternates import read_alternates
from buildsync.package import Package
from buildsync.subcommand import SubcommandRunner


GIT_IDENTITY = {
    "GIT_AUTHOR_NAME": "Test User",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test User",
    "GIT_COMMITTER_EMAIL": "test@example.com",
    "GIT_MERGE_AUTOEDIT": "no",
}


def git(repo_dir, *args):
    """Run git in repo_dir and return its stripped standard output."""
    result = subprocess.run(["git", *args], cwd=repo_dir, capture_output=True, text=True, check=True)
    return result.stdout.strip()


def commit(repo_dir, filename, content):
    """Write a file, commit it and return the new commit id."""
    (Path(repo_dir) / filename).write_text(content)
    git(repo_dir, "add", filename)
    git(repo_dir, "commit", "-q", "-m", f"update {filename}")
    return git(repo_dir, "rev-parse", "HEAD")


@unittest.skipUnless(shutil.which("git"), "git not available")
class GitImportTestCase(unittest.TestCase):
    """Upstream repository on branch main, and a package to import it into."""

    def setUp(self):
        self.env_patch = mock.patch.dict(os.environ, GIT_IDENTITY)
        self.env_patch.start()

        self.temp_dir = Path(tempfile.mkdtemp())
        self.upstream = self.temp_dir / "upstream"
        self.upstream.mkdir()
        git(self.upstream, "init", "-q")
        git(self.upstream, "symbolic-ref", "HEAD", "refs/heads/main")
        self.commit_a = commit(self.upstream, "file", "A\n")

        self.config = Config(log_dir=self.temp_dir / "logs", retry_attempts=1, retry_delay=0, lock_timeout=5)
        self.runner = SubcommandRunner(self.config)
        self.importdir = self.temp_dir / "src" / "pkg"
        self.package = Package("pkg", self.importdir, self.runner)

    def tearDown(self):
        self.env_patch.stop()
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)

    def importer(self, branch="main", **options):
        return GitImporter(str(self.upstream), branch, config=self.config, **options)

    def head(self):
        return git(self.importdir, "rev-parse", "HEAD")


class TestCheckoutAndUpdate(GitImportTestCase):
    """Cloning and fast-forwarding a tracked branch."""

    def test_fresh_clone_tracks_branch(self):
        importer = self.importer()
        importer.import_package(self.package)

        self.assertEqual((self.importdir / "file").read_text(), "A\n")
        self.assertEqual(self.head(), self.commit_a)
        self.assertEqual(importer.current_branch(self.package), "refs/heads/main")
        self.assertEqual(git(self.importdir, "config", "--get", "remote.autobuild.url"), str(self.upstream))
        self.assertEqual(git(self.importdir, "config", "--get", "branch.main.remote"), "autobuild")
        self.assertEqual(git(self.importdir, "config", "--get", "branch.main.merge"), "refs/heads/main")
        self.assertEqual(git(self.importdir, "rev-parse", "autobuild/main"), self.commit_a)

    def test_clone_of_another_branch(self):
        git(self.upstream, "branch", "stable")
        commit(self.upstream, "file", "B\n")

        importer = self.importer("stable")
        importer.import_package(self.package)
        self.assertEqual(self.head(), self.commit_a)
        self.assertTrue(importer.on_target_branch(self.package))

    def test_fast_forward_update(self):
        importer = self.importer()
        importer.import_package(self.package)
        commit_b = commit(self.upstream, "file", "B\n")

        importer.import_package(self.package)
        self.assertEqual(self.head(), commit_b)
        self.assertEqual((self.importdir / "file").read_text(), "B\n")
        self.assertEqual(git(self.importdir, "rev-parse", "autobuild/main"), commit_b)

    def test_local_commits_are_kept(self):
        importer = self.importer()
        importer.import_package(self.package)
        local = commit(self.importdir, "local", "mine\n")

        importer.import_package(self.package)
        self.assertEqual(self.head(), local)

    def test_no_update(self):
        importer = self.importer()
        importer.import_package(self.package)
        commit(self.upstream, "file", "B\n")

        importer.import_package(self.package, update=False)
        self.assertEqual(self.head(), self.commit_a)

    def test_remote_configuration_is_not_duplicated(self):
        importer = self.importer()
        importer.import_package(self.package)
        importer.import_package(self.package)
        importer.update_remotes_configuration(self.package)

        urls = git(self.importdir, "config", "--get-all", "remote.autobuild.url").splitlines()
        self.assertEqual(urls, [str(self.upstream)])

    def test_diverged_branches_are_refused_unless_merging(self):
        importer = self.importer()
        importer.import_package(self.package)
        local = commit(self.importdir, "local", "mine\n")
        remote = commit(self.upstream, "file", "B\n")

        with self.assertRaises(PolicyRefusal):
            importer.import_package(self.package)
        self.assertEqual(self.head(), local)

        importer.merge = True
        importer.import_package(self.package)
        parents = git(self.importdir, "rev-list", "--parents", "-n", "1", "HEAD").split()[1:]
        self.assertEqual(sorted(parents), sorted([local, remote]))

    def test_failed_clone_leaves_nothing_behind(self):
        importer = GitImporter(str(self.temp_dir / "missing"), "main", config=self.config)
        with self.assertRaises(BuildSyncError):
            importer.import_package(self.package)
        self.assertFalse(self.importdir.exists())

    def test_alternates_are_used_when_cloning(self):
        cache = self.temp_dir / "cache"
        cache.mkdir()
        git(cache, "clone", "-q", "--bare", str(self.upstream), "pkg")

        importer = self.importer(alternates=[str(cache / "%s")])
        importer.import_package(self.package)

        alternates = read_alternates(self.importdir / ".git")
        self.assertEqual([os.path.realpath(p) for p in alternates],
                         [os.path.realpath(cache / "pkg" / "objects")])

        commit_b = commit(self.upstream, "file", "B\n")
        importer.import_package(self.package)
        self.assertEqual(self.head(), commit_b)
        self.assertEqual(len(read_alternates(self.importdir / ".git")), 1)


class TestPinning(GitImportTestCase):
    """Checking out fixed tags and commits."""

    def test_commit_pinning_on_an_ancestor(self):
        commit(self.upstream, "file", "B\n")
        importer = self.importer(None, commit=self.commit_a)

        importer.import_package(self.package)
        self.assertEqual(self.head(), self.commit_a)
        self.assertEqual(importer.current_branch(self.package), "refs/heads/master")

        # Already there: stays on the local branch
        importer.import_package(self.package)
        self.assertEqual(self.head(), self.commit_a)
        self.assertFalse(importer.detached_head(self.package))

    def test_pinned_commit_on_named_local_branch(self):
        commit(self.upstream, "file", "B\n")
        importer = self.importer("pinned", commit=self.commit_a)

        importer.import_package(self.package)
        self.assertEqual(importer.current_branch(self.package), "refs/heads/pinned")
        self.assertEqual(self.head(), self.commit_a)

    def test_tag_pinning(self):
        git(self.upstream, "tag", "v1")
        commit(self.upstream, "file", "B\n")

        importer = self.importer(None, tag="v1")
        importer.import_package(self.package)
        self.assertEqual(self.head(), self.commit_a)
        self.assertEqual((self.importdir / "file").read_text(), "A\n")

    def test_pinning_a_diverged_commit_is_refused(self):
        importer = self.importer()
        importer.import_package(self.package)
        local = commit(self.importdir, "local", "mine\n")
        remote = commit(self.upstream, "file", "B\n")

        importer.commit = remote
        with self.assertRaises(PolicyRefusal):
            importer.import_package(self.package)
        self.assertEqual(self.head(), local)

    def test_tags_and_delta(self):
        git(self.upstream, "tag", "v1")
        commit_b = commit(self.upstream, "file", "B\n")
        git(self.upstream, "tag", "v2")

        importer = self.importer()
        importer.import_package(self.package)

        tags = importer.tags(self.package)
        self.assertEqual(tags["v1"], self.commit_a)
        self.assertEqual(tags["v2"], commit_b)

        delta = importer.delta_between_tags(self.package, "v1", "v2")
        self.assertEqual(delta.state, MergeState.SIMPLE_UPDATE)
        self.assertEqual(len(delta.remote_commits), 1)

        with self.assertRaises(ValueError):
            importer.delta_between_tags(self.package, "v1", "v3")


class TestStatus(GitImportTestCase):
    """Merge status of the working copy."""

    def test_status_with_and_without_fetching(self):
        importer = self.importer()
        importer.import_package(self.package)
        commit_b = commit(self.upstream, "file", "B\n")

        status = importer.status(self.package, only_local=True)
        self.assertEqual(status.state, MergeState.UP_TO_DATE)
        self.assertFalse(status.uncommitted_code)

        status = importer.status(self.package)
        self.assertEqual(status.state, MergeState.SIMPLE_UPDATE)
        self.assertEqual(status.fetch_commit, commit_b)
        self.assertEqual(status.head_commit, self.commit_a)
        self.assertEqual(len(status.remote_commits), 1)
        self.assertEqual(status.local_commits, [])

        # The fetch updated the remote tracking branch
        self.assertEqual(importer.status(self.package, only_local=True).state, MergeState.SIMPLE_UPDATE)

    def test_advanced_and_uncommitted(self):
        importer = self.importer()
        importer.import_package(self.package)
        commit(self.importdir, "local", "mine\n")
        (self.importdir / "file").write_text("edited\n")

        status = importer.status(self.package, only_local=True)
        self.assertEqual(status.state, MergeState.ADVANCED)
        self.assertTrue(status.uncommitted_code)
        self.assertEqual(len(status.local_commits), 1)

    def test_fallback_when_remote_is_unreachable(self):
        importer = self.importer()
        importer.import_package(self.package)
        importer.relocate(str(self.temp_dir / "missing"))

        with self.assertRaises(BuildSyncError):
            importer.status(self.package)

        importer.add_fallback(
            lambda error, package, operation, *args: importer.current_remote_commit(package, only_local=True)
        )
        self.assertEqual(importer.status(self.package).state, MergeState.UP_TO_DATE)

    def test_unknown_revisions(self):
        importer = self.importer()
        importer.import_package(self.package)

        self.assertEqual(importer.rev_parse(self.package, "main"), self.commit_a)
        with self.assertRaises(PackageException):
            importer.rev_parse(self.package, "does-not-exist")
        with self.assertRaises(PackageException):
            importer.merge_status(self.package, "does-not-exist")

    def test_show_and_log(self):
        importer = self.importer()
        importer.import_package(self.package)
        self.assertEqual(importer.show(self.package, self.commit_a, "file"), "A")
        self.assertEqual(importer.log(self.package, self.commit_a, self.commit_a), [])
        with self.assertRaises(PackageException):
            importer.show(self.package, self.commit_a, "missing")


class TestRepositoryDetection(GitImportTestCase):
    """Recognizing working copies and bare repositories."""

    def test_plain_directory(self):
        plain = self.temp_dir / "plain"
        plain.mkdir()
        self.assertIsNone(resolve_git_dir(plain))
        self.assertFalse(can_handle(plain))
        with self.assertRaises(ValueError):
            vcs_definition_for(plain)

        self.package.importdir = plain
        with self.assertRaises(ConfigException):
            self.importer().validate_importdir(self.package)

    def test_bare_repository(self):
        bare = self.temp_dir / "bare.git"
        git(self.temp_dir, "clone", "-q", "--bare", str(self.upstream), str(bare))
        self.assertFalse(can_handle(bare))

        self.package.importdir = bare
        importer = self.importer()
        self.assertEqual(importer.git_dir(self.package, False), bare)
        with self.assertRaises(ConfigException):
            importer.validate_importdir(self.package)

    def test_vcs_definition_of_an_imported_package(self):
        self.importer().import_package(self.package)
        self.assertTrue(can_handle(self.importdir))
        self.assertEqual(vcs_definition_for(self.importdir), {"type": "git", "url": str(self.upstream)})

    def test_vcs_definition_falls_back_to_origin(self):
        clone = self.temp_dir / "clone"
        git(self.temp_dir, "clone", "-q", str(self.upstream), str(clone))
        self.assertEqual(vcs_definition_for(clone), {"type": "git", "url": str(self.upstream)})


if __name__ == "__main__":
    unittest.main()
