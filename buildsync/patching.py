"""Application of local patches on top of an imported working copy."""

import logging
from pathlib import Path
from typing import List, Sequence, TYPE_CHECKING

from .errors import ImportException, SubcommandFailed

if TYPE_CHECKING:
    from .package import Package


PATCH_LIST_FILE = "autobuild-patches"


class PatchApplicator:
    """
    Applies a list of patches with an external ``patch`` program.

    The patches currently applied are recorded, one per line in application
    order, in ``<srcdir>/autobuild-patches``. Each pass unapplies all of them
    and applies the requested list again; no attempt is made to be smart.
    """

    def __init__(self, patch_executable: str = "patch"):
        self.patch_executable = patch_executable
        self.logger = logging.getLogger('buildsync.patch')

    def patch_list_path(self, package: "Package") -> Path:
        return package.srcdir / PATCH_LIST_FILE

    def applied_patches(self, package: "Package") -> List[str]:
        """Patches recorded as applied, in application order."""
        path = self.patch_list_path(package)
        if not path.exists():
            return []
        return [line.rstrip() for line in path.read_text().splitlines() if line.strip()]

    def _call_patch(self, package: "Package", reverse: bool, patch_file: str) -> None:
        command = [self.patch_executable, "-p0"]
        if reverse:
            command.append("-R")
        patch_path = package.srcdir / patch_file
        with open(patch_path, "rb") as io:
            package.run("patch", *command, working_directory=package.srcdir, input_file=io)

    def apply(self, package: "Package", patch_file: str) -> None:
        self.logger.debug(f"{package.name}: applying {patch_file}")
        self._call_patch(package, False, patch_file)

    def unapply(self, package: "Package", patch_file: str) -> None:
        self.logger.debug(f"{package.name}: unapplying {patch_file}")
        self._call_patch(package, True, patch_file)

    def patch(self, package: "Package", patches: Sequence[str]) -> None:
        """
        Make ``patches`` the set of applied patches.

        Raises:
            ImportException: a patch could not be applied or unapplied
        """
        current = self.applied_patches(package)
        if not current and not patches:
            return

        try:
            while current:
                self.unapply(package, current[-1])
                current.pop()

            for patch_file in patches:
                self.apply(package, patch_file)
                current.append(patch_file)
        except (SubcommandFailed, OSError) as e:
            raise ImportException(
                package, "patch", f"can't patch {package.name} ({e})", cause=e
            ) from e
        finally:
            self.patch_list_path(package).write_text("\n".join(current))
